# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SandboxRef(BaseModel):
    """A sandbox owned by the user."""

    id: str


class SharedSandbox(BaseModel):
    """A sandbox shared with the user by its owner."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sandbox_id: str


class User(BaseModel):
    """User record as returned by the identity API.

    Attributes:
        id: The user id.
        sandbox: Sandboxes the user owns.
        users_to_sandboxes: Sandboxes shared with the user.
        generations: Number of AI code generations used so far.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str | None = None
    sandbox: list[SandboxRef] = Field(default_factory=list)
    users_to_sandboxes: list[SharedSandbox] = Field(default_factory=list)
    generations: int = 0

    def owns(self, sandbox_id: str) -> bool:
        return any(s.id == sandbox_id for s in self.sandbox)

    def has_shared_access(self, sandbox_id: str) -> bool:
        return any(s.sandbox_id == sandbox_id for s in self.users_to_sandboxes)

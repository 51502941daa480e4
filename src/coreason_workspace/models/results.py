# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

"""Results returned to clients through event acknowledgements."""

from pydantic import BaseModel, Field


class DeployResult(BaseModel):
    """Outcome of a deployment push."""

    success: bool
    message: str


class AppsResult(BaseModel):
    """Apps known to the deployment target, or the reason they could not be listed."""

    success: bool
    apps: list[str] | None = None
    message: str | None = None


class GenerateCodeResult(BaseModel):
    """AI code generation response."""

    response: str = Field(..., description="Generated code or an explanation of the failure.")
    success: bool

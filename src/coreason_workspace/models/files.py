# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

"""Data models for the in-memory file tree."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

ROOT_ID = "/"


class FileNode(BaseModel):
    """A file in the project tree.

    Attributes:
        id: Full object key of the file, e.g. ``projects/<sandboxId>/src/app.py``.
        name: Final path segment.
    """

    id: str
    name: str
    type: Literal["file"] = "file"


class FolderNode(BaseModel):
    """A folder in the project tree.

    Membership is determined by id prefix: every child's id is ``<folder id>/<child name>``.

    Attributes:
        id: Key prefix shared by the folder's members, or ``/`` for the root.
        name: Final path segment.
        children: Files and folders directly inside this folder, in insertion order.
    """

    id: str
    name: str
    type: Literal["folder"] = "folder"
    children: list["TreeNode"] = Field(default_factory=list)

    def find_child(self, name: str) -> "TreeNode | None":
        for child in self.children:
            if child.name == name:
                return child
        return None


TreeNode = Annotated[Union[FileNode, FolderNode], Field(discriminator="type")]

FolderNode.model_rebuild()

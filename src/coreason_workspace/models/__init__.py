# src/coreason_workspace/models/__init__.py

"""
Data models for the workspace server.
"""

from .files import ROOT_ID, FileNode, FolderNode, TreeNode
from .results import AppsResult, DeployResult, GenerateCodeResult
from .users import User

__all__ = [
    "ROOT_ID",
    "FileNode",
    "FolderNode",
    "TreeNode",
    "AppsResult",
    "DeployResult",
    "GenerateCodeResult",
    "User",
]

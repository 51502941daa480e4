# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

"""
coreason-workspace
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import WorkspaceConfig
from .connection import Connection
from .files import FileManager
from .lock import LockManager
from .ratelimit import RateLimiter
from .router import SocketProtocolRouter
from .runtime import SandboxRuntime
from .runtimes.e2b import E2BRuntime
from .session_manager import SandboxSessionRegistry
from .terminals import TerminalManager

__all__ = [
    "Connection",
    "E2BRuntime",
    "FileManager",
    "LockManager",
    "RateLimiter",
    "SandboxRuntime",
    "SandboxSessionRegistry",
    "SocketProtocolRouter",
    "TerminalManager",
    "WorkspaceConfig",
]

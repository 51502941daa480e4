# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

"""Error taxonomy shared by the workspace managers and the socket router."""


class WorkspaceError(Exception):
    """Base class for all errors raised by coreason-workspace."""


class ValidationError(WorkspaceError, ValueError):
    """Malformed handshake, event or argument. Raised before any state is mutated."""


class AuthorizationError(WorkspaceError, PermissionError):
    """The user may not access the sandbox (not owner, no shared access, owner absent)."""


class RateLimited(WorkspaceError):
    """The per-user quota for an operation kind is spent."""


class SizeLimitExceeded(WorkspaceError):
    """A file body or the project as a whole is larger than allowed."""


class ResourceBusy(WorkspaceError):
    """A guarded resource could not be acquired."""


class UpstreamFailure(WorkspaceError):
    """The object store, compute sandbox, deployment transport or another service failed."""


class NotFound(WorkspaceError, LookupError):
    """Unknown file, folder or terminal id."""


class TerminalExistsError(ValidationError):
    """A terminal with the requested id is already open for the sandbox."""


class TerminalCapacityError(ValidationError):
    """The sandbox already runs the maximum number of terminals."""

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

"""Schemas for the socket handshake and every inbound protocol event.

Inbound messages are JSON objects tagged by ``event``; arguments are named fields in
camelCase. Anything that does not match one of these models is rejected at the router.
"""

from typing import Annotated, Any, Literal, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from coreason_workspace.exceptions import ValidationError


class Handshake(BaseModel):
    """Connection query parameters.

    Attributes:
        user_id: The connecting user.
        sandbox_id: The sandbox the user wants to join.
        eio: Transport protocol revision reported by the client, if any.
        transport: Transport name reported by the client, if any.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    user_id: str = Field(min_length=1)
    sandbox_id: str = Field(min_length=1, pattern=r"^[\w-]+$")
    eio: str | None = Field(default=None, alias="EIO")
    transport: str | None = None


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    ack: int | None = None


class Heartbeat(_Event):
    event: Literal["heartbeat"]


class GetFile(_Event):
    event: Literal["getFile"]
    file_id: str


class GetFolder(_Event):
    event: Literal["getFolder"]
    folder_id: str


class SaveFile(_Event):
    event: Literal["saveFile"]
    file_id: str
    body: str


class MoveFile(_Event):
    event: Literal["moveFile"]
    file_id: str
    folder_id: str


class CreateFile(_Event):
    event: Literal["createFile"]
    name: str


class CreateFolder(_Event):
    event: Literal["createFolder"]
    name: str


class RenameFile(_Event):
    event: Literal["renameFile"]
    file_id: str
    new_name: str


class DeleteFile(_Event):
    event: Literal["deleteFile"]
    file_id: str


class DeleteFolder(_Event):
    event: Literal["deleteFolder"]
    folder_id: str


class CreateTerminal(_Event):
    event: Literal["createTerminal"]
    id: str = Field(min_length=1)


class Dimensions(BaseModel):
    cols: int = Field(gt=0)
    rows: int = Field(gt=0)


class ResizeTerminal(_Event):
    event: Literal["resizeTerminal"]
    dimensions: Dimensions


class TerminalData(_Event):
    event: Literal["terminalData"]
    id: str
    data: str


class CloseTerminal(_Event):
    event: Literal["closeTerminal"]
    id: str


class Deploy(_Event):
    event: Literal["deploy"]


class ListApps(_Event):
    event: Literal["list"]


class GenerateCode(_Event):
    event: Literal["generateCode"]
    file_name: str
    code: str
    line: int
    instructions: str


InboundEvent = Annotated[
    Union[
        Heartbeat,
        GetFile,
        GetFolder,
        SaveFile,
        MoveFile,
        CreateFile,
        CreateFolder,
        RenameFile,
        DeleteFile,
        DeleteFolder,
        CreateTerminal,
        ResizeTerminal,
        TerminalData,
        CloseTerminal,
        Deploy,
        ListApps,
        GenerateCode,
    ],
    Field(discriminator="event"),
]

_event_adapter: TypeAdapter[Any] = TypeAdapter(InboundEvent)


def parse_event(raw: str | bytes | dict[str, Any]) -> Any:
    """Validate a raw inbound message into its event model.

    Raises:
        ValidationError: If the message is not valid JSON or matches no known event.
    """
    try:
        if isinstance(raw, dict):
            return _event_adapter.validate_python(raw)
        return _event_adapter.validate_json(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid event: {e.errors(include_url=False)}") from e


def parse_handshake(query: dict[str, Any]) -> Handshake:
    """Validate connection query parameters.

    Raises:
        ValidationError: If required parameters are missing or malformed.
    """
    try:
        return Handshake.model_validate(query)
    except pydantic.ValidationError as e:
        raise ValidationError("Invalid request.") from e

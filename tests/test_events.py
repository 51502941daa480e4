import json

import pytest
from coreason_workspace.exceptions import ValidationError
from coreason_workspace.models.events import (
    CreateTerminal,
    GenerateCode,
    MoveFile,
    ResizeTerminal,
    SaveFile,
    parse_event,
    parse_handshake,
)


def test_handshake_aliases() -> None:
    handshake = parse_handshake({"userId": "u1", "sandboxId": "sbx-1", "EIO": "4", "transport": "websocket"})
    assert handshake.user_id == "u1"
    assert handshake.sandbox_id == "sbx-1"
    assert handshake.eio == "4"


@pytest.mark.parametrize(
    "query",
    [
        {},
        {"userId": "u1"},
        {"userId": "", "sandboxId": "sbx"},
        {"userId": "u1", "sandboxId": "../etc"},
    ],
)
def test_handshake_rejected(query: dict[str, str]) -> None:
    with pytest.raises(ValidationError, match="Invalid request."):
        parse_handshake(query)


def test_parse_save_file() -> None:
    event = parse_event(json.dumps({"event": "saveFile", "fileId": "src/a.ts", "body": "x", "ack": 3}))
    assert isinstance(event, SaveFile)
    assert event.file_id == "src/a.ts"
    assert event.ack == 3


def test_parse_from_dict() -> None:
    event = parse_event({"event": "moveFile", "fileId": "a.ts", "folderId": "src"})
    assert isinstance(event, MoveFile)
    assert event.ack is None


def test_parse_terminal_events() -> None:
    assert isinstance(parse_event({"event": "createTerminal", "id": "t1"}), CreateTerminal)
    resize = parse_event({"event": "resizeTerminal", "dimensions": {"cols": 80, "rows": 24}})
    assert isinstance(resize, ResizeTerminal)
    assert resize.dimensions.cols == 80


def test_parse_generate_code() -> None:
    event = parse_event(
        {"event": "generateCode", "fileName": "a.py", "code": "x", "line": 2, "instructions": "fix"}
    )
    assert isinstance(event, GenerateCode)
    assert event.file_name == "a.py"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps({"event": "launchMissiles"}),
        json.dumps({"event": "getFile"}),
        json.dumps({"event": "getFile", "fileId": "a.ts", "extra": 1}),
        json.dumps({"event": "resizeTerminal", "dimensions": {"cols": 0, "rows": 24}}),
        json.dumps({"event": "createTerminal", "id": ""}),
    ],
)
def test_invalid_events(raw: str) -> None:
    with pytest.raises(ValidationError, match="Invalid event"):
        parse_event(raw)

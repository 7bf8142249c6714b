# tests/unit/session/test_decorations_unit.py

from unittest.mock import AsyncMock, MagicMock

import pytest

from metals_client.decorations import DecorationStateManager, is_worksheet
from metals_client.errors import NoActiveSessionError
from metals_client.host import BufferInfo, Position
from metals_client.lsp import protocol

WORKSHEET_URI = "file:///ws/scratch.worksheet.sc"
SOURCE_URI = "file:///ws/src/Main.scala"


def decoration(line, text, hover="", start_char=0, end_char=10):
    return {
        "range": {
            "start": {"line": line, "character": start_char},
            "end": {"line": line, "character": end_char},
        },
        "hoverMessage": {"kind": "markdown", "value": hover},
        "renderOptions": {"after": {"contentText": text}},
    }


@pytest.fixture
def manager(mock_host):
    mock_host.current_document_uri.return_value = WORKSHEET_URI
    return DecorationStateManager(mock_host)


@pytest.fixture
def session():
    s = MagicMock()
    s.send_notification = AsyncMock()
    return s


def test_is_worksheet():
    assert is_worksheet(WORKSHEET_URI)
    assert not is_worksheet("file:///ws/build.sc")
    assert not is_worksheet(SOURCE_URI)


# --- publishDecorations ---


@pytest.mark.asyncio
async def test_publish_replaces_state_wholesale(manager, mock_host):
    await manager.handle_publish(
        {"uri": WORKSHEET_URI, "options": [decoration(0, " // 1"), decoration(1, " // 2")]}
    )
    assert len(manager.decorations_for(WORKSHEET_URI)) == 2

    await manager.handle_publish({"uri": WORKSHEET_URI, "options": [decoration(3, " // 3")]})

    state = manager.decorations_for(WORKSHEET_URI)
    assert list(state) == [(3, 0, 3, 10)]
    uri, rendered = mock_host.render_decorations.await_args.args
    assert uri == WORKSHEET_URI
    assert [d.content_text for d in rendered] == [" // 3"]


@pytest.mark.asyncio
async def test_publish_for_other_document_is_ignored(manager, mock_host):
    await manager.handle_publish({"uri": SOURCE_URI, "options": [decoration(0, "x")]})
    assert manager.decorations_for(SOURCE_URI) == {}
    mock_host.render_decorations.assert_not_called()


@pytest.mark.asyncio
async def test_publish_ignored_when_disabled(mock_host):
    mock_host.current_document_uri.return_value = WORKSHEET_URI
    manager = DecorationStateManager(mock_host, enabled=False)
    await manager.handle_publish({"uri": WORKSHEET_URI, "options": [decoration(0, "x")]})
    mock_host.render_decorations.assert_not_called()


@pytest.mark.asyncio
async def test_malformed_publish_is_dropped(manager, mock_host):
    await manager.handle_publish({"uri": WORKSHEET_URI, "options": "nope"})
    await manager.handle_publish({"options": []})
    mock_host.render_decorations.assert_not_called()


# --- Focus events ---


@pytest.mark.asyncio
async def test_focus_gained_sends_did_focus_for_scala(manager, session):
    await manager.on_focus_gained(BufferInfo(1, WORKSHEET_URI, "scala"), session)
    session.send_notification.assert_awaited_once_with(protocol.DID_FOCUS_TEXT_DOCUMENT, WORKSHEET_URI)


@pytest.mark.asyncio
async def test_focus_gained_ignores_other_filetypes(manager, session):
    await manager.on_focus_gained(BufferInfo(1, "file:///ws/README.md", "markdown"), session)
    session.send_notification.assert_not_called()


@pytest.mark.asyncio
async def test_focus_gained_without_session(manager, session):
    await manager.on_focus_gained(BufferInfo(1, SOURCE_URI, "scala"), None)
    session.send_notification.side_effect = NoActiveSessionError("metals/didFocusTextDocument")
    await manager.on_focus_gained(BufferInfo(1, SOURCE_URI, "scala"), session)
    session.send_notification.assert_awaited_once()


@pytest.mark.asyncio
async def test_focus_lost_clears_worksheet_only(manager, mock_host):
    await manager.handle_publish({"uri": WORKSHEET_URI, "options": [decoration(0, "x")]})

    await manager.on_focus_lost(BufferInfo(2, SOURCE_URI, "scala"))
    mock_host.clear_decorations.assert_not_called()

    await manager.on_focus_lost(BufferInfo(1, WORKSHEET_URI, "scala"))
    mock_host.clear_decorations.assert_awaited_once_with(WORKSHEET_URI)
    assert manager.decorations_for(WORKSHEET_URI) == {}


# --- Hover ---


@pytest.mark.asyncio
async def test_show_hover_on_cursor_line(manager, mock_host):
    await manager.handle_publish(
        {
            "uri": WORKSHEET_URI,
            "options": [decoration(0, " // a", hover="a: Int = 1"), decoration(2, " // b", hover="b: List[Int]\n= List(1)")],
        }
    )
    mock_host.cursor_position.return_value = Position(line=2, character=4)

    await manager.show_hover()

    mock_host.show_float.assert_awaited_once_with(["b: List[Int]", "= List(1)"])


@pytest.mark.asyncio
async def test_show_hover_nothing_on_line(manager, mock_host):
    await manager.handle_publish({"uri": WORKSHEET_URI, "options": [decoration(0, "x", hover="h")]})
    mock_host.cursor_position.return_value = Position(line=7, character=0)
    await manager.show_hover()
    mock_host.show_float.assert_not_called()


@pytest.mark.asyncio
async def test_clearing_hovered_document_hides_float(manager, mock_host):
    await manager.handle_publish({"uri": WORKSHEET_URI, "options": [decoration(0, "x", hover="h")]})
    mock_host.cursor_position.return_value = Position(line=0, character=0)
    await manager.show_hover()

    await manager.clear_decorations(WORKSHEET_URI)

    mock_host.hide_float.assert_awaited_once()

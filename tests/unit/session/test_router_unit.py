# tests/unit/session/test_router_unit.py

import json
from unittest.mock import AsyncMock, call

import pytest

from metals_client.host import Position
from metals_client.lsp.protocol import ExtensionNotification
from metals_client.router import GOTO_LOCATION_DELAY_SECONDS, ClientCommand, NotificationRouter

LOCATION = {
    "uri": "file:///ws/src/main/scala/Main.scala",
    "range": {"start": {"line": 4, "character": 2}, "end": {"line": 4, "character": 9}},
}

DOCTOR_JSON = json.dumps(
    {
        "title": "Metals Doctor",
        "headerText": "Build targets of this workspace.",
        "targets": [{"buildTarget": "root", "scalaVersion": "2.13.1", "diagnostics": "OK"}],
    }
)


@pytest.fixture
def sleep(mocker):
    return mocker.patch("metals_client.router.asyncio.sleep", new_callable=AsyncMock)


@pytest.fixture
def router(mock_host):
    return NotificationRouter(mock_host)


def test_every_client_command_has_a_handler(router):
    assert set(router._handlers) == set(ClientCommand)


def test_decode():
    assert ClientCommand.decode("metals-doctor-run") is ClientCommand.DOCTOR_RUN
    assert ClientCommand.decode("metals-new-thing") is None


# --- goto-location ---


@pytest.mark.asyncio
async def test_goto_location_prepares_waits_then_jumps(router, mock_host, sleep, mocker):
    order = mocker.MagicMock()
    mock_host.prepare_window_for_goto.side_effect = lambda: order("prepare")
    sleep.side_effect = lambda delay: order("sleep", delay)
    mock_host.jump_to.side_effect = lambda uri, pos: order("jump", uri, pos)

    await router.handle_params({"command": "metals-goto-location", "arguments": [LOCATION]})

    assert order.mock_calls == [
        call("prepare"),
        call("sleep", GOTO_LOCATION_DELAY_SECONDS),
        call("jump", LOCATION["uri"], Position(line=4, character=2)),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("arguments", [[], [{"range": LOCATION["range"]}], [{"uri": "file:///x", "range": 5}]])
async def test_goto_location_without_valid_location_is_noop(router, mock_host, sleep, arguments):
    await router.handle_params({"command": "metals-goto-location", "arguments": arguments})
    mock_host.prepare_window_for_goto.assert_not_called()
    mock_host.jump_to.assert_not_called()


# --- doctor ---


@pytest.mark.asyncio
async def test_doctor_run_opens_rendered_report(router, mock_host):
    await router.route(ExtensionNotification("metals-doctor-run", (DOCTOR_JSON,)))

    title, lines = mock_host.open_doctor.await_args.args
    assert title == "Metals Doctor"
    assert lines[0] == "# Metals Doctor"
    assert "### root" in lines


@pytest.mark.asyncio
async def test_doctor_reload_only_when_visible(router, mock_host):
    notification = ExtensionNotification("metals-doctor-reload", (DOCTOR_JSON,))

    await router.route(notification)
    mock_host.open_doctor.assert_not_called()

    mock_host.is_doctor_visible.return_value = True
    await router.route(notification)
    mock_host.open_doctor.assert_awaited_once()


@pytest.mark.asyncio
async def test_malformed_doctor_reports_error_and_keeps_routing(router, mock_host):
    await router.route(ExtensionNotification("metals-doctor-run", ("{not json",)))

    mock_host.open_doctor.assert_not_called()
    message, level = mock_host.show_message.await_args.args
    assert message.startswith("Unable to display Metals Doctor")
    assert level == "error"

    await router.route(ExtensionNotification("metals-logs-toggle"))
    mock_host.toggle_logs.assert_awaited_once()


# --- Simple commands and unknowns ---


@pytest.mark.asyncio
async def test_diagnostics_focus(router, mock_host):
    await router.handle_params({"command": "metals-diagnostics-focus"})
    mock_host.focus_diagnostics.assert_awaited_once()


@pytest.mark.asyncio
async def test_unknown_command_is_reported(router, mock_host):
    await router.handle_params({"command": "metals-new-thing", "arguments": [1]})
    mock_host.show_message.assert_awaited_once_with("Received unknown command: metals-new-thing")


@pytest.mark.asyncio
async def test_malformed_params_are_dropped(router, mock_host):
    await router.handle_params({"arguments": []})
    await router.handle_params("metals-logs-toggle")
    mock_host.show_message.assert_not_called()
    mock_host.toggle_logs.assert_not_called()


@pytest.mark.asyncio
async def test_host_failure_does_not_escape(router, mock_host):
    mock_host.focus_diagnostics.side_effect = RuntimeError("window gone")
    await router.route(ExtensionNotification("metals-diagnostics-focus"))
    await router.route(ExtensionNotification("metals-logs-toggle"))
    mock_host.toggle_logs.assert_awaited_once()

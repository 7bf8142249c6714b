# File: metals_client/router.py

"""Routes `metals/executeClientCommand` notifications to host effects.

The command string is decoded once into `ClientCommand`; dispatch goes
through a handler table that must cover every member. Commands this client
does not know are reported and dropped: the server may add commands before
the client learns about them, so an unknown command is never an error.
"""

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Dict, Optional

from metals_client.doctor import parse_doctor, render_doctor
from metals_client.errors import MalformedPayloadError
from metals_client.host import HostEditor
from metals_client.lsp.protocol import ExtensionNotification, parse_location

logger = logging.getLogger(__name__)

# Jumping right after focusing the target window made the host answer with
# "returned a response with an unknown request id" after a few invocations.
# Waiting briefly between the two calls avoids it.
GOTO_LOCATION_DELAY_SECONDS = 0.01


class ClientCommand(enum.Enum):
    GOTO_LOCATION = "metals-goto-location"
    DOCTOR_RUN = "metals-doctor-run"
    DOCTOR_RELOAD = "metals-doctor-reload"
    DIAGNOSTICS_FOCUS = "metals-diagnostics-focus"
    LOGS_TOGGLE = "metals-logs-toggle"

    @classmethod
    def decode(cls, command: str) -> Optional["ClientCommand"]:
        try:
            return cls(command)
        except ValueError:
            return None


Handler = Callable[[ExtensionNotification], Awaitable[None]]


class NotificationRouter:
    """Turns each extension notification into exactly one host-side effect."""

    def __init__(self, host: HostEditor, goto_delay: float = GOTO_LOCATION_DELAY_SECONDS):
        self.host = host
        self.goto_delay = goto_delay
        self._handlers: Dict[ClientCommand, Handler] = {
            ClientCommand.GOTO_LOCATION: self._goto_location,
            ClientCommand.DOCTOR_RUN: self._doctor_run,
            ClientCommand.DOCTOR_RELOAD: self._doctor_reload,
            ClientCommand.DIAGNOSTICS_FOCUS: self._diagnostics_focus,
            ClientCommand.LOGS_TOGGLE: self._logs_toggle,
        }
        missing = set(ClientCommand) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for client commands: {sorted(c.value for c in missing)}")

    async def handle_params(self, params) -> None:
        """Entry point registered for `metals/executeClientCommand`."""
        try:
            notification = ExtensionNotification.from_params(params)
        except MalformedPayloadError as e:
            logger.warning(f"Dropping malformed client command: {e}")
            return
        await self.route(notification)

    async def route(self, notification: ExtensionNotification) -> None:
        """Runs the handler for `notification`. Never raises."""
        command = ClientCommand.decode(notification.command)
        try:
            if command is None:
                await self.host.show_message(f"Received unknown command: {notification.command}")
                return
            await self._handlers[command](notification)
        except MalformedPayloadError as e:
            logger.error(f"Skipping '{notification.command}': {e}")
        except Exception as e:
            logger.exception(f"Client command '{notification.command}' failed: {e}")

    async def _goto_location(self, notification: ExtensionNotification) -> None:
        payload = notification.first_argument()
        if payload is None:
            logger.warning("metals-goto-location received without a location. Ignoring.")
            return
        try:
            uri, position = parse_location(payload)
        except MalformedPayloadError as e:
            logger.warning(f"Ignoring metals-goto-location: {e}")
            return
        await self.host.prepare_window_for_goto()
        await asyncio.sleep(self.goto_delay)
        await self.host.jump_to(uri, position)

    async def _open_doctor(self, notification: ExtensionNotification) -> None:
        try:
            report = parse_doctor(notification.first_argument())
        except MalformedPayloadError as e:
            await self.host.show_message(f"Unable to display Metals Doctor: {e}", "error")
            raise
        await self.host.open_doctor(report.title, render_doctor(report))

    async def _doctor_run(self, notification: ExtensionNotification) -> None:
        await self._open_doctor(notification)

    async def _doctor_reload(self, notification: ExtensionNotification) -> None:
        if await self.host.is_doctor_visible():
            await self._open_doctor(notification)

    async def _diagnostics_focus(self, notification: ExtensionNotification) -> None:
        await self.host.focus_diagnostics()

    async def _logs_toggle(self, notification: ExtensionNotification) -> None:
        await self.host.toggle_logs()

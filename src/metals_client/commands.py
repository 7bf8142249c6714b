# File: metals_client/commands.py

"""Host-visible `metals.*` commands and what they send to the server."""

import asyncio
import logging
from typing import Callable, Optional, Set

from metals_client.errors import LspResponseError, NoActiveSessionError
from metals_client.host import HostEditor

logger = logging.getLogger(__name__)

COMMAND_NAMESPACE = "metals."

SERVER_COMMANDS = (
    "build-import",
    "build-connect",
    "sources-scan",
    "doctor-run",
    "compile-cascade",
    "compile-cancel",
)
LOGS_TOGGLE = "logs-toggle"
RESTART_SERVER = "restartServer"


def qualified(name: str) -> str:
    """Prefixes a logical command name with the `metals.` namespace."""
    return COMMAND_NAMESPACE + name


class CommandTable:
    """Registers one host command per logical command name.

    The active session is looked up through `session_provider` at invocation
    time, so commands registered once keep working across restarts.
    """

    def __init__(self, host: HostEditor, session_provider: Callable[[], Optional[object]]):
        self.host = host
        self.session_provider = session_provider
        self._in_flight: Set[asyncio.Task] = set()

    def register(self) -> None:
        for name in SERVER_COMMANDS:
            self.host.register_command(qualified(name), self._callback(name))
        self.host.register_command(qualified(LOGS_TOGGLE), self.toggle_logs)

    def _callback(self, name: str):
        async def invoke_from_host() -> None:
            try:
                await self.invoke(name)
            except NoActiveSessionError as e:
                await self.host.show_message(str(e), "warning")

        return invoke_from_host

    async def invoke(self, name: str) -> None:
        """Sends `workspace/executeCommand` for `name`.

        The request runs in the background; only the send is awaited.

        Raises:
            NoActiveSessionError: If no session is live.
            KeyError: If `name` is not a server command.
        """
        if name not in SERVER_COMMANDS:
            raise KeyError(name)
        session = self.session_provider()
        if session is None or not session.is_active:
            raise NoActiveSessionError(qualified(name))
        await self.host.show_message(qualified(name))
        task = asyncio.create_task(self._execute(session, name), name=f"metals_{name}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _execute(self, session, name: str) -> None:
        try:
            await session.execute_command(name)
        except (NoActiveSessionError, LspResponseError, asyncio.TimeoutError) as e:
            logger.warning(f"Command {qualified(name)} failed: {e}")

    async def wait_idle(self) -> None:
        """Waits for every command request sent so far to finish."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def cancel_pending(self) -> None:
        """Cancels command requests still waiting for the server."""
        if not self._in_flight:
            return
        logger.info(f"Cancelling {len(self._in_flight)} pending command(s).")
        for task in list(self._in_flight):
            task.cancel()
        await self.wait_idle()

    async def toggle_logs(self) -> None:
        await self.host.toggle_logs()

# File: metals_client/session.py

"""The live process + channel pair connecting the client to Metals.

A `Session` is created and owned by the launch orchestrator. Other components
never see the process handle; they receive the session explicitly and only
use its send/receive surface. Once the process exits or the channel closes
the session is inactive and every send raises `NoActiveSessionError`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from metals_client.errors import NoActiveSessionError, ProcessStartError
from metals_client.host import HostEditor
from metals_client.lsp import protocol
from metals_client.lsp.client import DEFAULT_LSP_TIMEOUT, MetalsLspClient
from metals_client.lsp.features import MetalsFeatures, base_client_capabilities

logger = logging.getLogger(__name__)

METALS_MAIN_CLASS = "scala.meta.metals.Main"

# LSP MessageType -> host message level
_MESSAGE_LEVELS = {1: "error", 2: "warning", 3: "info", 4: "info"}


@dataclass(frozen=True)
class ServerLaunchConfig:
    """Everything needed to spawn the server, built once per activation.

    Attributes:
        runtime_path: The `java` executable.
        classpath: Classpath printed by the resolver.
        extra_args: JVM arguments placed before `-classpath`, in launch order.
        environment: Variables added to the inherited environment.
    """

    runtime_path: str
    classpath: str
    extra_args: Tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)

    def argv(self) -> List[str]:
        return [
            self.runtime_path,
            *self.extra_args,
            "-classpath",
            self.classpath,
            METALS_MAIN_CLASS,
        ]


class Session:
    """Owns one `MetalsLspClient` for the lifetime of a single server process."""

    def __init__(
        self,
        launch_config: ServerLaunchConfig,
        workspace_root: str,
        timeout: int = DEFAULT_LSP_TIMEOUT,
    ):
        self.launch_config = launch_config
        self.workspace_root = workspace_root
        self.client = MetalsLspClient(
            command=launch_config.argv(),
            cwd=workspace_root,
            env=launch_config.environment,
            timeout=timeout,
        )
        self.server_capabilities: Dict[str, Any] = {}

    @property
    def is_active(self) -> bool:
        return self.client.is_running

    async def start(self, features: MetalsFeatures) -> Dict[str, Any]:
        """Spawns the server and performs the initialize handshake.

        Args:
            features: Filled into the client capabilities, then updated from
                the server's answer.

        Returns:
            The server capabilities.

        Raises:
            ProcessStartError: If the process cannot be spawned or the
                handshake fails.
        """
        try:
            await self.client.start_server()
        except (FileNotFoundError, ConnectionError) as e:
            raise ProcessStartError(f"Failed to start Metals: {e}") from e

        capabilities = features.fill_client_capabilities(base_client_capabilities())
        try:
            self.server_capabilities = await self.client.initialize(
                capabilities, features.initialization_options()
            )
        except ConnectionError as e:
            raise ProcessStartError(f"Metals did not complete the LSP handshake: {e}") from e
        features.initialize(self.server_capabilities)
        return self.server_capabilities

    def install_default_handlers(self, host: HostEditor) -> None:
        """Answers the standard window/client messages Metals sends."""

        async def show_message(params: Any) -> None:
            params = params or {}
            level = _MESSAGE_LEVELS.get(params.get("type"), "info")
            await host.show_message(str(params.get("message", "")), level)

        async def log_message(params: Any) -> None:
            logger.info(f"Metals: {(params or {}).get('message', '')}")

        async def show_message_request(params: Any) -> Any:
            params = params or {}
            actions = params.get("actions") or []
            if not actions:
                await show_message(params)
                return None
            choice = await host.show_quickpick(
                [str(a.get("title", "")) for a in actions], str(params.get("message", ""))
            )
            return actions[choice] if choice is not None and 0 <= choice < len(actions) else None

        async def register_capability(params: Any) -> None:
            return None

        self.client.on_notification("window/showMessage", show_message)
        self.client.on_notification("window/logMessage", log_message)
        self.client.on_request("window/showMessageRequest", show_message_request)
        self.client.on_request("client/registerCapability", register_capability)

    def on_notification(self, method: str, handler) -> None:
        self.client.on_notification(method, handler)

    def on_request(self, method: str, handler) -> None:
        self.client.on_request(method, handler)

    def _require_active(self, action: str) -> None:
        if not self.is_active:
            raise NoActiveSessionError(action)

    async def send_request(self, method: str, params: Any = None) -> Any:
        self._require_active(method)
        try:
            return await self.client.send_request(method, params)
        except ConnectionError as e:
            raise NoActiveSessionError(method) from e

    async def send_notification(self, method: str, params: Any = None) -> None:
        self._require_active(method)
        try:
            await self.client.send_notification(method, params)
        except ConnectionError as e:
            raise NoActiveSessionError(method) from e

    async def execute_command(self, command: str, arguments: Optional[List[Any]] = None) -> Any:
        params: Dict[str, Any] = {"command": command}
        if arguments:
            params["arguments"] = arguments
        return await self.send_request(protocol.EXECUTE_COMMAND, params)

    async def close(self) -> None:
        await self.client.close()

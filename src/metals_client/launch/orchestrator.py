# File: metals_client/launch/orchestrator.py

"""Sequences an activation: detect Java, resolve, start, then wire the running session.

The orchestrator is the only owner of the `Session`. It walks the
`LaunchState` machine once per `activate()` call and never retries on its
own: after a failure it shows one actionable message and returns to `IDLE`,
waiting for `metals.restartServer` or a launch configuration change.
"""

import dataclasses
import enum
import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple

from metals_client.commands import CommandTable, RESTART_SERVER, qualified
from metals_client.config.loader import MetalsSettings, changed_launch_keys, get_metals_settings
from metals_client.decorations import DecorationStateManager
from metals_client.errors import (
    ConflictingToolchainError,
    DependencyResolutionError,
    JavaNotFoundError,
    ProcessStartError,
)
from metals_client.host import EVENT_FOCUS_GAINED, EVENT_FOCUS_LOST, BufferInfo, HostEditor
from metals_client.launch import resolver
from metals_client.launch.environment import (
    check_dotty_ide,
    get_java_options,
    java_executable,
    resolve_java_home,
)
from metals_client.launch.version import check_server_version
from metals_client.lsp import protocol
from metals_client.lsp.features import MetalsFeatures
from metals_client.router import NotificationRouter
from metals_client.session import ServerLaunchConfig, Session

logger = logging.getLogger(__name__)

OPEN_SETTINGS = "Open Settings"
IGNORE_FOR_NOW = "Ignore for now"
EXPAND_DECORATION_KEYMAP = "metals-expand-decoration"
PROXY_HINT = (
    "See https://scalameta.org/metals/docs/editors/vscode.html#http-proxy for instructions "
    "if you are using an HTTP proxy."
)
JAVA_NOT_FOUND_MESSAGE = (
    "Unable to find a Java 8 or Java 11 installation on this computer. "
    "To fix this problem, update the 'Java Home' setting to point to a Java 8 or Java 11 home directory"
)

SessionFactory = Callable[[ServerLaunchConfig, str, int], Session]


class LaunchState(enum.Enum):
    IDLE = "idle"
    PROBING_ENVIRONMENT = "probing-environment"
    RESOLVING_DEPENDENCIES = "resolving-dependencies"
    STARTING = "starting"
    RUNNING = "running"


def build_launch_args(
    client_name: str, java_options: Sequence[str], server_properties: Sequence[str]
) -> Tuple[str, ...]:
    """JVM arguments for the server, before `-classpath`.

    Server properties come last so they override base properties with the
    same key.
    """
    base_properties = [
        f"-Dmetals.client={client_name}",
        "-Dmetals.doctor-format=json",
        "-Xss4m",
        "-Xms100m",
    ]
    return tuple(base_properties + list(java_options) + list(server_properties))


def resolution_failure_message(settings: MetalsSettings, java_path: str) -> str:
    if settings.uses_default_version:
        return (
            "Failed to download Metals, make sure you have an internet connection and "
            f"the Java Home '{java_path}' is valid. You can configure the Java Home in the settings. "
            + PROXY_HINT
        )
    return (
        "Failed to download Metals, make sure you have an internet connection, "
        f"the Metals version '{settings.effective_server_version}' is correct and the Java Home "
        f"'{java_path}' is valid. You can configure the Metals version and Java Home in the settings. "
        + PROXY_HINT
    )


class LaunchOrchestrator:
    """Owns the single Session of one client activation.

    Attributes:
        state (LaunchState): Where the current activation is.
        session (Optional[Session]): The live session, set once `RUNNING`.
        features (MetalsFeatures): Capabilities negotiated with the server.
    """

    def __init__(
        self,
        host: HostEditor,
        workspace_root: str,
        settings: Optional[MetalsSettings] = None,
        session_factory: SessionFactory = Session,
    ):
        self.host = host
        self.workspace_root = workspace_root
        self.settings = settings or get_metals_settings()
        self.session_factory = session_factory
        self.state = LaunchState.IDLE
        self.session: Optional[Session] = None
        self.features = MetalsFeatures()
        self.router = NotificationRouter(host)
        self.decorations = DecorationStateManager(host, enabled=False)
        self.commands = CommandTable(host, lambda: self.session)
        self._host_bindings_registered = False
        self._keymap_registered = False

    # --- Activation ---

    async def activate(self) -> bool:
        """Runs one launch attempt.

        Returns:
            True if the server reached `RUNNING`. False if the attempt failed
            (the user was told why) or was refused because another launch is
            pending or active.
        """
        if self.state is not LaunchState.IDLE:
            logger.warning(f"Launch requested while {self.state.value}; ignoring.")
            return False

        self._register_host_bindings()
        java_path = ""
        # Leave IDLE before the first await so a concurrent launch is refused
        # while the version prompt is open.
        self.state = LaunchState.PROBING_ENVIRONMENT
        try:
            if await check_server_version(self.settings, self.host):
                self.settings = dataclasses.replace(
                    self.settings, server_version=self.settings.default_server_version
                )

            java_home = resolve_java_home(self.settings.java_home)
            dotty_ide = check_dotty_ide(self.workspace_root)
            if dotty_ide.enabled:
                raise ConflictingToolchainError(dotty_ide.path)
            java_path = java_executable(java_home)
            java_options = get_java_options(self.workspace_root)

            self.state = LaunchState.RESOLVING_DEPENDENCIES
            classpath, server_env = await self._resolve(java_path, java_options)

            self.state = LaunchState.STARTING
            launch_config = ServerLaunchConfig(
                runtime_path=java_path,
                classpath=classpath,
                extra_args=build_launch_args(
                    self.settings.client_name, java_options, self.settings.server_properties
                ),
                environment=server_env,
            )
            await self._start(launch_config)
            self.state = LaunchState.RUNNING
            await self.host.show_message("Metals is ready!")
            return True

        except JavaNotFoundError as e:
            logger.error(f"Java detection failed: {e}")
            choice = await self.host.show_quickpick([OPEN_SETTINGS, IGNORE_FOR_NOW], JAVA_NOT_FOUND_MESSAGE)
            if choice == 0:
                await self.host.open_settings()
        except ConflictingToolchainError as e:
            logger.warning(f"Not starting Metals: {e}")
            await self.host.show_message(
                "Metals will not start since Dotty is enabled for this workspace. "
                f"To enable Metals, remove the file {e.marker_path} and run "
                f"'{qualified(RESTART_SERVER)}'",
                "warning",
            )
        except DependencyResolutionError as e:
            message = resolution_failure_message(self.settings, java_path)
            if await self.host.show_prompt(f"{e}\n {message}\n Open Settings?"):
                await self.host.open_settings()
        except ProcessStartError as e:
            logger.error(f"Metals failed to start: {e}")
            await self.host.show_message(f"{e}", "error")
        except Exception as e:
            logger.exception(f"Unexpected error while launching Metals: {e}")
            await self.host.show_message(f"Metals failed to launch: {e}", "error")
        finally:
            if self.state is not LaunchState.RUNNING:
                self.state = LaunchState.IDLE
        return False

    async def _resolve(self, java_path: str, java_options: List[str]) -> Tuple[str, dict]:
        settings = self.settings
        properties = resolver.fetch_properties(settings.server_properties)
        if properties:
            await self.host.show_message(f"Additional server properties detected: {', '.join(properties)}")

        joined = resolver.join_custom_repositories(settings.custom_repositories)
        if resolver.REPOSITORY_SEPARATOR in joined:
            await self.host.show_message(f"Custom repositories detected: {joined}")

        command = resolver.build_fetch_command(
            java_path,
            java_options,
            settings.server_properties,
            settings.coursier_path,
            settings.effective_server_version,
        )
        classpath = await resolver.fetch_classpath(
            command,
            resolver.resolver_environment(joined),
            cwd=self.workspace_root,
            on_progress=lambda line: logger.info(f"Resolving Metals: {line}"),
        )
        return classpath, resolver.repositories_environment(joined)

    async def _start(self, launch_config: ServerLaunchConfig) -> None:
        session = self.session_factory(launch_config, self.workspace_root, self.settings.request_timeout)
        session.install_default_handlers(self.host)
        session.on_notification(protocol.EXECUTE_CLIENT_COMMAND, self.router.handle_params)
        session.on_notification(protocol.PUBLISH_DECORATIONS, self.decorations.handle_publish)
        session.on_request(protocol.INPUT_BOX, self._input_box)
        try:
            await session.start(self.features)
        except Exception:
            await session.close()
            raise
        self.session = session
        self.decorations.enabled = self.features.decoration_provider
        if self.features.decoration_provider and not self._keymap_registered:
            self.host.register_keymap(EXPAND_DECORATION_KEYMAP, self.decorations.show_hover)
            self._keymap_registered = True

    # --- Host wiring ---

    def _register_host_bindings(self) -> None:
        if self._host_bindings_registered:
            return
        self.host.register_command(qualified(RESTART_SERVER), self.restart)
        self.commands.register()
        self.host.on_event(EVENT_FOCUS_GAINED, self._on_focus_gained)
        self.host.on_event(EVENT_FOCUS_LOST, self._on_focus_lost)
        self._host_bindings_registered = True

    def active_session(self) -> Optional[Session]:
        if self.session is not None and self.session.is_active:
            return self.session
        return None

    async def _on_focus_gained(self, buffer: BufferInfo) -> None:
        await self.decorations.on_focus_gained(buffer, self.active_session())

    async def _on_focus_lost(self, buffer: BufferInfo) -> None:
        await self.decorations.on_focus_lost(buffer)

    async def _input_box(self, params: Any) -> dict:
        options = protocol.InputBoxOptions.from_params(params)
        response = await self.host.request_input(f"{options.prompt} ", options.value)
        return protocol.input_box_result(response)

    # --- Lifecycle ---

    async def restart(self) -> bool:
        """Stops the current server (if any) and runs a fresh activation."""
        if self.state not in (LaunchState.IDLE, LaunchState.RUNNING):
            logger.warning(f"Restart requested while {self.state.value}; ignoring.")
            return False
        await self.deactivate()
        return await self.activate()

    async def deactivate(self) -> None:
        """Cancels running commands and closes the session.

        Ignored while a launch is in progress; that launch owns the state.
        """
        if self.state not in (LaunchState.IDLE, LaunchState.RUNNING):
            logger.warning(f"Stop requested while {self.state.value}; ignoring.")
            return
        session, self.session = self.session, None
        self.state = LaunchState.IDLE
        await self.commands.cancel_pending()
        if session is not None:
            logger.info("Stopping Metals session.")
            await session.close()

    async def on_configuration_changed(self, settings: Optional[MetalsSettings] = None) -> bool:
        """Adopts new settings and offers a restart if launch keys changed.

        Returns:
            True if a restart was performed.
        """
        new_settings = settings or get_metals_settings()
        changed = changed_launch_keys(self.settings, new_settings)
        self.settings = new_settings
        if not changed:
            return False
        logger.info(f"Launch configuration changed: {', '.join(changed)}")
        if await self.host.show_prompt(
            "Server launch configuration change detected. Restart the server now?"
        ):
            return await self.restart()
        return False

# File: metals_client/errors.py

"""Exception types raised by the session layer.

Launch failures are caught at the orchestrator boundary and turned into a
single user-facing prompt; routing failures are caught by the router and
logged. None of these should ever escape into the host.
"""

from typing import Any, Dict, Optional


class MetalsClientError(Exception):
    """Base class for all errors raised by metals_client."""


class EnvironmentProbeError(MetalsClientError):
    """No usable Java runtime, or a conflicting toolchain is active."""


class JavaNotFoundError(EnvironmentProbeError):
    """No Java home could be resolved from the hint, JAVA_HOME, or PATH."""


class ConflictingToolchainError(EnvironmentProbeError):
    """A Dotty IDE marker file is present in the workspace.

    Attributes:
        marker_path (str): The marker file that must be removed before the
            server can start.
    """

    def __init__(self, marker_path: str):
        self.marker_path = marker_path
        super().__init__(f"Dotty IDE is enabled for this workspace ({marker_path}).")


class DependencyResolutionError(MetalsClientError):
    """The resolver subprocess failed to produce a classpath.

    Attributes:
        returncode (Optional[int]): Exit code of the resolver, or None if it
            could not be spawned at all.
        stderr_tail (str): Last lines of the resolver's diagnostic output.
    """

    def __init__(self, message: str, returncode: Optional[int] = None, stderr_tail: str = ""):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        super().__init__(message)


class ProcessStartError(MetalsClientError):
    """The server process could not be spawned or failed its handshake."""


class NoActiveSessionError(MetalsClientError):
    """A command needing the server was invoked while no session is live."""

    def __init__(self, action: str = "command"):
        self.action = action
        super().__init__(f"Cannot run '{action}': Metals is not running.")


class MalformedPayloadError(MetalsClientError):
    """A doctor or location payload from the server had the wrong shape."""


class LspResponseError(MetalsClientError):
    """Custom exception for LSP error responses.

    Attributes:
        code (Any): The error code from the LSP response. Defaults to "Unknown".
        message (str): The error message from the LSP response. Defaults to
            "Unknown error".
        data (Any): Optional additional data provided with the error.
    """

    def __init__(self, error_payload: Dict[str, Any]):
        self.code = error_payload.get("code", "Unknown")
        self.message = error_payload.get("message", "Unknown error")
        self.data = error_payload.get("data")
        super().__init__(f"LSP Error Code {self.code}: {self.message}")

# File: metals_client/lsp/features.py

"""Negotiation of the Metals experimental capabilities."""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class MetalsFeatures:
    """Advertises the client's Metals extensions and records what the server enabled.

    Attributes:
        decoration_provider (bool): Whether the server will push
            `metals/publishDecorations`. Only known after `initialize()`.
    """

    def __init__(self):
        self.decoration_provider = False

    def fill_client_capabilities(self, capabilities: Dict[str, Any]) -> Dict[str, Any]:
        """Adds the experimental client capabilities and returns `capabilities`."""
        experimental = capabilities.setdefault("experimental", {})
        experimental.update(
            {
                "decorationProvider": True,
                "didFocusProvider": True,
                "executeClientCommandProvider": True,
                "inputBoxProvider": True,
            }
        )
        return capabilities

    def initialization_options(self) -> Dict[str, Any]:
        return {
            "decorationProvider": True,
            "didFocusProvider": True,
            "executeClientCommandProvider": True,
            "inputBoxProvider": True,
            "doctorProvider": "json",
            "statusBarProvider": "show-message",
        }

    def initialize(self, server_capabilities: Dict[str, Any]) -> None:
        """Reads the experimental server capabilities from the initialize result."""
        experimental = server_capabilities.get("experimental") or {}
        self.decoration_provider = bool(experimental.get("decorationProvider"))
        logger.info(f"Server features: decorations={self.decoration_provider}")


def base_client_capabilities() -> Dict[str, Any]:
    """The standard client capabilities this session layer supports."""
    return {
        "textDocument": {
            "synchronization": {
                "dynamicRegistration": False,
                "willSave": False,
                "willSaveWaitUntil": False,
                "didSave": True,
            },
            "publishDiagnostics": {"relatedInformation": True},
        },
        "workspace": {
            "workspaceFolders": True,
            "executeCommand": {"dynamicRegistration": False},
            "didChangeConfiguration": {"dynamicRegistration": False},
        },
        "window": {"workDoneProgress": False},
    }

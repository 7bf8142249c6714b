# File: metals_client/host.py

"""Capability interface for the host editor.

Every UI effect the session layer produces goes through a `HostEditor`. The
orchestrator receives one at construction time, so the core can be driven by
a real editor bridge, the console host in `scripts/`, or a mock in tests.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence


# Host lifecycle events consumed by the session layer.
EVENT_FOCUS_GAINED = "BufWinEnter"
EVENT_FOCUS_LOST = "BufWinLeave"


@dataclass(frozen=True)
class BufferInfo:
    """A host buffer resolved to its document."""

    bufnr: int
    uri: str
    filetype: str


@dataclass(frozen=True)
class Position:
    """Zero-based LSP position."""

    line: int
    character: int

    @classmethod
    def from_lsp(cls, payload: Dict[str, Any]) -> "Position":
        return cls(line=int(payload["line"]), character=int(payload["character"]))


class HostEditor(Protocol):
    """What the session layer needs from the editor it runs in."""

    async def show_message(self, message: str, level: str = "info") -> None:
        """Shows a transient message. `level` is "info", "warning" or "error"."""
        ...

    async def show_quickpick(self, items: Sequence[str], title: str) -> Optional[int]:
        """Asks the user to pick one item. Returns its index or None."""
        ...

    async def show_prompt(self, message: str) -> bool:
        """Asks a yes/no question."""
        ...

    async def request_input(self, prompt: str, value: str = "") -> Optional[str]:
        """Asks for free text. None means the user cancelled."""
        ...

    async def open_settings(self) -> None:
        ...

    async def update_setting(self, key: str, value: Any) -> None:
        ...

    def register_command(self, name: str, callback: Callable[[], Any]) -> None:
        ...

    def register_keymap(self, name: str, callback: Callable[[], Any]) -> None:
        ...

    def on_event(self, event: str, callback: Callable[[BufferInfo], Any]) -> None:
        """Subscribes to a buffer lifecycle event (`EVENT_FOCUS_GAINED`/`LOST`)."""
        ...

    def current_document_uri(self) -> Optional[str]:
        ...

    def cursor_position(self) -> Optional[Position]:
        ...

    async def prepare_window_for_goto(self) -> None:
        """Moves focus out of side panels before a jump."""
        ...

    async def jump_to(self, uri: str, position: Position) -> None:
        ...

    async def open_doctor(self, title: str, lines: List[str]) -> None:
        ...

    async def is_doctor_visible(self) -> bool:
        ...

    async def focus_diagnostics(self) -> None:
        ...

    async def toggle_logs(self) -> None:
        ...

    async def render_decorations(self, uri: str, decorations: List[Any]) -> None:
        ...

    async def clear_decorations(self, uri: str) -> None:
        ...

    async def show_float(self, lines: List[str]) -> None:
        ...

    async def hide_float(self) -> None:
        ...

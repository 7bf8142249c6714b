# File: metals_client/lsp/protocol.py

"""Method names and payload shapes of the Metals protocol extensions.

Only the messages this client consumes or sends are modelled here. Parsing
functions raise `MalformedPayloadError` on shape errors so callers can skip
the single message without touching the session.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from metals_client.errors import MalformedPayloadError
from metals_client.host import Position

# --- Standard LSP methods used directly ---
EXECUTE_COMMAND = "workspace/executeCommand"

# --- Metals extensions ---
EXECUTE_CLIENT_COMMAND = "metals/executeClientCommand"
INPUT_BOX = "metals/inputBox"
DID_FOCUS_TEXT_DOCUMENT = "metals/didFocusTextDocument"
PUBLISH_DECORATIONS = "metals/publishDecorations"


@dataclass(frozen=True)
class ExtensionNotification:
    """Params of `metals/executeClientCommand`."""

    command: str
    arguments: Tuple[Any, ...] = ()

    @classmethod
    def from_params(cls, params: Any) -> "ExtensionNotification":
        if not isinstance(params, dict) or not isinstance(params.get("command"), str):
            raise MalformedPayloadError(f"Invalid executeClientCommand params: {params!r}")
        arguments = params.get("arguments") or []
        if not isinstance(arguments, list):
            arguments = [arguments]
        return cls(command=params["command"], arguments=tuple(arguments))

    def first_argument(self) -> Any:
        return self.arguments[0] if self.arguments else None


@dataclass(frozen=True)
class Range:
    start: Position
    end: Position

    @classmethod
    def from_lsp(cls, payload: Any) -> "Range":
        try:
            return cls(start=Position.from_lsp(payload["start"]), end=Position.from_lsp(payload["end"]))
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayloadError(f"Invalid range: {payload!r}") from e

    def contains_line(self, line: int) -> bool:
        return self.start.line <= line <= self.end.line


def parse_location(payload: Any) -> Tuple[str, Position]:
    """Extracts the target URI and start position of an LSP `Location`.

    Raises:
        MalformedPayloadError: If the payload is not a location.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("uri"), str):
        raise MalformedPayloadError(f"Invalid location: {payload!r}")
    return payload["uri"], Range.from_lsp(payload.get("range")).start


@dataclass(frozen=True)
class InputBoxOptions:
    """Params of the `metals/inputBox` request."""

    prompt: str = ""
    value: str = ""

    @classmethod
    def from_params(cls, params: Any) -> "InputBoxOptions":
        if not isinstance(params, dict):
            return cls()
        return cls(
            prompt=str(params.get("prompt") or ""),
            value=str(params.get("value") or ""),
        )


@dataclass(frozen=True)
class DecorationOptions:
    """One entry of `metals/publishDecorations`.

    Attributes:
        range: Where the decoration is attached.
        hover_message: Markdown shown when the decoration is expanded.
        content_text: The inline text rendered after the range.
    """

    range: Range
    hover_message: str = ""
    content_text: str = ""

    @classmethod
    def from_lsp(cls, payload: Any) -> "DecorationOptions":
        if not isinstance(payload, dict):
            raise MalformedPayloadError(f"Invalid decoration: {payload!r}")
        hover = payload.get("hoverMessage")
        if isinstance(hover, dict):
            hover = hover.get("value", "")
        after = ((payload.get("renderOptions") or {}).get("after") or {})
        return cls(
            range=Range.from_lsp(payload.get("range")),
            hover_message=str(hover or ""),
            content_text=str(after.get("contentText") or ""),
        )


@dataclass(frozen=True)
class PublishDecorationsParams:
    uri: str
    options: List[DecorationOptions] = field(default_factory=list)

    @classmethod
    def from_params(cls, params: Any) -> "PublishDecorationsParams":
        if not isinstance(params, dict) or not isinstance(params.get("uri"), str):
            raise MalformedPayloadError(f"Invalid publishDecorations params: {params!r}")
        options = params.get("options") or []
        if not isinstance(options, list):
            raise MalformedPayloadError("publishDecorations 'options' must be a list.")
        return cls(uri=params["uri"], options=[DecorationOptions.from_lsp(o) for o in options])


def input_box_result(response: Optional[str]) -> Dict[str, Any]:
    """Builds the `metals/inputBox` response for a user answer."""
    if response is None:
        return {"cancelled": True}
    return {"value": response}

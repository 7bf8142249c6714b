# File: metals_client/decorations.py

"""Keeps per-document decoration state in sync with the server and the editor.

Each `metals/publishDecorations` push carries the full set for one document,
so state for that URI is replaced wholesale. Worksheet documents lose their
decorations when their buffer is hidden; the server re-publishes them when
the worksheet is focused again.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from metals_client.errors import MalformedPayloadError, NoActiveSessionError
from metals_client.host import BufferInfo, HostEditor
from metals_client.lsp import protocol
from metals_client.lsp.protocol import DecorationOptions, PublishDecorationsParams

logger = logging.getLogger(__name__)

SUPPORTED_FILETYPE = "scala"
WORKSHEET_SUFFIX = ".worksheet.sc"

DecorationRangeId = Tuple[int, int, int, int]


def range_id(decoration: DecorationOptions) -> DecorationRangeId:
    r = decoration.range
    return (r.start.line, r.start.character, r.end.line, r.end.character)


def is_worksheet(uri: str) -> bool:
    return uri.endswith(WORKSHEET_SUFFIX)


class DecorationStateManager:
    """Holds the last-known decorations per document URI.

    Attributes:
        enabled (bool): Whether the server negotiated decoration support. When
            False, pushes and focus-lost events are ignored.
    """

    def __init__(self, host: HostEditor, enabled: bool = True):
        self.host = host
        self.enabled = enabled
        self._states: Dict[str, Dict[DecorationRangeId, DecorationOptions]] = {}
        self._hover_uri: Optional[str] = None

    def decorations_for(self, uri: str) -> Dict[DecorationRangeId, DecorationOptions]:
        return dict(self._states.get(uri, {}))

    async def handle_publish(self, params: Any) -> None:
        """Handler for `metals/publishDecorations`."""
        if not self.enabled:
            return
        try:
            publish = PublishDecorationsParams.from_params(params)
        except MalformedPayloadError as e:
            logger.warning(f"Dropping malformed decorations: {e}")
            return
        current_uri = self.host.current_document_uri()
        if current_uri is None or current_uri != publish.uri:
            logger.debug(f"Ignoring decorations for {publish.uri}; current document is {current_uri}.")
            return
        await self.set_decorations(publish)

    async def set_decorations(self, publish: PublishDecorationsParams) -> None:
        """Replaces all decorations of `publish.uri` and renders them."""
        self._states[publish.uri] = {range_id(d): d for d in publish.options}
        rendered: List[DecorationOptions] = list(self._states[publish.uri].values())
        logger.debug(f"Rendering {len(rendered)} decorations for {publish.uri}")
        await self.host.render_decorations(publish.uri, rendered)

    async def clear_decorations(self, uri: str) -> None:
        self._states.pop(uri, None)
        await self.host.clear_decorations(uri)
        if self._hover_uri == uri:
            await self.host.hide_float()
            self._hover_uri = None

    async def on_focus_gained(self, buffer: BufferInfo, session) -> None:
        """Tells the server which Scala document is focused.

        Both `.scala` and `.sc` buffers carry the `scala` filetype, which is
        what matters for decorations. `session` may be None when the server
        is not running; the event is then dropped.
        """
        if buffer.filetype != SUPPORTED_FILETYPE:
            return
        if session is None:
            logger.debug(f"No session; not sending didFocus for {buffer.uri}")
            return
        try:
            await session.send_notification(protocol.DID_FOCUS_TEXT_DOCUMENT, buffer.uri)
        except NoActiveSessionError as e:
            logger.debug(f"didFocus not sent: {e}")

    async def on_focus_lost(self, buffer: BufferInfo) -> None:
        if self.enabled and is_worksheet(buffer.uri):
            await self.clear_decorations(buffer.uri)

    async def show_hover(self) -> None:
        """Shows the full hover text of the decoration on the cursor line."""
        uri = self.host.current_document_uri()
        position = self.host.cursor_position()
        if uri is None or position is None:
            return
        for decoration in self._states.get(uri, {}).values():
            if decoration.range.contains_line(position.line) and decoration.hover_message:
                self._hover_uri = uri
                await self.host.show_float(decoration.hover_message.splitlines())
                return
        logger.debug(f"No decoration at {uri}:{position.line}")

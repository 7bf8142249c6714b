# File: scripts/run_metals_session.py

"""Launches Metals for a workspace with a terminal standing in for the editor.

Usage:
    python scripts/run_metals_session.py /path/to/scala/project

Messages are printed, prompts are read from stdin. Type a command name
(e.g. `metals.doctor-run`) to invoke it, or `quit` to stop the server.
"""

import asyncio
import logging
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Sequence

from dotenv import load_dotenv

# --- Add src to path to allow imports without installing ---
script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
src_dir = os.path.join(project_root, "src")
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)
# --- End Path Setup ---

from metals_client.host import BufferInfo, Position  # noqa: E402
from metals_client.launch.orchestrator import LaunchOrchestrator  # noqa: E402

load_dotenv()

log_level = os.getenv("LOGLEVEL", "INFO").upper()
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    force=True,
)
logger = logging.getLogger("RunMetalsSession")


async def _ask(prompt: str) -> str:
    return await asyncio.get_running_loop().run_in_executor(None, input, prompt)


class ConsoleHost:
    """A minimal `HostEditor` backed by stdin/stdout."""

    def __init__(self):
        self.commands: Dict[str, Callable[[], Any]] = {}
        self.events: Dict[str, List[Callable[[BufferInfo], Any]]] = {}
        self.logs_visible = False
        self.doctor_visible = False

    async def show_message(self, message: str, level: str = "info") -> None:
        print(f"[{level}] {message}")

    async def show_quickpick(self, items: Sequence[str], title: str) -> Optional[int]:
        print(title)
        for index, item in enumerate(items, start=1):
            print(f"  {index}. {item}")
        answer = (await _ask("> ")).strip()
        if answer.isdigit() and 1 <= int(answer) <= len(items):
            return int(answer) - 1
        return None

    async def show_prompt(self, message: str) -> bool:
        return (await _ask(f"{message} [y/N] ")).strip().lower() in ("y", "yes")

    async def request_input(self, prompt: str, value: str = "") -> Optional[str]:
        answer = await _ask(f"{prompt}[{value}] ")
        return answer or value or None

    async def open_settings(self) -> None:
        print("Edit config.yml (or set METALS_* environment variables) and restart.")

    async def update_setting(self, key: str, value: Any) -> None:
        print(f"Set metals.{key} = {value!r} in config.yml to persist this change.")

    def register_command(self, name: str, callback: Callable[[], Any]) -> None:
        self.commands[name] = callback

    def register_keymap(self, name: str, callback: Callable[[], Any]) -> None:
        self.commands[name] = callback

    def on_event(self, event: str, callback: Callable[[BufferInfo], Any]) -> None:
        self.events.setdefault(event, []).append(callback)

    def current_document_uri(self) -> Optional[str]:
        return None

    def cursor_position(self) -> Optional[Position]:
        return None

    async def prepare_window_for_goto(self) -> None:
        pass

    async def jump_to(self, uri: str, position: Position) -> None:
        print(f"Goto {uri}:{position.line + 1}:{position.character + 1}")

    async def open_doctor(self, title: str, lines: List[str]) -> None:
        self.doctor_visible = True
        print("\n".join(lines))

    async def is_doctor_visible(self) -> bool:
        return self.doctor_visible

    async def focus_diagnostics(self) -> None:
        print("(diagnostics list)")

    async def toggle_logs(self) -> None:
        self.logs_visible = not self.logs_visible
        logging.getLogger("metals_client").setLevel(logging.DEBUG if self.logs_visible else logging.INFO)

    async def render_decorations(self, uri: str, decorations: List[Any]) -> None:
        for decoration in decorations:
            print(f"{uri}:{decoration.range.start.line + 1} {decoration.content_text}")

    async def clear_decorations(self, uri: str) -> None:
        pass

    async def show_float(self, lines: List[str]) -> None:
        print("\n".join(lines))

    async def hide_float(self) -> None:
        pass


async def main(workspace_root: str) -> int:
    host = ConsoleHost()
    orchestrator = LaunchOrchestrator(host, workspace_root)
    if not await orchestrator.activate():
        logger.error("Metals did not start.")
        return 1
    try:
        while orchestrator.active_session() is not None:
            line = (await _ask("metals> ")).strip()
            if line in ("quit", "exit"):
                break
            callback = host.commands.get(line)
            if callback is None:
                print(f"Unknown command. Available: {', '.join(sorted(host.commands))}")
                continue
            await callback()
    finally:
        await orchestrator.deactivate()
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__, file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(main(os.path.abspath(sys.argv[1]))))

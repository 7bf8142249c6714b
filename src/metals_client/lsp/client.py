# File: metals_client/lsp/client.py

"""Provides an asynchronous client for talking to the Metals language server.

This module defines the `MetalsLspClient` class, responsible for managing the
server subprocess, handling Language Server Protocol (LSP) communication over
stdio (JSON-RPC with Content-Length headers), correlating requests with
responses, and dispatching server notifications and server-to-client requests
to registered handlers in the order the server emitted them.
"""

import asyncio
import json
import logging
import os
import pathlib
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from metals_client.errors import LspResponseError

logger = logging.getLogger(__name__)

# --- Constants ---
CONTENT_LENGTH_HEADER = b"Content-Length: "
HEADER_SEPARATOR = b"\r\n\r\n"
DEFAULT_LSP_TIMEOUT = 30  # Seconds for typical LSP request/response
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

NotificationHandler = Callable[[Any], Awaitable[None]]
RequestHandler = Callable[[Any], Awaitable[Any]]


class MetalsLspClient:
    """Manages communication with a language server process via LSP over stdio.

    Handles process startup, message framing (JSON-RPC over stdio with
    Content-Length headers), request/response correlation, and dispatching of
    incoming notifications and requests using asyncio.

    Attributes:
        command (List[str]): Executable followed by its arguments.
        env (Optional[Dict[str, str]]): Environment for the server process. None
            inherits the current environment.
        cwd (str): Working directory for the server process.
        timeout (int): Default timeout in seconds for LSP requests.
        process (Optional[asyncio.subprocess.Process]): The server subprocess.
            Initialized after `start_server()` is called.
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: str,
        env: Optional[Mapping[str, str]] = None,
        timeout: int = DEFAULT_LSP_TIMEOUT,
    ):
        """Initializes the MetalsLspClient.

        Args:
            command (Sequence[str]): The executable and arguments used to spawn
                the server.
            cwd (str): The directory the server process runs in, normally the
                workspace root.
            env (Optional[Mapping[str, str]]): Extra environment variables
                layered over `os.environ`.
            timeout (int): The default timeout in seconds for waiting for LSP
                responses. Defaults to `DEFAULT_LSP_TIMEOUT`.
        """
        self.command = list(command)
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.timeout = timeout
        self.process: Optional[asyncio.subprocess.Process] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.reader: Optional[asyncio.StreamReader] = None
        self._message_id_counter = 1
        self._pending_requests: Dict[int, asyncio.Future] = {}
        self._notification_handlers: Dict[str, NotificationHandler] = {}
        self._request_handlers: Dict[str, RequestHandler] = {}
        self._request_tasks: List[asyncio.Task] = []
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def is_running(self) -> bool:
        """True while the process is alive and the channel has not been closed."""
        return (
            not self._closed
            and self.process is not None
            and self.process.returncode is None
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        """Registers the coroutine handling notifications for `method`."""
        self._notification_handlers[method] = handler

    def on_request(self, method: str, handler: RequestHandler) -> None:
        """Registers the coroutine answering server-to-client requests for `method`."""
        self._request_handlers[method] = handler

    async def start_server(self) -> None:
        """Starts the server subprocess and establishes communication.

        Raises:
            FileNotFoundError: If the executable does not exist.
            ConnectionError: If the subprocess fails to start or its stdio
                streams are unavailable.
        """
        if self.process and self.process.returncode is None:
            logger.warning("Language server process already running.")
            return

        logger.info(f"Starting language server in {self.cwd}: {' '.join(self.command)}")
        subprocess_env = os.environ.copy()
        if self.env:
            subprocess_env.update(self.env)
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=subprocess_env,
            )
        except FileNotFoundError:
            logger.error(f"Server executable not found at '{self.command[0]}'.")
            raise
        except OSError as e:
            logger.exception(f"Failed to start language server: {e}")
            raise ConnectionError(f"Failed to start language server: {e}") from e

        self.reader = self.process.stdout
        self.writer = self.process.stdin
        if not self.reader or not self.writer:
            await self.close()
            raise ConnectionError("Failed to get stdout/stdin streams from subprocess.")

        self._stderr_task = asyncio.create_task(self._read_stderr(), name="lsp_stderr_reader")
        self._reader_task = asyncio.create_task(
            self._message_reader_loop(), name="lsp_message_reader"
        )
        logger.info("Language server started successfully.")

    async def _read_stderr(self) -> None:
        """Logs the server's stderr line by line until EOF."""
        if not self.process or not self.process.stderr:
            logger.warning("Stderr stream not available for reading.")
            return
        try:
            while True:
                line = await self.process.stderr.readline()
                if not line:
                    logger.debug("Stderr stream EOF reached.")
                    break
                logger.warning(f"Server STDERR: {line.decode('utf-8', errors='replace').rstrip()}")
        except asyncio.CancelledError:
            logger.debug("Stderr reader task cancelled.")
        except Exception as e:
            if not self._closed and self.process and self.process.returncode is None:
                logger.error(f"Error reading language server stderr: {e}")

    async def _read_message(self) -> Optional[Dict[str, Any]]:
        """Reads a single LSP message (header + JSON body) from the server's stdout.

        Returns:
            Optional[Dict[str, Any]]: The parsed JSON message, or None if the body
            was not valid JSON or the stream reached EOF.

        Raises:
            ConnectionError: If the connection closes in the middle of a message
                or the header is invalid.
        """
        if not self.reader or self.reader.at_eof():
            logger.debug("LSP reader is None or at EOF.")
            return None

        header_str = ""
        json_body_str = ""
        try:
            content_length = -1
            while True:
                line_bytes = await self.reader.readline()
                if not line_bytes:
                    if content_length == -1 and not header_str:
                        return None  # Clean EOF between messages
                    raise asyncio.IncompleteReadError(b"", None)
                line = line_bytes.decode("ascii").strip()
                if not line:
                    break  # Blank line terminates the header block
                header_str += line + "\n"
                if line.lower().startswith("content-length:"):
                    content_length = int(line.split(":", 1)[1].strip())
                if len(header_str) > 4096:
                    raise ValueError("Excessively long LSP header received.")

            if content_length < 0:
                raise ValueError(f"Content-Length header not found: {header_str!r}")

            json_body_bytes = await self.reader.readexactly(content_length)
            json_body_str = json_body_bytes.decode("utf-8")
            return json.loads(json_body_str)

        except asyncio.IncompleteReadError as e:
            if not self._closed:
                logger.error(f"Server closed connection unexpectedly while reading: {e}")
            raise ConnectionError("LSP connection closed unexpectedly.") from e
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode JSON from server: {e}\nReceived Body: {json_body_str!r}")
            return None
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"Error parsing LSP message header: {e}. Header received: {header_str!r}")
            raise ConnectionError(f"Invalid LSP header: {e}") from e

    async def _message_reader_loop(self) -> None:
        """Continuously reads and dispatches messages from the server's stdout.

        Based on the message structure (presence/absence of 'id' and 'method'):
        1.  Responses complete the matching pending request Future.
        2.  Notifications are awaited one at a time in arrival order by their
            registered handler. Handler failures are logged and do not stop
            the loop.
        3.  Server-to-client requests are answered from a separate task so a
            slow handler (e.g. waiting on user input) does not block reading.

        On exit, all pending request Futures are cancelled.
        """
        logger.debug("Starting LSP message reader loop.")
        try:
            while self.process and self.process.returncode is None and not self._closed:
                try:
                    message = await self._read_message()
                except ConnectionError:
                    logger.warning("Connection error in reader loop. Exiting.")
                    break

                if message is None:
                    if self.reader is None or self.reader.at_eof():
                        logger.info("Server stdout closed. Exiting reader loop.")
                        break
                    continue

                msg_id = message.get("id")
                msg_method = message.get("method")

                if msg_id is not None and msg_method is None:
                    self._handle_response(msg_id, message)
                elif msg_method is not None and msg_id is None:
                    await self._dispatch_notification(msg_method, message.get("params"))
                elif msg_method is not None and msg_id is not None:
                    task = asyncio.create_task(
                        self._answer_request(msg_id, msg_method, message.get("params")),
                        name=f"lsp_request_{msg_method}",
                    )
                    self._request_tasks.append(task)
                    task.add_done_callback(self._request_tasks.remove)
                else:
                    logger.warning(f"Received message with unknown structure: {message}")

        except asyncio.CancelledError:
            logger.debug("LSP message reader loop cancelled.")
        except Exception as e:
            if not self._closed:
                logger.exception(f"Unexpected error in LSP message reader loop: {e}")
        finally:
            logger.info("LSP message reader loop finished.")
            for req_id, future in list(self._pending_requests.items()):
                if not future.done():
                    future.set_exception(
                        ConnectionError(f"LSP reader loop exited while request {req_id} was pending.")
                    )
                self._pending_requests.pop(req_id, None)

    def _handle_response(self, msg_id: Any, message: Dict[str, Any]) -> None:
        try:
            request_id = int(msg_id)
        except (TypeError, ValueError):
            logger.warning(f"Received response with non-integer ID '{msg_id}', ignoring.")
            return
        future = self._pending_requests.pop(request_id, None)
        if future is None:
            logger.warning(f"Received response for ID {request_id}, but it was not pending.")
            return
        if future.done():
            logger.warning(f"Received response for already finished request ID {request_id}")
            return
        if "error" in message:
            logger.debug(f"Received error response for ID {request_id}")
            future.set_exception(LspResponseError(message["error"]))
        else:
            logger.debug(f"Received result response for ID {request_id}")
            future.set_result(message.get("result"))

    async def _dispatch_notification(self, method: str, params: Any) -> None:
        handler = self._notification_handlers.get(method)
        if handler is None:
            logger.debug(f"Ignoring unhandled notification: {method}")
            return
        logger.debug(f"Dispatching notification: {method}")
        try:
            await handler(params)
        except Exception as e:
            logger.exception(f"Handler for notification '{method}' failed: {e}")

    async def _answer_request(self, msg_id: Any, method: str, params: Any) -> None:
        handler = self._request_handlers.get(method)
        if handler is None:
            logger.warning(f"Received request from server (Method: {method}, ID: {msg_id}) with no handler.")
            response: Dict[str, Any] = {
                "jsonrpc": "2.0",
                "id": msg_id,
                "error": {"code": METHOD_NOT_FOUND, "message": f"Unhandled method {method}"},
            }
        else:
            try:
                result = await handler(params)
                response = {"jsonrpc": "2.0", "id": msg_id, "result": result}
            except Exception as e:
                logger.exception(f"Handler for server request '{method}' failed: {e}")
                response = {
                    "jsonrpc": "2.0",
                    "id": msg_id,
                    "error": {"code": INTERNAL_ERROR, "message": str(e)},
                }
        try:
            await self._write_message(response)
        except ConnectionError as e:
            logger.warning(f"Could not answer server request '{method}': {e}")

    async def _write_message(self, message: Dict[str, Any]) -> None:
        """Formats and writes a JSON-RPC message to the server's stdin.

        Raises:
            ConnectionError: If the writer is unavailable or the pipe is broken.
        """
        if not self.writer or self.writer.is_closing():
            raise ConnectionError("LSP writer is not available or closing.")

        json_body = json.dumps(message).encode("utf-8")
        header = CONTENT_LENGTH_HEADER + str(len(json_body)).encode("ascii") + HEADER_SEPARATOR
        try:
            self.writer.write(header)
            self.writer.write(json_body)
            await self.writer.drain()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.error(f"Connection error writing LSP message: {e}")
            raise ConnectionError(f"Connection error writing LSP message: {e}") from e

    async def send_request(self, method: str, params: Any = None) -> Any:
        """Sends an LSP request and waits asynchronously for its response.

        Args:
            method (str): The LSP method name (e.g., "initialize").
            params (Any): The request parameters. Defaults to an empty dict.

        Returns:
            Any: The 'result' field from the LSP response payload.

        Raises:
            ConnectionError: If the client is closed, the server is not running,
                or the connection breaks before a response arrives.
            asyncio.TimeoutError: If no response arrives within `timeout`.
            LspResponseError: If the server answers with an error payload.
        """
        if self._closed:
            raise ConnectionError("Client is closed.")
        if not self.process or self.process.returncode is not None:
            raise ConnectionError("Language server process is not running.")

        request_id = self._message_id_counter
        self._message_id_counter += 1
        request = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params if params is not None else {},
        }
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            logger.debug(f"Sending request {request_id}: {method}")
            await self._write_message(request)
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Timeout waiting for response to request {request_id} ({method}).")
            raise
        except LspResponseError as e:
            logger.warning(f"Request {request_id} ({method}) failed with LSP Error: {e}")
            raise
        finally:
            self._pending_requests.pop(request_id, None)

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Sends an LSP notification (fire-and-forget).

        Raises:
            ConnectionError: If the client is closed, the server is not running,
                or writing fails.
        """
        if self._closed:
            raise ConnectionError("Client is closed.")
        if not self.process or self.process.returncode is not None:
            raise ConnectionError("Language server process is not running.")

        notification = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params if params is not None else {},
        }
        logger.debug(f"Sending notification: {method}")
        await self._write_message(notification)

    async def initialize(
        self,
        capabilities: Dict[str, Any],
        initialization_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Performs the LSP initialization handshake.

        Sends `initialize` with the given client capabilities and the working
        directory as root, then the `initialized` notification.

        Returns:
            Dict[str, Any]: The server capabilities. Empty if the server sent none.

        Raises:
            ConnectionError: If the handshake fails for any reason. The client
                is closed before raising.
        """
        logger.info("Sending LSP initialize request.")
        root = pathlib.Path(self.cwd)
        init_params: Dict[str, Any] = {
            "processId": os.getpid(),
            "rootUri": root.as_uri(),
            "rootPath": str(root),
            "capabilities": capabilities,
            "trace": "off",
            "workspaceFolders": [{"uri": root.as_uri(), "name": root.name}],
        }
        if initialization_options is not None:
            init_params["initializationOptions"] = initialization_options
        try:
            response = await self.send_request("initialize", init_params)
            await self.send_notification("initialized", {})
            logger.info("LSP Handshake Complete.")
            return (response or {}).get("capabilities", {}) or {}
        except Exception as e:
            logger.exception(f"LSP Initialization failed: {e}")
            await self.close()
            raise ConnectionError(f"LSP Initialization failed: {e}") from e

    async def shutdown(self) -> None:
        """Sends the `shutdown` request. Errors are logged; closing proceeds regardless."""
        if self._closed or not self.process or self.process.returncode is not None:
            return
        logger.info("Sending LSP shutdown request.")
        try:
            await self.send_request("shutdown")
        except (ConnectionError, asyncio.TimeoutError, LspResponseError) as e:
            logger.warning(f"Error during LSP shutdown request (proceeding to exit/close): {e}")

    async def exit(self) -> None:
        """Sends the `exit` notification."""
        if self._closed or not self.process or self.process.returncode is not None:
            return
        logger.info("Sending LSP exit notification.")
        try:
            await self.send_notification("exit")
        except ConnectionError as e:
            logger.warning(f"Connection error during LSP exit notification (may be expected): {e}")

    async def close(self) -> None:
        """Closes the connection and terminates the server process.

        Attempts `shutdown`/`exit` if the process is alive, cancels the reader
        tasks, closes stdin, then terminates (and if needed kills) the process.
        Idempotent.
        """
        if self._closed:
            return
        if self.process and self.process.returncode is None and self.writer:
            try:
                await asyncio.wait_for(self.shutdown(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Graceful shutdown timed out, proceeding.")
            await self.exit()
        self._closed = True
        logger.info("Closing LSP client connection and terminating server.")

        current = asyncio.current_task()
        tasks = [t for t in (self._reader_task, self._stderr_task, *self._request_tasks) if t]
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()

        if self.writer and not self.writer.is_closing():
            try:
                self.writer.close()
            except (OSError, RuntimeError) as e:
                logger.warning(f"Error closing LSP writer: {e}")
        self.writer = None
        self.reader = None

        proc = self.process
        if proc and proc.returncode is None:
            try:
                proc.terminate()
                return_code = await asyncio.wait_for(proc.wait(), timeout=5.0)
                logger.info(f"Language server process terminated with code {return_code}.")
            except asyncio.TimeoutError:
                logger.warning("Language server did not terminate after 5s, killing.")
                try:
                    proc.kill()
                    await proc.wait()
                except ProcessLookupError:
                    logger.warning("Process already killed or finished.")
            except ProcessLookupError:
                logger.warning("Process already finished before termination attempt.")

        for req_id, future in list(self._pending_requests.items()):
            if not future.done():
                future.cancel()
            self._pending_requests.pop(req_id, None)

        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)
        self._reader_task = None
        self._stderr_task = None
        logger.info("LSP client closed.")

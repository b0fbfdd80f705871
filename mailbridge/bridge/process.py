"""stdio to HTTP bridge that lets a tool-calling agent reach the loopback gateway.

Handshake methods are answered locally; everything else is POSTed to the
gateway with the bearer token from the token file. Every input line runs as
its own task, so responses are written in completion order.
"""

from __future__ import annotations

import json
import logging
import re
import signal
from pathlib import Path
from typing import Any, TextIO

import anyio
import httpx
from anyio import CancelScope
from mcp.types import (
    PARSE_ERROR,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    ToolsCapability,
)

from mailbridge.bridge.stdio import LineWriter, iter_lines, open_stdio
from mailbridge.config import BridgeSettings
from mailbridge.gateway.encoding import strip_control_chars

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "mailbridge"
SERVER_VERSION = "1.0.0"

#: Every bridge-side failure is reported with this code, distinct from tool errors.
BRIDGE_ERROR_CODE = PARSE_ERROR

_LOCAL_NOTIFICATIONS = frozenset({"notifications/initialized", "notifications/cancelled"})
_UNESCAPED_CR = re.compile(r"(?<!\\)\r")
_UNESCAPED_LF = re.compile(r"(?<!\\)\n")
_UNESCAPED_TAB = re.compile(r"(?<!\\)\t")


class BridgeError(Exception):
    """A failure between the bridge and the gateway, reported to the agent."""


# ── Helpers ────────────────────────────────────────────────────────────────────


def sanitize_json(data: str) -> str:
    """Second-pass repair for a gateway body that failed to parse.

    Drops stray control characters and escapes raw CR/LF/TAB that ended up
    inside JSON strings.
    """
    sanitized = strip_control_chars(data)
    sanitized = _UNESCAPED_CR.sub(r"\\r", sanitized)
    sanitized = _UNESCAPED_LF.sub(r"\\n", sanitized)
    return _UNESCAPED_TAB.sub(r"\\t", sanitized)


def parse_gateway_body(raw: bytes) -> Any:
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        logger.debug("Gateway body failed to parse; retrying after sanitising")
    try:
        return json.loads(sanitize_json(text))
    except ValueError as exc:
        raise BridgeError(f"Invalid JSON from gateway: {exc}") from exc


def read_token(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise BridgeError(
            f"Cannot read auth token from {path}: {exc}. Is the mailbridge gateway running?"
        ) from exc


def initialize_result() -> dict[str, Any]:
    result = InitializeResult(
        protocolVersion=PROTOCOL_VERSION,
        capabilities=ServerCapabilities(tools=ToolsCapability()),
        serverInfo=Implementation(name=SERVER_NAME, version=SERVER_VERSION),
    )
    return result.model_dump(by_alias=True, exclude_none=True)


def error_response(message_id: Any, exc: BaseException) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": message_id,
        "error": {"code": BRIDGE_ERROR_CODE, "message": f"Bridge error: {exc}"},
    }


class PendingRequestCounter:
    """Number of input lines whose task has not finished yet."""

    def __init__(self) -> None:
        self._count = 0
        self._drained: anyio.Event | None = None

    @property
    def count(self) -> int:
        return self._count

    def increment(self) -> None:
        self._count += 1

    def decrement(self) -> None:
        self._count -= 1
        if self._count == 0 and self._drained is not None:
            self._drained.set()

    async def wait_until_idle(self) -> None:
        while self._count > 0:
            self._drained = anyio.Event()
            await self._drained.wait()


# ── Bridge ─────────────────────────────────────────────────────────────────────


class StdioBridge:
    """Reads JSON-RPC lines, answers or forwards each, writes responses.

    ``transport`` lets tests substitute an ``httpx.MockTransport``.

    Usage::

        bridge = StdioBridge(BridgeSettings.from_env())
        exit_code = anyio.run(bridge.run, sys.stdin, sys.stdout)
    """

    def __init__(
        self,
        settings: BridgeSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._pending = PendingRequestCounter()

    @property
    def pending(self) -> PendingRequestCounter:
        return self._pending

    async def run(self, instream: TextIO, outstream: TextIO, handle_signals: bool = True) -> int:
        """Serve until stdin closes and all tasks finish, or a signal arrives. Returns 0."""
        writer = LineWriter(outstream)
        async with httpx.AsyncClient(
            timeout=self._settings.timeout, transport=self._transport
        ) as client:
            async with anyio.create_task_group() as tg:
                if handle_signals:
                    tg.start_soon(self._watch_signals, tg.cancel_scope)
                async for line in iter_lines(instream):
                    if not line.strip():
                        continue
                    self._pending.increment()
                    tg.start_soon(self._process_line, line, client, writer)
                await self._pending.wait_until_idle()
                logger.info("Input closed and no requests pending; exiting")
                tg.cancel_scope.cancel()
        return 0

    async def handle_message(self, message: dict[str, Any], client: httpx.AsyncClient) -> dict[str, Any] | None:
        """Return the response for one message, or None when nothing is to be written."""
        method = message.get("method")
        rpc_id = message.get("id")

        if method == "initialize":
            return {"jsonrpc": "2.0", "id": rpc_id, "result": initialize_result()}
        if method in _LOCAL_NOTIFICATIONS:
            return None
        if method == "resources/list":
            return {"jsonrpc": "2.0", "id": rpc_id, "result": {"resources": []}}
        if method == "prompts/list":
            return {"jsonrpc": "2.0", "id": rpc_id, "result": {"prompts": []}}
        return await self._forward(message, client)

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _process_line(self, line: str, client: httpx.AsyncClient, writer: LineWriter) -> None:
        message_id: Any = None
        notification = False
        try:
            try:
                message = json.loads(line)
            except ValueError as exc:
                raise BridgeError(f"Invalid JSON-RPC input: {exc}") from exc
            if not isinstance(message, dict):
                raise BridgeError("Invalid JSON-RPC input: expected an object")
            message_id = message.get("id")
            notification = message_id is None

            response = await self.handle_message(message, client)
            if response is not None and not notification:
                await writer.write_message(response)
        except Exception as exc:  # noqa: BLE001
            # A failed request must never take the bridge down.
            logger.warning("Request %r failed: %s", message_id, exc)
            if not notification:
                await self._write_error(writer, message_id, exc)
        finally:
            self._pending.decrement()

    async def _write_error(self, writer: LineWriter, message_id: Any, exc: Exception) -> None:
        try:
            await writer.write_message(error_response(message_id, exc))
        except Exception as write_exc:  # noqa: BLE001
            logger.error("Could not write error response for %r: %s", message_id, write_exc)

    async def _forward(self, message: dict[str, Any], client: httpx.AsyncClient) -> Any:
        token = read_token(self._settings.token_path)
        body = json.dumps(message, ensure_ascii=False).encode("utf-8")
        headers = {
            "Content-Type": "application/json; charset=utf-8",
            "Authorization": f"Bearer {token}",
        }
        try:
            with anyio.fail_after(self._settings.timeout):
                response = await client.post(self._settings.url, content=body, headers=headers)
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise BridgeError("Request to gateway timed out") from exc
        except httpx.HTTPError as exc:
            raise BridgeError(
                f"Connection failed: {exc}. Is the mailbridge gateway running?"
            ) from exc

        if response.status_code != 200:
            raise BridgeError(
                f"Gateway returned HTTP {response.status_code}: {response.text.strip()}"
            )
        return parse_gateway_body(response.content)

    async def _watch_signals(self, scope: CancelScope) -> None:
        try:
            with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
                async for signum in signals:
                    logger.info("Received %s, exiting immediately", signal.Signals(signum).name)
                    scope.cancel()
                    return
        except (NotImplementedError, RuntimeError, ValueError):
            # No signal support here (Windows, or not the main thread).
            logger.debug("Signal handlers unavailable", exc_info=True)


def main(settings: BridgeSettings | None = None) -> int:
    """Run the bridge on the process's stdio. Returns the exit status."""
    bridge = StdioBridge(settings or BridgeSettings.from_env())
    stdin, stdout = open_stdio()
    return anyio.run(bridge.run, stdin, stdout)

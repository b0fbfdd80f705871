"""Loopback HTTP gateway — JSON-RPC ``tools/list`` and ``tools/call`` over ``POST /``."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from mcp.types import CallToolResult, TextContent
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route

from mailbridge.config import DEFAULT_PORT
from mailbridge.gateway.auth import AuthToken, BearerAuthMiddleware, HostGuardMiddleware
from mailbridge.gateway.encoding import sanitize_for_transport, sanitize_payload
from mailbridge.tools.catalog import tools_payload
from mailbridge.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

#: JSON-RPC error code for a tool call that raised, as opposed to a transport failure.
TOOL_ERROR_CODE = -32000

LOOPBACK_HOST = "127.0.0.1"

#: Every method reaches the handler, which answers non-POST with its own 405.
ROUTE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class ByteCharJSONResponse(Response):
    """JSON response written one byte per character.

    Every string placed in the payload must already have been through
    ``sanitize_for_transport``; the latin-1 encode then produces UTF-8.
    """

    media_type = "application/json; charset=utf-8"

    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, separators=(",", ":")).encode("latin-1")


class GatewayServer:
    """The embedded HTTP listener in front of the tool dispatcher.

    Owns the AuthToken: it is issued (and the token file written) during
    lifespan startup, before uvicorn binds the socket, and revoked on
    shutdown. Requests pass the Host guard, then the bearer check, then the
    method and JSON body checks, in that order.

    Usage::

        gateway = GatewayServer(ToolDispatcher(store), AuthToken(token_path))
        gateway.run()              # blocking, one listener per process
        # or mount gateway.app in a test client
    """

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        token: AuthToken,
        port: int = DEFAULT_PORT,
        host: str = LOOPBACK_HOST,
    ) -> None:
        self._dispatcher = dispatcher
        self._token = token
        self._port = port
        self._host = host
        self.app = Starlette(
            routes=[Route("/", self._handle_rpc, methods=ROUTE_METHODS)],
            middleware=[
                Middleware(HostGuardMiddleware),
                Middleware(BearerAuthMiddleware, token=token),
            ],
            lifespan=self._lifespan,
        )

    @property
    def token(self) -> AuthToken:
        return self._token

    @property
    def port(self) -> int:
        return self._port

    def run(self, log_level: str = "info") -> None:
        """Serve until interrupted."""
        config = uvicorn.Config(
            self.app,
            host=self._host,
            port=self._port,
            lifespan="on",
            log_level=log_level.lower(),
        )
        uvicorn.Server(config).run()

    # ── Lifespan ───────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        self._token.issue()
        logger.info("Gateway listening on %s:%d", self._host, self._port)
        try:
            yield
        finally:
            self._token.revoke()
            logger.info("Gateway stopped; token revoked")

    # ── Request handling ───────────────────────────────────────────────────────

    async def _handle_rpc(self, request: Request) -> Response:
        if request.method != "POST":
            return PlainTextResponse("POST only", status_code=405)

        try:
            message = json.loads(await request.body())
        except ValueError:
            return PlainTextResponse("Invalid JSON", status_code=400)
        if not isinstance(message, dict):
            return PlainTextResponse("Invalid JSON", status_code=400)

        rpc_id = sanitize_payload(message.get("id"))
        method = message.get("method")
        params = message.get("params") or {}

        if method not in ("tools/list", "tools/call"):
            return PlainTextResponse(f"Unknown method: {method}", status_code=404)

        try:
            if method == "tools/list":
                result: dict[str, Any] = {"tools": sanitize_payload(tools_payload())}
            else:
                result = await self._call_tool(params)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Tool call failed")
            return ByteCharJSONResponse(
                {
                    "jsonrpc": "2.0",
                    "id": rpc_id,
                    "error": {"code": TOOL_ERROR_CODE, "message": sanitize_for_transport(str(exc))},
                }
            )
        return ByteCharJSONResponse({"jsonrpc": "2.0", "id": rpc_id, "result": result})

    async def _call_tool(self, params: Any) -> dict[str, Any]:
        if not isinstance(params, dict) or not params.get("name"):
            raise ValueError("Missing tool name")
        name = str(params["name"])
        output = await self._dispatcher.call(name, params.get("arguments") or {})
        text = json.dumps(sanitize_payload(output), indent=2, ensure_ascii=False)
        result = CallToolResult(content=[TextContent(type="text", text=text)])
        return result.model_dump(by_alias=True, exclude_none=True)

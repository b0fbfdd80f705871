"""Bearer-token lifecycle and the request guards in front of the gateway."""

import hmac
import logging
import os
import re
import secrets
from pathlib import Path

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

#: Host header values accepted after the port is stripped (compared lower-cased).
ALLOWED_HOSTS = frozenset({"localhost", "127.0.0.1", "[::1]"})

_TOKEN_BYTES = 32
_PORT_SUFFIX = re.compile(r":\d+$")


class AuthToken:
    """The gateway's shared secret and the file that hands it to the bridge.

    One instance per server lifetime: ``issue()`` at startup generates a fresh
    token and overwrites the token file (owner read/write only), ``revoke()``
    at shutdown invalidates it. A bridge still holding the previous token gets
    401 until it rereads the file.

    Usage::

        token = AuthToken(Path("~/.mailbridge-token").expanduser())
        token.issue()
        token.matches(request.headers.get("Authorization", ""))
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._value: str | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def value(self) -> str | None:
        return self._value

    def issue(self) -> str:
        """Generate a new token and write it to the token file."""
        value = secrets.token_hex(_TOKEN_BYTES)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as fh:
            fh.write(value)
        # O_CREAT's mode only applies to new files
        os.chmod(self._path, 0o600)
        self._value = value
        logger.info("Auth token written to %s", self._path)
        return value

    def matches(self, authorization: str) -> bool:
        """True iff the header is exactly ``Bearer <current token>``."""
        if self._value is None:
            return False
        return hmac.compare_digest(
            authorization.encode("utf-8"), f"Bearer {self._value}".encode("ascii")
        )

    def revoke(self) -> None:
        """Invalidate the token and remove the file if it still holds it."""
        value, self._value = self._value, None
        if value is None:
            return
        try:
            if self._path.read_text(encoding="ascii").strip() == value:
                self._path.unlink()
        except (OSError, UnicodeDecodeError):
            # Already gone or rewritten by a newer server.
            logger.debug("Token file %s not removed", self._path, exc_info=True)


def strip_port(host_header: str) -> str:
    """Drop a trailing ``:port``, keeping a bracketed IPv6 literal intact."""
    if host_header.startswith("["):
        end = host_header.find("]")
        return host_header[: end + 1] if end != -1 else host_header
    return _PORT_SUFFIX.sub("", host_header)


def is_allowed_host(host_header: str) -> bool:
    return strip_port(host_header.strip()).lower() in ALLOWED_HOSTS


class HostGuardMiddleware(BaseHTTPMiddleware):
    """Reject requests whose Host header is not a loopback name (DNS rebinding)."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        host = request.headers.get("host", "")
        if not is_allowed_host(host):
            logger.warning("Rejected request with Host header %r", host)
            return PlainTextResponse("Forbidden: invalid Host header", status_code=403)
        return await call_next(request)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, token: AuthToken) -> None:
        super().__init__(app)
        self._token = token

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._token.matches(request.headers.get("authorization", "")):
            logger.warning("Rejected request with missing or stale bearer token")
            return PlainTextResponse(
                "Unauthorized: invalid or missing Bearer token", status_code=401
            )
        return await call_next(request)

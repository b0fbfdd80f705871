"""Runtime settings for the gateway and the stdio bridge, read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8765
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_TOKEN_PATH = Path.home() / ".mailbridge-token"
DEFAULT_MAIL_ROOT = Path.home() / "Mail"

#: Names accepted by both logging and uvicorn.
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _env_path(name: str, default: Path) -> Path:
    raw = os.environ.get(name, "").strip()
    return Path(raw).expanduser() if raw else default


def _env_number(name: str, default: float, cast: type = float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using default %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Non-positive %s=%r; using default %s", name, raw, default)
        return default
    return value


def _env_log_level(default: str) -> str:
    raw = os.environ.get("MAILBRIDGE_LOG_LEVEL", "").strip().upper()
    if not raw:
        return default
    if raw not in LOG_LEVELS:
        logger.warning("Invalid MAILBRIDGE_LOG_LEVEL=%r; using default %s", raw, default)
        return default
    return raw


@dataclass
class GatewaySettings:
    """Settings for ``mailbridge serve``."""

    port: int = DEFAULT_PORT
    token_path: Path = DEFAULT_TOKEN_PATH
    mail_root: Path = DEFAULT_MAIL_ROOT
    drafts_dir: Path | None = None
    editor_command: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> GatewaySettings:
        mail_root = _env_path("MAILBRIDGE_MAIL_ROOT", DEFAULT_MAIL_ROOT)
        drafts_raw = os.environ.get("MAILBRIDGE_DRAFTS_DIR", "").strip()
        return cls(
            port=int(_env_number("MAILBRIDGE_PORT", DEFAULT_PORT, int)),
            token_path=_env_path("MAILBRIDGE_TOKEN_PATH", DEFAULT_TOKEN_PATH),
            mail_root=mail_root,
            drafts_dir=Path(drafts_raw).expanduser() if drafts_raw else None,
            editor_command=os.environ.get("MAILBRIDGE_EDITOR") or None,
            log_level=_env_log_level("INFO"),
        )

    @property
    def resolved_drafts_dir(self) -> Path:
        return self.drafts_dir or self.mail_root / "drafts"


@dataclass
class BridgeSettings:
    """Settings for ``mailbridge bridge``.

    The bridge only ever talks to a loopback host; ``host`` exists so the
    IPv6 or numeric loopback forms can be chosen explicitly.
    """

    host: str = "localhost"
    port: int = DEFAULT_PORT
    token_path: Path = DEFAULT_TOKEN_PATH
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> BridgeSettings:
        return cls(
            host=os.environ.get("MAILBRIDGE_HOST", "localhost").strip() or "localhost",
            port=int(_env_number("MAILBRIDGE_PORT", DEFAULT_PORT, int)),
            token_path=_env_path("MAILBRIDGE_TOKEN_PATH", DEFAULT_TOKEN_PATH),
            timeout=_env_number("MAILBRIDGE_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
            log_level=_env_log_level("WARNING"),
        )

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

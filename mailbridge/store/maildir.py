"""Local mail store backed by a directory of Maildirs.

Layout under the mail root::

    accounts.json          optional: accounts, identities, default account
    <account>/cur new tmp  one Maildir per account (the account's Inbox)
    <account>/.Sub/...     Maildir++ subfolders, nested physically
    drafts/                compose-window output (.eml files for review)

Without ``accounts.json`` every Maildir directory under the root becomes an
account with no identities.
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
import threading
import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import formataddr, formatdate, parsedate_to_datetime
from html.parser import HTMLParser
from pathlib import Path

from mailbridge.store.base import BodyCallback
from mailbridge.store.types import (
    Account,
    AttachmentRef,
    ComposeFields,
    Folder,
    Identity,
    MessageBody,
    StoredHeader,
)

logger = logging.getLogger(__name__)

URI_SCHEME = "maildir://"
INBOX_NAME = "Inbox"
ACCOUNTS_FILE = "accounts.json"
_RESERVED_DIRS = frozenset({"drafts", "contacts", "calendars"})
RFC822 = "message/rfc822"


# ── HTML stripper ───────────────────────────────────────────────────────────────


class _HTMLStripper(HTMLParser):
    """Collects visible text nodes, skipping script and style content."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in ("script", "style"):
            self._skip += 1
        elif tag in ("br", "p", "div", "tr", "li"):
            self._parts.append("\n")

    def handle_endtag(self, tag: str) -> None:
        if tag in ("script", "style") and self._skip:
            self._skip -= 1

    def handle_data(self, data: str) -> None:
        if not self._skip:
            self._parts.append(data)

    def get_text(self) -> str:
        lines = (line.strip() for line in "".join(self._parts).splitlines())
        return "\n".join(line for line in lines if line)


def strip_html(text: str) -> str:
    stripper = _HTMLStripper()
    stripper.feed(text)
    stripper.close()
    return stripper.get_text()


# ── Helpers ─────────────────────────────────────────────────────────────────────


def _is_maildir(path: Path) -> bool:
    return (path / "cur").is_dir() and (path / "new").is_dir()


def _split_key(filename: str) -> tuple[str, str]:
    """Split a Maildir filename into ``(key, flags)``."""
    key, _, info = filename.partition(":")
    flags = info[2:] if info.startswith("2,") else ""
    return key, flags


def _header_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        value = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _header_text(message: EmailMessage, name: str) -> str:
    value = message.get(name)
    return str(value).strip() if value is not None else ""


def _attachment_bytes(part: EmailMessage) -> bytes:
    """Decoded attachment payload; an attached email is serialised whole."""
    if part.get_content_type() == RFC822:
        return part.get_content().as_bytes()
    payload = part.get_payload(decode=True)
    return payload if payload is not None else part.as_bytes()


def _reap(process: subprocess.Popen) -> None:
    status = process.wait()
    if status:
        logger.warning("Editor exited with status %d", status)


# ── Store ───────────────────────────────────────────────────────────────────────


class MaildirStore:
    """MailStore implementation over local Maildirs.

    The compose window is a draft file: ``open_compose_window`` writes an
    ``.eml`` into the drafts directory and, if an editor command is
    configured, opens it there. Nothing is ever sent from here.

    Usage::

        store = MaildirStore(Path("~/Mail").expanduser())
        for account in store.list_accounts():
            ...
    """

    def __init__(
        self,
        root: Path,
        drafts_dir: Path | None = None,
        editor_command: str | None = None,
    ) -> None:
        self._root = root
        self._drafts_dir = drafts_dir or root / "drafts"
        self._editor_command = editor_command
        self._accounts, self._account_paths, self._default_key = self._load_accounts()
        self._parser = BytesParser(policy=policy.default)

    @property
    def drafts_dir(self) -> Path:
        return self._drafts_dir

    # ── Accounts ───────────────────────────────────────────────────────────────

    def list_accounts(self) -> list[Account]:
        return list(self._accounts)

    def default_account(self) -> Account | None:
        for account in self._accounts:
            if account.key == self._default_key:
                return account
        return self._accounts[0] if self._accounts else None

    def account_for_folder(self, folder: Folder) -> Account | None:
        for account in self._accounts:
            if account.key == folder.account_key:
                return account
        return None

    # ── Folders ────────────────────────────────────────────────────────────────

    def enumerate_folders(self, account_key: str, parent: Folder | None = None) -> list[Folder]:
        base = self._account_paths.get(account_key)
        if base is None:
            return []
        if parent is None:
            return [Folder(uri=f"{URI_SCHEME}{account_key}", name=INBOX_NAME, account_key=account_key)]

        path = self._folder_path(parent)
        if path is None:
            return []
        children = []
        for entry in sorted(path.iterdir()):
            if entry.name.startswith(".") and _is_maildir(entry):
                name = entry.name[1:]
                children.append(Folder(uri=f"{parent.uri}/{name}", name=name, account_key=account_key))
        return children

    def get_folder(self, uri: str) -> Folder | None:
        if not uri.startswith(URI_SCHEME):
            return None
        account_key, *segments = uri[len(URI_SCHEME):].strip("/").split("/")
        if account_key not in self._account_paths:
            return None
        folder = Folder(
            uri=f"{URI_SCHEME}{account_key}" + "".join(f"/{s}" for s in segments),
            name=segments[-1] if segments else INBOX_NAME,
            account_key=account_key,
        )
        return folder if self._folder_path(folder) is not None else None

    def refresh_folder(self, folder: Folder) -> None:
        # Local Maildirs have nothing to synchronise.
        return None

    # ── Messages ───────────────────────────────────────────────────────────────

    def enumerate_messages(self, folder: Folder) -> Iterator[StoredHeader]:
        for header, _ in self.iter_message_files(folder):
            yield header

    def iter_message_files(self, folder: Folder) -> Iterator[tuple[StoredHeader, Path]]:
        """Yield each message's header together with the file it lives in."""
        path = self._folder_path(folder)
        if path is None:
            return
        for file_path, key, flags in self._iter_files(path):
            try:
                with file_path.open("rb") as fh:
                    message = self._parser.parse(fh, headersonly=True)
            except OSError as exc:
                logger.warning("Cannot read %s: %s", file_path, exc)
                continue
            yield self._to_header(message, key, flags), file_path

    def load_body(self, folder: Folder, message_id: str) -> MessageBody | None:
        """Parse a stored message; None when it cannot be found or read."""
        for header, file_path in self.iter_message_files(folder):
            if header.message_id == message_id:
                return self.read_body(file_path)
        return None

    def read_body(self, file_path: Path) -> MessageBody | None:
        try:
            with file_path.open("rb") as fh:
                message = self._parser.parse(fh)
        except OSError as exc:
            logger.warning("Cannot read %s: %s", file_path, exc)
            return None

        attachments = [
            AttachmentRef(
                name=part.get_filename() or "attachment",
                content_type=part.get_content_type(),
                data=_attachment_bytes(part),
            )
            for part in message.iter_attachments()
        ]
        return MessageBody(text=self._plain_text(message), attachments=attachments)

    def fetch_body(self, folder: Folder, header: StoredHeader, callback: BodyCallback) -> None:
        callback(self.load_body(folder, header.message_id))

    # ── Compose ────────────────────────────────────────────────────────────────

    def open_compose_window(self, fields: ComposeFields) -> None:
        message = self._build_draft(fields)
        self._drafts_dir.mkdir(parents=True, exist_ok=True)
        path = self._drafts_dir / f"{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:8]}.eml"
        path.write_bytes(message.as_bytes(policy=policy.SMTP))
        logger.info("Draft written to %s", path)

        if self._editor_command:
            command = [*shlex.split(self._editor_command), str(path)]
            logger.info("Opening draft with %s", command[0])
            process = subprocess.Popen(command, stdin=subprocess.DEVNULL, start_new_session=True)
            threading.Thread(target=_reap, args=(process,), name="mailbridge-editor", daemon=True).start()

    # ── Internal helpers ───────────────────────────────────────────────────────

    def _load_accounts(self) -> tuple[list[Account], dict[str, Path], str | None]:
        config_path = self._root / ACCOUNTS_FILE
        if config_path.is_file():
            with config_path.open(encoding="utf-8") as fh:
                data = json.load(fh)
            accounts: list[Account] = []
            paths: dict[str, Path] = {}
            for entry in data.get("accounts", []):
                key = str(entry["key"])
                identities = [
                    Identity(key=str(i["key"]), email=str(i.get("email", "")), name=str(i.get("name", "")))
                    for i in entry.get("identities", [])
                ]
                default_identity = next(
                    (str(i["key"]) for i in entry.get("identities", []) if i.get("default")), None
                )
                accounts.append(
                    Account(
                        key=key,
                        name=str(entry.get("name", key)),
                        type=str(entry.get("type", "maildir")),
                        identities=identities,
                        default_identity_key=default_identity,
                    )
                )
                paths[key] = self._root / str(entry.get("path", key))
            return accounts, paths, data.get("default")

        discovered = (
            sorted(p for p in self._root.iterdir() if p.name not in _RESERVED_DIRS and _is_maildir(p))
            if self._root.is_dir()
            else []
        )
        logger.info("No %s; discovered %d Maildir account(s)", ACCOUNTS_FILE, len(discovered))
        return (
            [Account(key=p.name, name=p.name, type="maildir") for p in discovered],
            {p.name: p for p in discovered},
            None,
        )

    def _folder_path(self, folder: Folder) -> Path | None:
        base = self._account_paths.get(folder.account_key)
        if base is None:
            return None
        relative = folder.uri[len(f"{URI_SCHEME}{folder.account_key}"):].strip("/")
        path = base
        for segment in filter(None, relative.split("/")):
            path = path / f".{segment}"
        return path if _is_maildir(path) else None

    @staticmethod
    def _iter_files(path: Path) -> Iterator[tuple[Path, str, str]]:
        for sub in ("cur", "new"):
            for entry in sorted((path / sub).iterdir()):
                if entry.is_file() and not entry.name.startswith("."):
                    key, flags = _split_key(entry.name)
                    yield entry, key, flags

    @staticmethod
    def _message_id(message: EmailMessage, key: str) -> str:
        raw = _header_text(message, "Message-ID").strip("<>")
        return raw or key

    def _to_header(self, message: EmailMessage, key: str, flags: str) -> StoredHeader:
        return StoredHeader(
            message_id=self._message_id(message, key),
            subject=_header_text(message, "Subject"),
            author=_header_text(message, "From"),
            recipients=_header_text(message, "To"),
            cc_list=_header_text(message, "Cc"),
            date=_header_date(_header_text(message, "Date")),
            read="S" in flags,
            flagged="F" in flags,
        )

    @staticmethod
    def _plain_text(message: EmailMessage) -> str | None:
        part = message.get_body(preferencelist=("plain", "html"))
        if part is None:
            return None
        try:
            content = part.get_content()
        except (LookupError, UnicodeError, ValueError) as exc:
            logger.warning("Cannot decode body part: %s", exc)
            return None
        if part.get_content_subtype() == "html":
            return strip_html(content)
        return content

    @staticmethod
    def _build_draft(fields: ComposeFields) -> EmailMessage:
        message = EmailMessage()
        if fields.identity is not None:
            message["From"] = formataddr((fields.identity.name, fields.identity.email))
        for name, value in (("To", fields.to), ("Cc", fields.cc), ("Bcc", fields.bcc)):
            if value:
                message[name] = value
        message["Subject"] = fields.subject
        message["Date"] = formatdate(localtime=True)
        if fields.references:
            message["References"] = fields.references
        for name, value in fields.headers.items():
            message[name] = value
        message["X-Unsent"] = "1"
        message.set_content(fields.body, subtype="html")

        for attachment in fields.attachments:
            data = attachment.data if attachment.data is not None else attachment.path.read_bytes()
            if attachment.content_type == RFC822:
                inner = BytesParser(policy=policy.default).parsebytes(data)
                message.add_attachment(inner, filename=attachment.name)
                continue
            maintype, _, subtype = attachment.content_type.partition("/")
            message.add_attachment(
                data,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.name,
            )
        return message

"""Outgoing field sets for compose, reply and forward.

Every path ends in ``MailStore.open_compose_window``: the user reviews and
sends the message themselves, nothing here transmits mail.
"""

from __future__ import annotations

import html
import logging
import mimetypes
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from mailbridge.store.base import MailStore
from mailbridge.store.types import (
    AttachmentRef,
    ComposeFields,
    Folder,
    Identity,
    MessageBody,
    StoredHeader,
)

logger = logging.getLogger(__name__)

_DOCUMENT = '<html><head><meta charset="UTF-8"></head><body>{}</body></html>'
# Comma-separated address list where commas inside quoted display names don't split.
_ADDRESS_ITEM = re.compile(r'(?:[^,"]|"[^"]*")+')
_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")


# ── Body formatting ────────────────────────────────────────────────────────────


def escape_html(text: str) -> str:
    return html.escape(text, quote=False)


def format_body_html(body: str | None, is_html: bool) -> str:
    """Turn a caller-supplied body into an HTML fragment.

    Plain text is escaped with newlines as ``<br>``. HTML is passed through
    with newlines dropped and non-ASCII replaced by numeric character
    references.
    """
    if is_html:
        text = (body or "").replace("\n", "")
        return "".join(f"&#{ord(c)};" if ord(c) > 127 else c for c in text)
    return escape_html(body or "").replace("\n", "<br>")


def wrap_document(fragment: str) -> str:
    return _DOCUMENT.format(fragment)


def _local_date(value: datetime | None) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M") if value else ""


# ── Recipients ─────────────────────────────────────────────────────────────────


def split_addresses(value: str | None) -> list[str]:
    return [item.strip() for item in _ADDRESS_ITEM.findall(value or "") if item.strip()]


def bare_address(address: str) -> str:
    match = _ANGLE_ADDRESS.search(address)
    return (match.group(1) if match else address).strip().lower()


def reply_all_cc(header: StoredHeader, own_email: str | None) -> str:
    """Union of the original To and Cc, minus our own address and duplicates."""
    own = (own_email or "").lower()
    seen: set[str] = set()
    unique: list[str] = []
    for address in split_addresses(header.recipients) + split_addresses(header.cc_list):
        bare = bare_address(address)
        if (own and bare == own) or bare in seen:
            continue
        seen.add(bare)
        unique.append(address)
    return ", ".join(unique)


# ── Identity ───────────────────────────────────────────────────────────────────


def find_identity(store: MailStore, email_or_key: str | None) -> Identity | None:
    if not email_or_key:
        return None
    lower = email_or_key.lower()
    for account in store.list_accounts():
        for identity in account.identities:
            if identity.key == email_or_key or identity.email.lower() == lower:
                return identity
    return None


def resolve_identity(
    store: MailStore, sender: str | None, folder: Folder | None = None
) -> tuple[Identity | None, str]:
    """Return ``(identity, warning)``.

    Falls back to the default identity of the folder's account, or of the
    default account when there is no folder context. The warning is non-empty
    only when an explicit sender could not be matched.
    """
    identity = find_identity(store, sender)
    if identity is not None:
        return identity, ""

    account = store.account_for_folder(folder) if folder is not None else store.default_account()
    fallback = account.default_identity if account is not None else None
    warning = f"unknown identity: {sender}, using default" if sender else ""
    if warning:
        logger.info("Sender %r not found; falling back to %s", sender, fallback)
    return fallback, warning


# ── Attachments ────────────────────────────────────────────────────────────────


def resolve_attachments(paths: Any) -> tuple[list[AttachmentRef], list[str]]:
    """Return ``(attached, failed)``; a missing file never aborts the compose."""
    attached: list[AttachmentRef] = []
    failed: list[str] = []
    if not isinstance(paths, (list, tuple)):
        return attached, failed
    for raw in paths:
        try:
            path = Path(str(raw)).expanduser()
            exists = path.is_file()
        except (OSError, ValueError):
            exists = False
        if not exists:
            failed.append(str(raw))
            continue
        content_type, _ = mimetypes.guess_type(path.name)
        attached.append(
            AttachmentRef(
                name=path.name,
                content_type=content_type or "application/octet-stream",
                path=path.resolve(),
            )
        )
    return attached, failed


# ── Builder ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ComposeRequest:
    """Arguments shared by the compose tools; reply/forward fill the message fields."""

    to: str = ""
    subject: str = ""
    body: str = ""
    cc: str = ""
    bcc: str = ""
    is_html: bool = False
    sender: str | None = None
    attachments: list[str] = field(default_factory=list)
    message_id: str = ""
    folder_path: str = ""
    reply_all: bool = False

    @classmethod
    def from_arguments(cls, args: dict[str, Any]) -> ComposeRequest:
        attachments = args.get("attachments")
        return cls(
            to=str(args.get("to") or ""),
            subject=str(args.get("subject") or ""),
            body=str(args.get("body") or ""),
            cc=str(args.get("cc") or ""),
            bcc=str(args.get("bcc") or ""),
            is_html=bool(args.get("isHtml")),
            sender=args.get("from") or None,
            attachments=list(attachments) if isinstance(attachments, (list, tuple)) else [],
            message_id=str(args.get("messageId") or ""),
            folder_path=str(args.get("folderPath") or ""),
            reply_all=bool(args.get("replyAll")),
        )


@dataclass
class ComposeOutcome:
    fields: ComposeFields
    message: str
    attachment_count: int = 0
    failed_attachments: list[str] = field(default_factory=list)

    def as_result(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": self.message,
            "attachmentCount": self.attachment_count,
            "failedAttachments": list(self.failed_attachments),
        }


def _with_notes(message: str, identity_warning: str, failed: list[str]) -> str:
    if identity_warning:
        message += f" ({identity_warning})"
    if failed:
        message += f" (failed to attach: {', '.join(failed)})"
    return message


class ComposeBuilder:
    """Builds compose/reply/forward field sets and opens the compose window.

    Usage::

        builder = ComposeBuilder(store)
        outcome = builder.compose(ComposeRequest(to="bob@example.com", subject="Hi", body="..."))
        outcome.as_result()
    """

    def __init__(self, store: MailStore) -> None:
        self._store = store

    def compose(self, request: ComposeRequest) -> ComposeOutcome:
        formatted = format_body_html(request.body, request.is_html)
        body = formatted if request.is_html and "<html" in formatted else wrap_document(formatted)
        identity, warning = resolve_identity(self._store, request.sender)
        attached, failed = resolve_attachments(request.attachments)

        fields = ComposeFields(
            to=request.to,
            cc=request.cc,
            bcc=request.bcc,
            subject=request.subject,
            body=body,
            identity=identity,
            attachments=attached,
        )
        return self._open(fields, "Compose window opened", warning, failed, len(attached))

    def reply(
        self,
        request: ComposeRequest,
        header: StoredHeader,
        folder: Folder,
        original: MessageBody | None,
    ) -> ComposeOutcome:
        identity, warning = resolve_identity(self._store, request.sender, folder)
        to = request.to or header.author
        if request.reply_all:
            cc = request.cc or reply_all_cc(header, identity.email if identity else None)
        else:
            cc = request.cc

        subject = header.subject or ""
        if not subject.startswith("Re:"):
            subject = f"Re: {subject}"

        original_text = (original.text if original else None) or ""
        quoted = "<br>".join(f"&gt; {escape_html(line)}" for line in original_text.split("\n"))
        quote_block = (
            f"<br><br>On {_local_date(header.date)}, {escape_html(header.author)} wrote:<br>{quoted}"
        )
        attached, failed = resolve_attachments(request.attachments)

        fields = ComposeFields(
            to=to,
            cc=cc,
            bcc=request.bcc,
            subject=subject,
            body=wrap_document(format_body_html(request.body, request.is_html) + quote_block),
            identity=identity,
            attachments=attached,
            references=f"<{header.message_id}>",
            headers={"In-Reply-To": f"<{header.message_id}>"},
        )
        return self._open(fields, "Reply window opened", warning, failed, len(attached))

    def forward(
        self,
        request: ComposeRequest,
        header: StoredHeader,
        folder: Folder,
        original: MessageBody | None,
    ) -> ComposeOutcome:
        identity, warning = resolve_identity(self._store, request.sender, folder)
        subject = header.subject or ""
        if not subject.startswith("Fwd:"):
            subject = f"Fwd: {subject}"

        original_text = (original.text if original else None) or ""
        forward_block = (
            "-------- Forwarded Message --------<br>"
            f"Subject: {escape_html(header.subject)}<br>"
            f"Date: {_local_date(header.date)}<br>"
            f"From: {escape_html(header.author)}<br>"
            f"To: {escape_html(header.recipients)}<br><br>"
            + escape_html(original_text).replace("\n", "<br>")
        )
        intro = format_body_html(request.body, request.is_html) + "<br><br>" if request.body else ""

        preserved = list(original.attachments) if original else []
        attached, failed = resolve_attachments(request.attachments)
        count = len(preserved) + len(attached)

        fields = ComposeFields(
            to=request.to,
            cc=request.cc,
            bcc=request.bcc,
            subject=subject,
            body=wrap_document(intro + forward_block),
            identity=identity,
            attachments=preserved + attached,
        )
        return self._open(
            fields, f"Forward window opened with {count} attachment(s)", warning, failed, count
        )

    def _open(
        self,
        fields: ComposeFields,
        message: str,
        identity_warning: str,
        failed: list[str],
        attachment_count: int,
    ) -> ComposeOutcome:
        self._store.open_compose_window(fields)
        logger.info("Opened compose window: %r to %s", fields.subject, fields.to)
        return ComposeOutcome(
            fields=fields,
            message=_with_notes(message, identity_warning, failed),
            attachment_count=attachment_count,
            failed_attachments=failed,
        )

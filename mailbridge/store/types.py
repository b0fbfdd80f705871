"""Data types shared between the mail store collaborators and the tools."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


@dataclass(frozen=True)
class Identity:
    """A sender identity (address + display name) owned by one account."""

    key: str
    email: str
    name: str = ""


@dataclass(frozen=True)
class Account:
    """A mail account and its identities.

    ``default_identity_key`` names the identity used when no explicit sender
    is given; ``None`` means the first identity (if any) is the default.
    """

    key: str
    name: str
    type: str
    identities: list[Identity] = field(default_factory=list)
    default_identity_key: str | None = None

    @property
    def default_identity(self) -> Identity | None:
        for identity in self.identities:
            if identity.key == self.default_identity_key:
                return identity
        return self.identities[0] if self.identities else None


@dataclass(frozen=True)
class Folder:
    """A folder in an account's tree, addressed by its URI."""

    uri: str
    name: str
    account_key: str
    is_remote: bool = False


@dataclass(frozen=True)
class StoredHeader:
    """One entry of a folder's local message index.

    Text fields are already MIME-decoded by the store. ``date`` is timezone
    aware, or ``None`` when the message carries no usable Date header.
    """

    message_id: str
    subject: str = ""
    author: str = ""
    recipients: str = ""
    cc_list: str = ""
    date: datetime | None = None
    read: bool = False
    flagged: bool = False


@dataclass(frozen=True)
class AttachmentRef:
    """An attachment: a file on disk, or an in-memory part of a stored message."""

    name: str
    content_type: str = "application/octet-stream"
    path: Path | None = None
    data: bytes | None = None


@dataclass(frozen=True)
class MessageBody:
    """Parsed body of a stored message as returned by ``MailStore.fetch_body``.

    ``text`` is ``None`` when the store parsed the message but could not
    coerce any part to plain text.
    """

    text: str | None
    attachments: list[AttachmentRef] = field(default_factory=list)


@dataclass(frozen=True)
class ContactCard:
    uid: str
    display_name: str = ""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    is_mailing_list: bool = False


@dataclass(frozen=True)
class AddressBook:
    name: str
    cards: list[ContactCard] = field(default_factory=list)


@dataclass(frozen=True)
class CalendarInfo:
    id: str
    name: str
    type: str
    read_only: bool = False


@dataclass(frozen=True)
class FullTextHit:
    """A single message returned by the full-text collaborator."""

    message_id: str
    subject: str = ""
    author: str | None = None
    date: datetime | None = None
    folder_uri: str | None = None


@dataclass
class ComposeFields:
    """The outgoing field set handed to the compose window.

    ``body`` is always HTML. ``headers`` carries extra raw headers such as
    In-Reply-To.
    """

    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    body: str = ""
    identity: Identity | None = None
    attachments: list[AttachmentRef] = field(default_factory=list)
    references: str = ""
    headers: dict[str, str] = field(default_factory=dict)

"""Shared pytest fixtures."""

from collections.abc import Iterator
from datetime import datetime, timezone

import pytest

from mailbridge.store.base import BodyCallback
from mailbridge.store.types import (
    Account,
    ComposeFields,
    Folder,
    Identity,
    MessageBody,
    StoredHeader,
)


class FakeMailStore:
    """In-memory MailStore: a tree of folders per account, headers and bodies by id."""

    def __init__(self, accounts: list[Account], default_key: str | None = None) -> None:
        self.accounts = accounts
        self.default_key = default_key
        self.roots: dict[str, list[Folder]] = {a.key: [] for a in accounts}
        self.children: dict[str, list[Folder]] = {}
        self.headers: dict[str, list[StoredHeader]] = {}
        self.bodies: dict[str, MessageBody | None] = {}
        self.broken: set[str] = set()
        self.refreshed: list[str] = []
        self.composed: list[ComposeFields] = []

    def add_folder(
        self,
        folder: Folder,
        headers: list[StoredHeader] | None = None,
        parent: Folder | None = None,
    ) -> Folder:
        if parent is None:
            self.roots[folder.account_key].append(folder)
        else:
            self.children.setdefault(parent.uri, []).append(folder)
        self.headers[folder.uri] = list(headers or [])
        return folder

    # ── MailStore ──────────────────────────────────────────────────────────────

    def list_accounts(self) -> list[Account]:
        return list(self.accounts)

    def default_account(self) -> Account | None:
        for account in self.accounts:
            if account.key == self.default_key:
                return account
        return self.accounts[0] if self.accounts else None

    def account_for_folder(self, folder: Folder) -> Account | None:
        return next((a for a in self.accounts if a.key == folder.account_key), None)

    def enumerate_folders(self, account_key: str, parent: Folder | None = None) -> list[Folder]:
        if parent is None:
            return list(self.roots.get(account_key, []))
        return list(self.children.get(parent.uri, []))

    def get_folder(self, uri: str) -> Folder | None:
        for folders in [*self.roots.values(), *self.children.values()]:
            for folder in folders:
                if folder.uri == uri:
                    return folder
        return None

    def refresh_folder(self, folder: Folder) -> None:
        self.refreshed.append(folder.uri)

    def enumerate_messages(self, folder: Folder) -> Iterator[StoredHeader]:
        if folder.uri in self.broken:
            raise OSError(f"index unreadable: {folder.uri}")
        return iter(self.headers.get(folder.uri, []))

    def fetch_body(self, folder: Folder, header: StoredHeader, callback: BodyCallback) -> None:
        callback(self.bodies.get(header.message_id))

    def open_compose_window(self, fields: ComposeFields) -> None:
        self.composed.append(fields)


def make_header(message_id: str, day: int, **kwargs: object) -> StoredHeader:
    """A header dated 2026-02-<day> 09:00 UTC."""
    return StoredHeader(
        message_id=message_id,
        date=datetime(2026, 2, day, 9, 0, tzinfo=timezone.utc),
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.fixture
def work_account() -> Account:
    return Account(
        key="work",
        name="Work",
        type="imap",
        identities=[
            Identity(key="id_main", email="me@work.example", name="Me"),
            Identity(key="id_alt", email="alias@work.example", name="Me (alias)"),
        ],
        default_identity_key="id_main",
    )


@pytest.fixture
def home_account() -> Account:
    return Account(
        key="home",
        name="Home",
        type="pop3",
        identities=[Identity(key="id_home", email="me@home.example", name="Me at home")],
    )


@pytest.fixture
def store(work_account: Account, home_account: Account) -> FakeMailStore:
    """Two accounts: work has Inbox with a Projects subfolder, home has a remote Inbox."""
    s = FakeMailStore([work_account, home_account], default_key="work")
    inbox = s.add_folder(
        Folder(uri="fake://work/Inbox", name="Inbox", account_key="work"),
        [
            make_header(
                "budget@example.com",
                27,
                subject="Q2 budget review",
                author="Alice <alice@example.com>",
                recipients="me@work.example, Bob <bob@example.com>",
                cc_list="carol@example.com",
            ),
            make_header(
                "lunch@example.com",
                20,
                subject="Lunch on Friday?",
                author="bob@example.com",
                recipients="me@work.example",
                read=True,
            ),
        ],
    )
    s.add_folder(
        Folder(uri="fake://work/Inbox/Projects", name="Projects", account_key="work"),
        [
            make_header(
                "launch@example.com",
                24,
                subject="Launch checklist",
                author="dave@example.com",
                recipients="me@work.example",
                flagged=True,
            ),
        ],
        parent=inbox,
    )
    s.add_folder(
        Folder(uri="fake://home/Inbox", name="Inbox", account_key="home", is_remote=True),
        [
            make_header(
                "invoice@example.com",
                22,
                subject="Your invoice",
                author="billing@shop.example",
                recipients="me@home.example",
            ),
        ],
    )
    s.bodies["budget@example.com"] = MessageBody(text="Please review the budget.\nThanks, Alice")
    s.bodies["lunch@example.com"] = MessageBody(text=None)
    return s

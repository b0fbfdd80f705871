"""Collaborator interfaces — what the gateway needs from the mail client.

The gateway never reaches into a concrete mail store; it is handed objects
satisfying these protocols at construction. ``mailbridge.store.maildir`` and
friends provide a local implementation, tests use in-memory fakes.
"""

from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

from mailbridge.store.types import (
    Account,
    AddressBook,
    CalendarInfo,
    ComposeFields,
    Folder,
    FullTextHit,
    MessageBody,
    StoredHeader,
)

#: Receives the parsed body, or ``None`` when the store could not parse the message.
BodyCallback = Callable[[MessageBody | None], None]


@runtime_checkable
class MailStore(Protocol):
    """Account, folder and message enumeration plus the compose window."""

    def list_accounts(self) -> list[Account]:
        ...

    def default_account(self) -> Account | None:
        ...

    def account_for_folder(self, folder: Folder) -> Account | None:
        ...

    def enumerate_folders(self, account_key: str, parent: Folder | None = None) -> list[Folder]:
        """Return the children of ``parent``, or the account's root folder(s) when ``None``."""
        ...

    def get_folder(self, uri: str) -> Folder | None:
        ...

    def refresh_folder(self, folder: Folder) -> None:
        """Synchronise a remote folder's local index. May raise; callers treat it as best-effort."""
        ...

    def enumerate_messages(self, folder: Folder) -> Iterable[StoredHeader]:
        """Iterate the folder's local message index."""
        ...

    def fetch_body(self, folder: Folder, header: StoredHeader, callback: BodyCallback) -> None:
        """Parse the message and hand the result to ``callback``.

        The callback may fire synchronously or later from another thread.
        """
        ...

    def open_compose_window(self, fields: ComposeFields) -> None:
        """Present the field set to the user for review. Must never send."""
        ...


@runtime_checkable
class ContactSource(Protocol):
    def address_books(self) -> list[AddressBook]:
        ...


@runtime_checkable
class CalendarSource(Protocol):
    def list_calendars(self) -> list[CalendarInfo]:
        ...


@runtime_checkable
class FullTextIndex(Protocol):
    """External full-text capability with a completion-callback interface."""

    def query(
        self,
        text: str,
        on_complete: Callable[[list[FullTextHit]], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        ...

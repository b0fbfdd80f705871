"""Tool dispatch — maps a catalog tool name and its arguments to a handler."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import anyio

from mailbridge.store.base import CalendarSource, ContactSource, FullTextIndex, MailStore
from mailbridge.store.types import Account, Folder, FullTextHit, MessageBody, StoredHeader
from mailbridge.tools.compose import ComposeBuilder, ComposeRequest
from mailbridge.tools.lookup import MailLookupError, locate_header
from mailbridge.tools.search import SearchEngine, SearchQuery, format_date

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CONTACT_RESULTS = 50

_Handler = Callable[[dict[str, Any]], Awaitable[Any]]


async def await_callback(
    start: Callable[[Callable[[T], None], Callable[[Exception], None]], None],
) -> T:
    """Adapt a callback-style capability into an awaitable.

    ``start`` receives ``(on_success, on_error)`` and runs in a worker thread;
    the callbacks may fire from any thread, synchronously or later. Only the
    first settlement counts.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[T] = loop.create_future()

    def _settle(value: Any, failed: bool) -> None:
        if future.done():
            return
        if failed:
            future.set_exception(value)
        else:
            future.set_result(value)

    def on_success(value: T) -> None:
        loop.call_soon_threadsafe(_settle, value, False)

    def on_error(exc: Exception) -> None:
        loop.call_soon_threadsafe(_settle, exc, True)

    await anyio.to_thread.run_sync(start, on_success, on_error)
    return await future


def account_record(account: Account) -> dict[str, Any]:
    default = account.default_identity
    return {
        "id": account.key,
        "name": account.name,
        "type": account.type,
        "identities": [
            {
                "id": identity.key,
                "email": identity.email,
                "name": identity.name,
                "isDefault": identity == default,
            }
            for identity in account.identities
        ],
    }


def search_contacts(source: ContactSource, query: str) -> list[dict[str, Any]]:
    """Case-insensitive match on email, display, first and last name; mailing lists skipped."""
    lower = query.lower()
    results: list[dict[str, Any]] = []
    for book in source.address_books():
        for card in book.cards:
            if card.is_mailing_list:
                continue
            haystacks = (card.email, card.display_name, card.first_name, card.last_name)
            if any(lower in (value or "").lower() for value in haystacks):
                results.append(
                    {
                        "id": card.uid,
                        "displayName": card.display_name,
                        "email": card.email,
                        "firstName": card.first_name,
                        "lastName": card.last_name,
                        "addressBook": book.name,
                    }
                )
            if len(results) >= MAX_CONTACT_RESULTS:
                return results
    return results


def _hit_record(hit: FullTextHit) -> dict[str, Any]:
    return {
        "id": hit.message_id,
        "subject": hit.subject,
        "from": hit.author,
        "date": format_date(hit.date),
        "folder": hit.folder_uri,
    }


class ToolDispatcher:
    """Routes ``tools/call`` requests to the ten tool handlers.

    Blocking store work runs in worker threads so concurrent calls never
    queue behind each other. Lookup failures come back as ``{"error": ...}``
    results; anything unexpected propagates to the caller.

    Usage::

        dispatcher = ToolDispatcher(store, contacts=contacts, calendars=None)
        result = await dispatcher.call("searchMessages", {"query": "invoice"})
    """

    def __init__(
        self,
        store: MailStore,
        contacts: ContactSource | None = None,
        calendars: CalendarSource | None = None,
        full_text: FullTextIndex | None = None,
    ) -> None:
        self._store = store
        self._contacts = contacts
        self._calendars = calendars
        self._full_text = full_text
        self._search = SearchEngine(store)
        self._compose = ComposeBuilder(store)
        self._handlers: dict[str, _Handler] = {
            "listAccounts": self._list_accounts,
            "searchMessages": self._search_messages,
            "fullTextSearch": self._full_text_search,
            "getMessage": self._get_message,
            "sendMail": self._send_mail,
            "composeMail": self._compose_mail,
            "replyToMessage": self._reply_to_message,
            "forwardMessage": self._forward_message,
            "searchContacts": self._search_contacts,
            "listCalendars": self._list_calendars,
        }

    @property
    def tool_names(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        logger.debug("Dispatching %s", name)
        return await handler(arguments if isinstance(arguments, dict) else {})

    # ── Synchronous queries ────────────────────────────────────────────────────

    async def _list_accounts(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        accounts = await anyio.to_thread.run_sync(self._store.list_accounts)
        return [account_record(a) for a in accounts]

    async def _search_messages(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        query = SearchQuery.from_arguments(
            args.get("query") or "",
            args.get("startDate"),
            args.get("endDate"),
            args.get("maxResults"),
            args.get("sortOrder"),
        )
        return await anyio.to_thread.run_sync(self._search.search, query)

    async def _search_contacts(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        if self._contacts is None:
            return []
        return await anyio.to_thread.run_sync(
            search_contacts, self._contacts, str(args.get("query") or "")
        )

    async def _list_calendars(self, args: dict[str, Any]) -> Any:
        if self._calendars is None:
            return {"error": "Calendar not available"}
        calendars = await anyio.to_thread.run_sync(self._calendars.list_calendars)
        return [
            {"id": c.id, "name": c.name, "type": c.type, "readOnly": c.read_only}
            for c in calendars
        ]

    # ── Callback capabilities ──────────────────────────────────────────────────

    async def _full_text_search(self, args: dict[str, Any]) -> Any:
        if self._full_text is None:
            return {"error": "Full-text search not available"}
        index = self._full_text
        text = str(args.get("query") or "")
        hits: list[FullTextHit] = await await_callback(
            lambda on_success, on_error: index.query(text, on_success, on_error)
        )
        return [_hit_record(hit) for hit in hits]

    async def _get_message(self, args: dict[str, Any]) -> dict[str, Any]:
        located = await self._locate(args)
        if isinstance(located, dict):
            return located
        header, folder = located
        body = await self._fetch_body(folder, header)
        if body is None:
            return {"error": "Could not parse message"}
        return {
            "id": header.message_id,
            "subject": header.subject,
            "author": header.author,
            "recipients": header.recipients,
            "ccList": header.cc_list,
            "date": format_date(header.date),
            "body": body.text if body.text is not None else "(Could not extract body text)",
        }

    # ── Compose mutations ──────────────────────────────────────────────────────

    async def _compose_mail(self, args: dict[str, Any]) -> dict[str, Any]:
        request = ComposeRequest.from_arguments(args)
        outcome = await anyio.to_thread.run_sync(self._compose.compose, request)
        return outcome.as_result()

    async def _send_mail(self, args: dict[str, Any]) -> dict[str, Any]:
        # Never sends: the user confirms in the compose window.
        return await self._compose_mail(args)

    async def _reply_to_message(self, args: dict[str, Any]) -> dict[str, Any]:
        located = await self._locate(args)
        if isinstance(located, dict):
            return located
        header, folder = located
        original = await self._fetch_body(folder, header)
        request = ComposeRequest.from_arguments(args)
        outcome = await anyio.to_thread.run_sync(
            self._compose.reply, request, header, folder, original
        )
        return outcome.as_result()

    async def _forward_message(self, args: dict[str, Any]) -> dict[str, Any]:
        located = await self._locate(args)
        if isinstance(located, dict):
            return located
        header, folder = located
        original = await self._fetch_body(folder, header)
        request = ComposeRequest.from_arguments(args)
        outcome = await anyio.to_thread.run_sync(
            self._compose.forward, request, header, folder, original
        )
        return outcome.as_result()

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _locate(self, args: dict[str, Any]) -> tuple[StoredHeader, Folder] | dict[str, str]:
        try:
            return await anyio.to_thread.run_sync(
                locate_header,
                self._store,
                str(args.get("folderPath") or ""),
                str(args.get("messageId") or ""),
            )
        except MailLookupError as exc:
            return {"error": str(exc)}

    async def _fetch_body(self, folder: Folder, header: StoredHeader) -> MessageBody | None:
        store = self._store
        return await await_callback(
            lambda on_success, _on_error: store.fetch_body(folder, header, on_success)
        )

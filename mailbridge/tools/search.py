"""Header search — bounded depth-first walk over every account's folder tree."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from mailbridge.store.base import MailStore
from mailbridge.store.types import Folder, StoredHeader

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 50
MAX_SEARCH_RESULTS_CAP = 200
# Matches gathered across all folders before sorting. Traversal stops once
# reached, so on very large stores older or newer matches may be missed.
SEARCH_COLLECTION_CAP = 1000

_DATE_ONLY = re.compile(r"^\d{4}-?\d{2}-?\d{2}$")


def format_date(value: datetime | None) -> str | None:
    """ISO-8601 in UTC with millisecond precision, e.g. ``2026-02-27T09:00:00.000Z``."""
    if value is None:
        return None
    utc = value.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_date_bound(value: str | None, *, inclusive_day: bool = False) -> float | None:
    """Parse an ISO-8601 bound into a POSIX timestamp; unparseable input yields None.

    Naive values are taken as UTC. With ``inclusive_day`` a date-only value is
    pushed one day forward so the whole day matches.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Ignoring unparseable date bound %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if inclusive_day and _DATE_ONLY.match(text):
        parsed += timedelta(days=1)
    return parsed.timestamp()


def coerce_limit(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_MAX_RESULTS
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_MAX_RESULTS
    if not math.isfinite(number) or number <= 0:
        return DEFAULT_MAX_RESULTS
    return max(1, min(math.floor(number), MAX_SEARCH_RESULTS_CAP))


@dataclass(frozen=True)
class SearchQuery:
    text: str = ""
    start_ts: float | None = None
    end_ts: float | None = None
    limit: int = DEFAULT_MAX_RESULTS
    descending: bool = True

    @classmethod
    def from_arguments(
        cls,
        query: str | None = "",
        start_date: str | None = None,
        end_date: str | None = None,
        max_results: Any = None,
        sort_order: str | None = None,
    ) -> SearchQuery:
        """Build a query from raw tool arguments, applying defaults and caps."""
        return cls(
            text=(query or "").lower(),
            start_ts=parse_date_bound(start_date),
            end_ts=parse_date_bound(end_date, inclusive_day=True),
            limit=coerce_limit(max_results),
            descending=sort_order != "asc",
        )

    def matches(self, header: StoredHeader, timestamp: float) -> bool:
        if self.start_ts is not None and timestamp < self.start_ts:
            return False
        if self.end_ts is not None and timestamp > self.end_ts:
            return False
        if not self.text:
            return True
        return (
            self.text in header.subject.lower()
            or self.text in header.author.lower()
            or self.text in header.recipients.lower()
        )


@dataclass
class SearchBudget:
    """Accumulator shared by reference across the whole recursive walk."""

    limit: int = SEARCH_COLLECTION_CAP
    matches: list[tuple[float, dict[str, Any]]] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return len(self.matches) >= self.limit

    def add(self, timestamp: float, record: dict[str, Any]) -> None:
        self.matches.append((timestamp, record))


class SearchEngine:
    """Searches message headers across all accounts of a MailStore.

    Usage::

        engine = SearchEngine(store)
        results = engine.search(SearchQuery.from_arguments("invoice", max_results=5))
    """

    def __init__(self, store: MailStore, collection_cap: int = SEARCH_COLLECTION_CAP) -> None:
        self._store = store
        self._collection_cap = collection_cap

    def search(self, query: SearchQuery) -> list[dict[str, Any]]:
        budget = SearchBudget(limit=self._collection_cap)
        for account in self._store.list_accounts():
            if budget.exhausted:
                break
            for root in self._store.enumerate_folders(account.key):
                if budget.exhausted:
                    break
                self._search_folder(root, query, budget)

        if budget.exhausted:
            logger.info("Search stopped early at %d matches", len(budget.matches))

        budget.matches.sort(key=lambda item: item[0], reverse=query.descending)
        return [record for _, record in budget.matches[: query.limit]]

    # ── Internal ───────────────────────────────────────────────────────────────

    def _search_folder(self, folder: Folder, query: SearchQuery, budget: SearchBudget) -> None:
        if budget.exhausted:
            return
        if folder.is_remote:
            try:
                self._store.refresh_folder(folder)
            except Exception:  # noqa: BLE001
                logger.debug("Refresh of %s failed; using cached index", folder.uri, exc_info=True)

        try:
            for header in self._store.enumerate_messages(folder):
                if budget.exhausted:
                    break
                timestamp = header.date.timestamp() if header.date else 0.0
                if query.matches(header, timestamp):
                    budget.add(timestamp, _header_record(header, folder))
        except Exception as exc:  # noqa: BLE001
            # One unreadable folder must not fail the whole search.
            logger.warning("Skipping folder %s: %s", folder.uri, exc)

        for sub in self._store.enumerate_folders(folder.account_key, folder):
            if budget.exhausted:
                break
            self._search_folder(sub, query, budget)


def _header_record(header: StoredHeader, folder: Folder) -> dict[str, Any]:
    return {
        "id": header.message_id,
        "subject": header.subject,
        "author": header.author,
        "recipients": header.recipients,
        "date": format_date(header.date),
        "folder": folder.name,
        "folderPath": folder.uri,
        "read": header.read,
        "flagged": header.flagged,
    }

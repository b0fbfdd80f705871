"""Tests for header search — date bounds, limits, ordering and the folder walk."""

from datetime import datetime, timedelta, timezone

import pytest

from mailbridge.store.types import Folder, StoredHeader
from mailbridge.tools.search import (
    DEFAULT_MAX_RESULTS,
    MAX_SEARCH_RESULTS_CAP,
    SearchEngine,
    SearchQuery,
    coerce_limit,
    format_date,
    parse_date_bound,
)

from conftest import FakeMailStore


def _search(store: FakeMailStore, **kwargs: object) -> list[dict]:
    return SearchEngine(store).search(SearchQuery.from_arguments(**kwargs))  # type: ignore[arg-type]


def _ids(results: list[dict]) -> list[str]:
    return [r["id"] for r in results]


# ── Helpers ────────────────────────────────────────────────────────────────────


class TestFormatDate:
    def test_utc_with_milliseconds(self) -> None:
        assert format_date(datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc)) == "2026-02-27T09:00:00.000Z"

    def test_converts_other_offsets_to_utc(self) -> None:
        value = datetime(2026, 2, 27, 10, 30, tzinfo=timezone(timedelta(hours=1)))
        assert format_date(value) == "2026-02-27T09:30:00.000Z"

    def test_none(self) -> None:
        assert format_date(None) is None


class TestParseDateBound:
    def test_naive_value_is_utc(self) -> None:
        assert parse_date_bound("2026-02-24T00:00:00") == datetime(2026, 2, 24, tzinfo=timezone.utc).timestamp()

    def test_offset_is_honoured(self) -> None:
        expected = datetime(2026, 2, 23, 22, 0, tzinfo=timezone.utc).timestamp()
        assert parse_date_bound("2026-02-24T00:00:00+02:00") == expected

    def test_date_only_end_bound_covers_whole_day(self) -> None:
        expected = datetime(2026, 2, 25, tzinfo=timezone.utc).timestamp()
        assert parse_date_bound("2026-02-24", inclusive_day=True) == expected

    def test_date_time_end_bound_not_extended(self) -> None:
        expected = datetime(2026, 2, 24, 12, 0, tzinfo=timezone.utc).timestamp()
        assert parse_date_bound("2026-02-24T12:00:00Z", inclusive_day=True) == expected

    @pytest.mark.parametrize("value", [None, "", "next tuesday", "2026-13-45"])
    def test_unusable_values_are_ignored(self, value: str | None) -> None:
        assert parse_date_bound(value) is None


class TestCoerceLimit:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, DEFAULT_MAX_RESULTS),
            ("abc", DEFAULT_MAX_RESULTS),
            (0, DEFAULT_MAX_RESULTS),
            (-5, DEFAULT_MAX_RESULTS),
            (float("nan"), DEFAULT_MAX_RESULTS),
            (True, DEFAULT_MAX_RESULTS),
            (3.7, 3),
            ("10", 10),
            (500, MAX_SEARCH_RESULTS_CAP),
            (0.5, 1),
        ],
    )
    def test_values(self, value: object, expected: int) -> None:
        assert coerce_limit(value) == expected


# ── SearchEngine ───────────────────────────────────────────────────────────────


class TestSearchEngine:
    def test_empty_query_matches_everything_newest_first(self, store: FakeMailStore) -> None:
        results = _search(store)
        assert _ids(results) == [
            "budget@example.com",
            "launch@example.com",
            "invoice@example.com",
            "lunch@example.com",
        ]

    def test_ascending_order(self, store: FakeMailStore) -> None:
        assert _ids(_search(store, sort_order="asc"))[0] == "lunch@example.com"

    def test_match_is_case_insensitive_over_subject_author_recipients(self, store: FakeMailStore) -> None:
        assert _ids(_search(store, query="BUDGET")) == ["budget@example.com"]
        assert _ids(_search(store, query="Alice")) == ["budget@example.com"]
        assert set(_ids(_search(store, query="bob@"))) == {"budget@example.com", "lunch@example.com"}

    def test_cc_is_not_searched(self, store: FakeMailStore) -> None:
        assert _search(store, query="carol") == []

    def test_date_range_with_inclusive_end_day(self, store: FakeMailStore) -> None:
        results = _search(store, start_date="2026-02-22", end_date="2026-02-24")
        assert _ids(results) == ["launch@example.com", "invoice@example.com"]

    def test_end_bound_with_time_is_exact(self, store: FakeMailStore) -> None:
        results = _search(store, start_date="2026-02-22", end_date="2026-02-24T00:00:00Z")
        assert _ids(results) == ["invoice@example.com"]

    def test_unparseable_bound_is_ignored(self, store: FakeMailStore) -> None:
        assert len(_search(store, start_date="yesterday")) == 4

    def test_max_results(self, store: FakeMailStore) -> None:
        assert len(_search(store, max_results=2)) == 2

    def test_record_shape(self, store: FakeMailStore) -> None:
        record = _search(store, query="launch")[0]
        assert record == {
            "id": "launch@example.com",
            "subject": "Launch checklist",
            "author": "dave@example.com",
            "recipients": "me@work.example",
            "date": "2026-02-24T09:00:00.000Z",
            "folder": "Projects",
            "folderPath": "fake://work/Inbox/Projects",
            "read": False,
            "flagged": True,
        }

    def test_only_remote_folders_are_refreshed(self, store: FakeMailStore) -> None:
        _search(store)
        assert store.refreshed == ["fake://home/Inbox"]

    def test_unreadable_folder_is_skipped_but_subfolders_searched(self, store: FakeMailStore) -> None:
        store.broken.add("fake://work/Inbox")
        assert _ids(_search(store)) == ["launch@example.com", "invoice@example.com"]

    def test_collection_cap_stops_the_walk(self, store: FakeMailStore) -> None:
        results = SearchEngine(store, collection_cap=2).search(SearchQuery())
        # The walk reaches the work Inbox first and stops there.
        assert _ids(results) == ["budget@example.com", "lunch@example.com"]

    def test_undated_message_sorts_as_epoch(self, store: FakeMailStore) -> None:
        store.headers["fake://home/Inbox"].append(StoredHeader(message_id="nodate", subject="No date"))
        results = _search(store)
        assert results[-1]["id"] == "nodate"
        assert results[-1]["date"] is None

    def test_empty_store(self) -> None:
        assert SearchEngine(FakeMailStore([])).search(SearchQuery()) == []

    def test_account_without_folders(self, store: FakeMailStore) -> None:
        store.roots["home"] = []
        assert "invoice@example.com" not in _ids(_search(store))

    def test_deeply_nested_folder(self, store: FakeMailStore) -> None:
        parent = store.get_folder("fake://work/Inbox/Projects")
        store.add_folder(
            Folder(uri="fake://work/Inbox/Projects/2026", name="2026", account_key="work"),
            [StoredHeader(message_id="deep", subject="deep one")],
            parent=parent,
        )
        assert _ids(_search(store, query="deep")) == ["deep"]

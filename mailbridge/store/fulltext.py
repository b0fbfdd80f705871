"""Full-text search over a MaildirStore by scanning message bodies.

There is no prebuilt index; each query walks every folder on a background
thread and reports through the FullTextIndex callbacks.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator

from mailbridge.store.maildir import MaildirStore
from mailbridge.store.types import Folder, FullTextHit

logger = logging.getLogger(__name__)

MAX_FULL_TEXT_HITS = 100


class MaildirTextScanner:
    """FullTextIndex that matches the query against subject, sender and body text."""

    def __init__(self, store: MaildirStore, max_hits: int = MAX_FULL_TEXT_HITS) -> None:
        self._store = store
        self._max_hits = max_hits

    def query(
        self,
        text: str,
        on_complete: Callable[[list[FullTextHit]], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        def _run() -> None:
            try:
                hits = self.scan(text)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Full-text scan failed: %s", exc)
                on_error(exc)
                return
            on_complete(hits)

        threading.Thread(target=_run, name="mailbridge-fulltext", daemon=True).start()

    def scan(self, text: str) -> list[FullTextHit]:
        needle = text.strip().lower()
        if not needle:
            return []
        hits: list[FullTextHit] = []
        for folder in self._all_folders():
            for header, path in self._store.iter_message_files(folder):
                if not (needle in header.subject.lower() or needle in header.author.lower()):
                    body = self._store.read_body(path)
                    if body is None or body.text is None or needle not in body.text.lower():
                        continue
                hits.append(
                    FullTextHit(
                        message_id=header.message_id,
                        subject=header.subject,
                        author=header.author,
                        date=header.date,
                        folder_uri=folder.uri,
                    )
                )
                if len(hits) >= self._max_hits:
                    return hits
        return hits

    def _all_folders(self) -> Iterator[Folder]:
        for account in self._store.list_accounts():
            stack = list(reversed(self._store.enumerate_folders(account.key)))
            while stack:
                folder = stack.pop()
                yield folder
                stack.extend(reversed(self._store.enumerate_folders(account.key, folder)))

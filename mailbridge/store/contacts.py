"""Address books read from a directory of vCard files (one ``.vcf`` per book)."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from mailbridge.store.types import AddressBook, ContactCard

logger = logging.getLogger(__name__)

_FOLDED_LINE = re.compile(r"\r?\n[ \t]")
_ESCAPES = {"\\n": "\n", "\\N": "\n", "\\,": ",", "\\;": ";", "\\\\": "\\"}
_ESCAPE_RE = re.compile(r"\\[nN,;\\]")


def _unescape(value: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group()], value)


def _card_from_properties(props: dict[str, str], fallback_uid: str) -> ContactCard:
    last, first = "", ""
    if "N" in props:
        parts = props["N"].split(";")
        last = _unescape(parts[0]).strip()
        first = _unescape(parts[1]).strip() if len(parts) > 1 else ""
    kind = (props.get("KIND") or props.get("X-ADDRESSBOOKSERVER-KIND") or "").lower()
    display = _unescape(props.get("FN", "")).strip() or " ".join(p for p in (first, last) if p)
    return ContactCard(
        uid=props.get("UID", "").strip() or fallback_uid,
        display_name=display,
        email=_unescape(props.get("EMAIL", "")).strip(),
        first_name=first,
        last_name=last,
        is_mailing_list=kind == "group",
    )


def parse_vcards(text: str, book_name: str = "") -> list[ContactCard]:
    """Parse every ``BEGIN:VCARD``…``END:VCARD`` block in ``text``.

    Only the first occurrence of each property is kept, so a card with
    several ``EMAIL`` lines reports its first address.
    """
    cards: list[ContactCard] = []
    props: dict[str, str] | None = None
    for line in _FOLDED_LINE.sub("", text).splitlines():
        if not line.strip():
            continue
        upper = line.strip().upper()
        if upper == "BEGIN:VCARD":
            props = {}
            continue
        if upper == "END:VCARD":
            if props is not None:
                cards.append(_card_from_properties(props, f"{book_name}-{len(cards) + 1}"))
            props = None
            continue
        if props is None or ":" not in line:
            continue
        name_part, _, value = line.partition(":")
        # "item1.EMAIL;TYPE=work" -> "EMAIL"
        name = name_part.split(";")[0].split(".")[-1].upper()
        props.setdefault(name, value)
    return cards


class VCardDirectory:
    """ContactSource over ``<directory>/*.vcf``.

    A missing directory simply yields no address books.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def address_books(self) -> list[AddressBook]:
        if not self._directory.is_dir():
            return []
        books = []
        for path in sorted(self._directory.glob("*.vcf")):
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.warning("Cannot read address book %s: %s", path, exc)
                continue
            books.append(AddressBook(name=path.stem, cards=parse_vcards(text, path.stem)))
        return books

"""Calendars read from a directory of iCalendar (``.ics``) files."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from icalendar import Calendar

from mailbridge.store.types import CalendarInfo

logger = logging.getLogger(__name__)

CALENDAR_TYPE = "ics"


def calendar_name(path: Path) -> str:
    """Return the calendar's ``X-WR-CALNAME``, or the file stem when it has none."""
    try:
        calendar = Calendar.from_ical(path.read_bytes())
    except (OSError, ValueError) as exc:
        logger.warning("Cannot read calendar %s: %s", path, exc)
        return path.stem
    name = str(calendar.get("X-WR-CALNAME", "")).strip()
    return name or path.stem


class IcsCalendarDirectory:
    """CalendarSource over ``<directory>/*.ics``; unwritable files are read-only."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def list_calendars(self) -> list[CalendarInfo]:
        if not self._directory.is_dir():
            return []
        return [
            CalendarInfo(
                id=path.stem,
                name=calendar_name(path),
                type=CALENDAR_TYPE,
                read_only=not os.access(path, os.W_OK),
            )
            for path in sorted(self._directory.glob("*.ics"))
        ]

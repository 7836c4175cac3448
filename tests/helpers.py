"""Shared test helpers for the reservation tests.

Importable by both conftest.py and individual test files. These are NOT
fixtures, they are plain constants, classes and functions.
"""

from __future__ import annotations

from datetime import datetime, timezone

BOOK_ID = "book-x"
READER_A = "reader-a"
READER_B = "reader-b"
STAFF_EMAILS = ["desk@library.example", "head@library.example"]


class RecordingNotifier:
    """Notifier that remembers every call (optionally failing)."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[str, str, list[str]]] = []
        self.fail = fail

    def notify(self, event, reservation, recipients) -> None:
        self.calls.append((event, reservation.id, list(recipients)))
        if self.fail:
            raise ConnectionError("smtp down")


def fixed_clock() -> datetime:
    return datetime(2024, 5, 20, 9, 30, tzinfo=timezone.utc)

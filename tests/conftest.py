"""Shared pytest fixtures for reservation tests."""
import sys
sys.dont_write_bytecode = True

from datetime import date  # noqa: E402

import pytest  # noqa: E402

from biblioteca.domain.models import Actor, Book  # noqa: E402
from biblioteca.domain.reservations import ReservationService  # noqa: E402
from biblioteca.infra.repositories.memory_store import InMemoryReservationStore  # noqa: E402

from helpers import BOOK_ID, READER_A, READER_B, STAFF_EMAILS, RecordingNotifier, fixed_clock  # noqa: E402


@pytest.fixture
def book():
    return Book(id=BOOK_ID, title="Os Maias", author="Eça de Queirós", publication_date=date(1888, 1, 1))


@pytest.fixture
def store(book):
    return InMemoryReservationStore(books=[book])


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(store, notifier):
    return ReservationService(
        store,
        notifier,
        staff_recipients=lambda: STAFF_EMAILS,
        clock=fixed_clock,
    )


@pytest.fixture
def staff():
    return Actor.privileged()


@pytest.fixture
def reader_a():
    return Actor.reader(READER_A)


@pytest.fixture
def reader_b():
    return Actor.reader(READER_B)

"""Tests for the Postgres reservations repository.

Cursor-level functions run against a MagicMock cursor; the store's error
mapping patches txn(). A DB-gated class exercises the exclusion constraint.
"""

import os
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import psycopg2
import pytest
from psycopg2 import errors as pg_errors

from biblioteca.domain.errors import StorageConflictError
from biblioteca.domain.models import Reservation, ReservationStatus
from biblioteca.infra.repositories.reservations_repository import (
    ACTIVE_STATUS_VALUES,
    PostgresReservationStore,
    delete_reservation,
    find_overlapping_reservation,
    get_book,
    get_reservation,
    insert_reservation,
    list_active_reservations,
    list_all_reservations,
    update_reservation,
)

RESERVED_AT = datetime(2024, 5, 20, 9, 30, tzinfo=timezone.utc)
RES_ID = "6f1c2a3e-0b4d-4e8a-9c1f-2d3e4f5a6b7c"
BOOK_ID = "0a9b8c7d-6e5f-4a3b-8c2d-1e0f9a8b7c6d"
READER_ID = "11111111-2222-4333-8444-555555555555"
ROW = ("res-1", "book-1", "reader-1", RESERVED_AT, date(2024, 6, 1), None, "confirmed", "shelf A")


def _sql(cur):
    return cur.execute.call_args[0][0]


def _params(cur):
    return cur.execute.call_args[0][1]


class TestRowMapping:
    def test_get_reservation(self):
        cur = MagicMock()
        cur.fetchone.return_value = ROW

        result = get_reservation(cur, "res-1")

        assert result == Reservation(
            id="res-1",
            book_id="book-1",
            reader_id="reader-1",
            reserved_at=RESERVED_AT,
            start_date=date(2024, 6, 1),
            end_date=None,
            status=ReservationStatus.CONFIRMED,
            notes="shelf A",
        )

    def test_get_reservation_missing(self):
        cur = MagicMock()
        cur.fetchone.return_value = None
        assert get_reservation(cur, "nope") is None

    def test_get_book(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("book-1", "Os Lusíadas", "Luís de Camões", date(1572, 1, 1))

        book = get_book(cur, "book-1")

        assert book.title == "Os Lusíadas"
        assert book.publication_date == date(1572, 1, 1)


class TestQueries:
    def test_active_statuses_only(self):
        assert ACTIVE_STATUS_VALUES == ["collected", "confirmed", "pending"]

    def test_list_active_with_exclusion(self):
        cur = MagicMock()
        cur.fetchall.return_value = [ROW]

        result = list_active_reservations(cur, book_id="book-1", exclude_reservation_id="res-9")

        assert [r.id for r in result] == ["res-1"]
        assert "id != %s" in _sql(cur)
        assert _params(cur) == ["book-1", ACTIVE_STATUS_VALUES, "res-9"]

    def test_list_active_plain(self):
        cur = MagicMock()
        cur.fetchall.return_value = []

        list_active_reservations(cur, book_id="book-1")

        assert _params(cur) == ["book-1", ACTIVE_STATUS_VALUES]

    def test_list_all_newest_first(self):
        cur = MagicMock()
        cur.fetchall.return_value = [ROW]

        result = list_all_reservations(cur)

        assert [r.id for r in result] == ["res-1"]
        assert "ORDER BY reserved_at DESC" in _sql(cur)
        assert "WHERE" not in _sql(cur)

    def test_overlap_query_uses_start_as_missing_end(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("res-7",)

        found = find_overlapping_reservation(cur, book_id="book-1", start_date=date(2024, 7, 1), end_date=None)

        assert found == "res-7"
        assert "COALESCE(end_date, start_date) >= %s" in _sql(cur)
        assert _params(cur) == ["book-1", ACTIVE_STATUS_VALUES, date(2024, 7, 1), date(2024, 7, 1)]

    def test_overlap_query_none(self):
        cur = MagicMock()
        cur.fetchone.return_value = None

        assert (
            find_overlapping_reservation(
                cur,
                book_id="book-1",
                start_date=date(2024, 7, 1),
                end_date=date(2024, 7, 5),
                exclude_reservation_id="res-1",
            )
            is None
        )
        assert _params(cur)[-1] == "res-1"


class TestWrites:
    def test_insert_returns_stored_row(self):
        cur = MagicMock()
        cur.fetchone.return_value = ROW
        candidate = Reservation(
            book_id="book-1",
            reader_id="reader-1",
            start_date=date(2024, 6, 1),
            status=ReservationStatus.CONFIRMED,
            notes="shelf A",
            reserved_at=RESERVED_AT,
        )

        stored = insert_reservation(cur, candidate)

        assert stored.id == "res-1"
        assert "RETURNING" in _sql(cur)
        assert _params(cur)[5] == "confirmed"

    def test_update_reports_missing_row(self):
        cur = MagicMock()
        cur.rowcount = 0
        reservation = Reservation(id="gone", book_id="book-1", reader_id="r", start_date=date(2024, 6, 1))

        assert update_reservation(cur, reservation) is False

    def test_update_never_touches_book(self):
        cur = MagicMock()
        cur.rowcount = 1
        reservation = Reservation(id="res-1", book_id="book-1", reader_id="r", start_date=date(2024, 6, 1))

        assert update_reservation(cur, reservation) is True
        assert "book_id" not in _sql(cur)

    def test_delete(self):
        cur = MagicMock()
        cur.rowcount = 1
        assert delete_reservation(cur, "res-1") is True


def _patched_txn(cur, calls=None):
    @contextmanager
    def fake_txn(*args, **kwargs):
        if calls is not None:
            calls.append(kwargs)
        yield cur

    return patch("biblioteca.infra.repositories.reservations_repository.txn", fake_txn)


class TestStoreErrorMapping:
    @pytest.mark.parametrize(
        "error",
        [
            pg_errors.ExclusionViolation,
            pg_errors.UniqueViolation,
            pg_errors.ForeignKeyViolation,
            pg_errors.SerializationFailure,
            pg_errors.DeadlockDetected,
            pg_errors.InvalidTextRepresentation,
        ],
    )
    def test_conflict_errors_mapped(self, error):
        cur = MagicMock()
        cur.execute.side_effect = error("conflicting key value violates exclusion constraint")
        reservation = Reservation(book_id="book-1", reader_id="r", start_date=date(2024, 6, 1))

        with _patched_txn(cur), pytest.raises(StorageConflictError) as exc_info:
            PostgresReservationStore().create(reservation)

        assert isinstance(exc_info.value.__cause__, error)

    def test_operational_error_mapped(self):
        cur = MagicMock()
        cur.execute.side_effect = psycopg2.OperationalError("server closed the connection")

        with _patched_txn(cur), pytest.raises(StorageConflictError):
            PostgresReservationStore().get_by_id(RES_ID)

    def test_update_of_missing_row(self):
        cur = MagicMock()
        cur.rowcount = 0
        cur.fetchone.return_value = None
        reservation = Reservation(id="gone", book_id="book-1", reader_id="r", start_date=date(2024, 6, 1))

        with _patched_txn(cur), pytest.raises(StorageConflictError):
            PostgresReservationStore().update(reservation)

    def test_other_errors_propagate(self):
        cur = MagicMock()
        cur.execute.side_effect = pg_errors.UndefinedTable("relation does not exist")

        with _patched_txn(cur), pytest.raises(pg_errors.UndefinedTable):
            PostgresReservationStore().list_by_reader(READER_ID)

    def test_list_active_passes_exclusion(self):
        cur = MagicMock()
        cur.fetchall.return_value = [ROW]

        with _patched_txn(cur):
            result = PostgresReservationStore().list_active_by_book(BOOK_ID, exclude_id=RES_ID)

        assert result[0].id == "res-1"
        assert _params(cur)[-1] == RES_ID


class TestStoreWrites:
    def test_create_checks_overlap_in_serializable_txn(self):
        cur = MagicMock()
        cur.fetchone.side_effect = [None, ROW]
        calls = []
        reservation = Reservation(book_id=BOOK_ID, reader_id=READER_ID, start_date=date(2024, 6, 1))

        with _patched_txn(cur, calls):
            stored = PostgresReservationStore().create(reservation)

        assert stored.id == "res-1"
        assert calls == [{"serializable": True}]
        overlap_sql, insert_sql = (c[0][0] for c in cur.execute.call_args_list)
        assert "COALESCE(end_date, start_date) >= %s" in overlap_sql
        assert "INSERT INTO reservations" in insert_sql

    def test_create_overlap_hit_skips_insert(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("res-7",)
        reservation = Reservation(book_id=BOOK_ID, reader_id=READER_ID, start_date=date(2024, 6, 1))

        with _patched_txn(cur), pytest.raises(StorageConflictError, match="res-7"):
            PostgresReservationStore().create(reservation)

        assert cur.execute.call_count == 1

    def test_update_excludes_itself_from_overlap(self):
        cur = MagicMock()
        cur.fetchone.return_value = None
        cur.rowcount = 1
        calls = []
        reservation = Reservation(id=RES_ID, book_id=BOOK_ID, reader_id=READER_ID, start_date=date(2024, 6, 1))

        with _patched_txn(cur, calls):
            PostgresReservationStore().update(reservation)

        assert calls == [{"serializable": True}]
        overlap_params = cur.execute.call_args_list[0][0][1]
        assert overlap_params[-1] == RES_ID

    def test_cancelled_update_skips_overlap(self):
        cur = MagicMock()
        cur.rowcount = 1
        reservation = Reservation(
            id=RES_ID,
            book_id=BOOK_ID,
            reader_id=READER_ID,
            start_date=date(2024, 6, 1),
            status=ReservationStatus.CANCELLED,
        )

        with _patched_txn(cur):
            PostgresReservationStore().update(reservation)

        assert cur.execute.call_count == 1
        assert "UPDATE reservations" in _sql(cur)

    def test_list_all(self):
        cur = MagicMock()
        cur.fetchall.return_value = [ROW]

        with _patched_txn(cur):
            result = PostgresReservationStore().list_all()

        assert [r.id for r in result] == ["res-1"]


class TestStoreNonUuidIds:
    """Malformed IDs read as "not found" instead of a driver error."""

    @pytest.mark.parametrize("bad_id", ["not-a-uuid", "42", ""])
    def test_get_by_id(self, bad_id):
        cur = MagicMock()

        with _patched_txn(cur):
            assert PostgresReservationStore().get_by_id(bad_id) is None

        cur.execute.assert_not_called()

    def test_get_book(self):
        cur = MagicMock()

        with _patched_txn(cur):
            assert PostgresReservationStore().get_book("book-x") is None

        cur.execute.assert_not_called()

    def test_lists_are_empty(self):
        cur = MagicMock()
        store = PostgresReservationStore()

        with _patched_txn(cur):
            assert store.list_by_reader("reader-a") == []
            assert store.list_active_by_book("book-x") == []

        cur.execute.assert_not_called()

    def test_delete_is_noop(self):
        cur = MagicMock()

        with _patched_txn(cur):
            PostgresReservationStore().delete("nope")

        cur.execute.assert_not_called()

    def test_malformed_exclusion_dropped(self):
        cur = MagicMock()
        cur.fetchall.return_value = []

        with _patched_txn(cur):
            PostgresReservationStore().list_active_by_book(BOOK_ID, exclude_id="nope")

        assert _params(cur) == [BOOK_ID, ACTIVE_STATUS_VALUES]

    def test_unknown_book_404_through_service(self):
        from biblioteca.domain.errors import NotFoundError
        from biblioteca.domain.reservations import ReservationService

        cur = MagicMock()
        service = ReservationService(PostgresReservationStore())

        with _patched_txn(cur), pytest.raises(NotFoundError):
            service.availability("not-a-uuid")

        cur.execute.assert_not_called()


# Skip integration tests if DATABASE_URL is not set
_skip_no_db = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)


@_skip_no_db
class TestExclusionConstraint:
    """Requires migrations applied (alembic upgrade head)."""

    @pytest.fixture
    def seeded(self):
        from biblioteca.infra.db import txn

        book_id = str(uuid.uuid4())
        reader_ids = [str(uuid.uuid4()), str(uuid.uuid4())]
        with txn() as cur:
            cur.execute("INSERT INTO books (id, title) VALUES (%s, %s)", (book_id, "Test"))
            for reader_id in reader_ids:
                cur.execute("INSERT INTO readers (id, full_name) VALUES (%s, %s)", (reader_id, "Test Reader"))
        yield book_id, reader_ids
        with txn() as cur:
            cur.execute("DELETE FROM reservations WHERE book_id = %s", (book_id,))
            cur.execute("DELETE FROM books WHERE id = %s", (book_id,))
            cur.execute("DELETE FROM readers WHERE id = ANY(%s::uuid[])", (reader_ids,))

    def test_overlapping_insert_rejected(self, seeded):
        book_id, readers = seeded
        store = PostgresReservationStore()
        store.create(Reservation(book_id=book_id, reader_id=readers[0], start_date=date(2024, 6, 1), end_date=date(2024, 6, 10)))

        with pytest.raises(StorageConflictError):
            store.create(Reservation(book_id=book_id, reader_id=readers[1], start_date=date(2024, 6, 10)))

    def test_concurrent_inserts_one_wins(self, seeded):
        book_id, readers = seeded
        store = PostgresReservationStore()
        barrier = threading.Barrier(2)
        outcomes = []

        def worker(reader_id):
            barrier.wait(timeout=5)
            try:
                store.create(
                    Reservation(book_id=book_id, reader_id=reader_id, start_date=date(2024, 6, 1), end_date=date(2024, 6, 10))
                )
                outcomes.append("ok")
            except StorageConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=worker, args=(r,)) for r in readers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert sorted(outcomes) == ["conflict", "ok"]

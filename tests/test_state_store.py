"""PendingItemSource and ItemStateRecorder against a SQLite files table."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

from cloner.database import make_engine
from cloner.errors import ItemRecordError, RunAbortError
from cloner.items import LifecycleState, MediaItem
from cloner.pending_source import PendingItemSource
from cloner.state_recorder import ItemStateRecorder


def utc_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def test_list_pending_filters_and_orders(engine, add_file):
    add_file(1, age_minutes=90)
    add_file(2, age_minutes=10)
    add_file(3, age_minutes=30, attempts=2)
    add_file(4, state='retrieved', age_minutes=5)
    add_file(5, state='failed', age_minutes=5)
    add_file(6, age_minutes=3 * 60)  # outside the 2h window

    items = PendingItemSource(engine).list_pending()

    assert [i.file_id for i in items] == [2, 3, 1]
    third = items[1]
    assert third.post_id == 30
    assert third.attempts == 2
    assert third.state is LifecycleState.PENDING
    assert third.parsed_url.netloc == "img.example.com"


def test_window_is_configurable(engine, add_file):
    add_file(1, age_minutes=90)
    assert PendingItemSource(engine, window_hours=1).list_pending() == []


def test_unparseable_url_aborts_run(engine, add_file):
    add_file(1, url="http://[::1/broken")
    with pytest.raises(RunAbortError, match="file 1"):
        PendingItemSource(engine).list_pending()


def test_read_failure_aborts_run():
    bare = make_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    with pytest.raises(RunAbortError, match="error getting files"):
        PendingItemSource(bare).list_pending()


def test_record_updates_row_and_increments_attempts(engine, add_file, fetch_row):
    add_file(1, attempts=1)
    item = MediaItem(file_id=1, post_id=10, external_url="http://img.example.com/1", attempts=1)
    item.mime_type = "image/png"
    item.byte_size = 1234
    item.storage_reference = "/images/20240101/1.1.10.png"
    item.state = LifecycleState.RETRIEVED

    ItemStateRecorder(engine).record(item)

    row = fetch_row(1)
    assert row.state == "retrieved"
    assert row.attempts == 2
    assert row.mime_type == "image/png"
    assert row.file_size == 1234
    assert row.ingested_uri == "/images/20240101/1.1.10.png"
    assert row.modified is not None and row.modified.microsecond == 0
    assert item.attempts == 2
    assert item.modified == row.modified


def test_record_leaves_reference_empty_when_not_uploaded(engine, add_file, fetch_row):
    add_file(1)
    item = MediaItem(file_id=1, post_id=10, external_url="http://img.example.com/1")
    item.mime_type = "text/html"

    ItemStateRecorder(engine).record(item)

    row = fetch_row(1)
    assert row.state == "pending"
    assert row.attempts == 1
    assert row.ingested_uri is None


def test_record_missing_row_is_record_error(engine):
    item = MediaItem(file_id=404, post_id=1, external_url="http://img.example.com/x")
    with pytest.raises(ItemRecordError, match="no row"):
        ItemStateRecorder(engine).record(item)
    assert item.attempts == 0


def test_database_clock_is_close_to_utc_on_sqlite(engine):
    source = PendingItemSource(engine)
    with engine.connect() as conn:
        db_now = source._database_now(conn)

    assert isinstance(db_now, datetime)
    assert abs(db_now - utc_now()) < timedelta(minutes=1)


class LaggingClockSource(PendingItemSource):
    """A database whose session clock runs five hours behind UTC."""

    def _database_now(self, conn):
        return utc_now() - timedelta(hours=5)


def test_window_follows_database_clock(engine, add_file):
    # written ten minutes ago by a session five hours behind UTC
    add_file(1, age_minutes=5 * 60 + 10)
    add_file(2, age_minutes=5 * 60 + 3 * 60)

    items = LaggingClockSource(engine).list_pending()

    assert [i.file_id for i in items] == [1]

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import insert, select

# Make repository root importable for tests without installing the package.
# Keeps local iteration fast (pytest sees source directly).
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cloner.database import files_table, make_engine  # noqa: E402


def utc_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


@pytest.fixture
def engine(tmp_path_factory):
    # file-backed so worker threads get their own connections
    db_path = tmp_path_factory.mktemp("db") / "files.sqlite"
    eng = make_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    files_table().metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def add_file(engine):
    """Insert a files row; returns its id."""
    table = files_table()

    def _add(file_id, post_id=None, url=None, state='pending', attempts=0, age_minutes=5):
        with engine.begin() as conn:
            conn.execute(insert(table).values(
                pk_file_id=file_id,
                fk_post_id=post_id if post_id is not None else file_id * 10,
                external_url=url or f"http://img.example.com/{file_id}",
                state=state,
                attempts=attempts,
                created=utc_now() - timedelta(minutes=age_minutes),
            ))
        return file_id

    return _add


@pytest.fixture
def fetch_row(engine):
    table = files_table()

    def _fetch(file_id):
        with engine.connect() as conn:
            return conn.execute(select(table).where(table.c.pk_file_id == file_id)).one()

    return _fetch

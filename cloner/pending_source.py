"""Reads the items awaiting processing from the files table."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from cloner.database import files_table
from cloner.errors import RunAbortError
from cloner.items import LifecycleState, MediaItem

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_HOURS = 2


class PendingItemSource:
    """Lists pending rows created within the recency window, newest first.

    The window caps how much a single run can pick up and keeps very old
    stuck rows from being retried forever.
    """

    def __init__(self, engine: Engine, schema: Optional[str] = None,
                 window_hours: float = DEFAULT_WINDOW_HOURS):
        self.engine = engine
        self.table = files_table(schema)
        self.window = timedelta(hours=window_hours)

    def _database_now(self, conn) -> datetime:
        # the database clock, in the same session timezone that wrote created
        return conn.execute(select(func.now())).scalar_one()

    def _query(self, cutoff: datetime):
        t = self.table
        return (
            select(t.c.pk_file_id, t.c.fk_post_id, t.c.external_url,
                   t.c.state, t.c.created, t.c.attempts)
            .where(t.c.state == LifecycleState.PENDING.value)
            .where(t.c.created >= cutoff)
            .order_by(t.c.created.desc())
        )

    def list_pending(self) -> List[MediaItem]:
        """Return the pending set; any failure aborts the run with no partial result."""
        try:
            with self.engine.connect() as conn:
                cutoff = self._database_now(conn) - self.window
                rows = conn.execute(self._query(cutoff)).all()
        except SQLAlchemyError as exc:
            raise RunAbortError(f"error getting files from db: {exc}") from exc

        items = []
        for row in rows:
            try:
                items.append(MediaItem(
                    file_id=row.pk_file_id,
                    post_id=row.fk_post_id,
                    external_url=row.external_url,
                    state=row.state,
                    created=row.created,
                    attempts=row.attempts or 0,
                ))
            except ValueError as exc:
                raise RunAbortError(
                    f"could not parse external url for file {row.pk_file_id}: {exc}"
                ) from exc

        logger.info(f"Found {len(items)} pending files")
        return items

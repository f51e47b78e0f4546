"""Writes an item's outcome back into the files table."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from cloner.database import files_table
from cloner.errors import ItemRecordError
from cloner.items import MediaItem

logger = logging.getLogger(__name__)


def utc_now_seconds() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


class ItemStateRecorder:
    """Single atomic update per item, keyed by file id.

    This is the only place ``attempts`` is incremented.
    """

    def __init__(self, engine: Engine, schema: Optional[str] = None):
        self.engine = engine
        self.table = files_table(schema)

    def record(self, item: MediaItem) -> None:
        t = self.table
        modified = utc_now_seconds()
        stmt = (
            update(t)
            .where(t.c.pk_file_id == item.file_id)
            .values(
                mime_type=item.mime_type,
                file_size=item.byte_size,
                ingested_uri=item.storage_reference,
                state=item.state.value,
                modified=modified,
                attempts=t.c.attempts + 1,
            )
        )
        try:
            with self.engine.begin() as conn:
                matched = conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise ItemRecordError(f"could not update file {item.file_id}: {exc}", item) from exc

        if matched == 0:
            raise ItemRecordError(f"no row for file {item.file_id}", item)

        # Mirror the row so callers see what was persisted
        item.attempts += 1
        item.modified = modified
        logger.debug(f"Recorded file {item.file_id}: state={item.state.value} attempts={item.attempts}")

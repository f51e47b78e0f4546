"""Relational store access: the files table and engine construction.

The production store is MySQL (``mysql+pymysql``); tests point the same code
at in-memory SQLite.
"""

import logging
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from cloner.errors import FatalStartupError

logger = logging.getLogger(__name__)

_TABLES = {}


def files_table(schema: Optional[str] = None) -> Table:
    """Return the ``files`` table bound to ``schema`` (cached per schema)."""
    if schema not in _TABLES:
        metadata = MetaData(schema=schema)
        _TABLES[schema] = Table(
            'files',
            metadata,
            Column('pk_file_id', BigInteger().with_variant(Integer, 'sqlite'), primary_key=True),
            Column('fk_post_id', BigInteger, nullable=False),
            Column('external_url', Text, nullable=False),
            Column('mime_type', String(255)),
            Column('file_size', BigInteger),
            Column('ingested_uri', Text),
            Column('state', String(32), nullable=False, server_default='pending'),
            Column('created', DateTime, nullable=False),
            Column('modified', DateTime),
            Column('attempts', Integer, nullable=False, server_default='0'),
        )
    return _TABLES[schema]


def make_engine(url, **kwargs) -> Engine:
    """Create the shared engine; the pool is reused by every run."""
    kwargs.setdefault('pool_pre_ping', True)
    try:
        return create_engine(url, **kwargs)
    except SQLAlchemyError as exc:
        raise FatalStartupError(f"invalid database url: {exc}") from exc


def check_connection(engine: Engine) -> None:
    """Ping the database once at startup."""
    try:
        with engine.connect() as conn:
            conn.execute(text('SELECT 1'))
    except SQLAlchemyError as exc:
        raise FatalStartupError(f"could not open db connection: {exc}") from exc
    logger.info("opened database connection")

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings

DATABASE_URL = settings.DATABASE_URL


def _serialize_sqlite_writes(engine: AsyncEngine) -> None:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so a read-modify-write of a
    conversation's turn list could read a stale snapshot. Taking the write lock
    up front makes concurrent appends queue behind each other.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_sessionmaker(url: str, **engine_kwargs) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(url, echo=False, future=True, **engine_kwargs)
    if engine.dialect.name == "sqlite":
        _serialize_sqlite_writes(engine)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine, SessionLocal = make_sessionmaker(DATABASE_URL)

from typing import Awaitable, Callable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from config.settings import DATABASE_URL, DATABASE_ECHO

if DATABASE_URL is None:
    raise ValueError("DATABASE_URL environment variable is not set. Please set it in your .env file.")

AfterCommitCallback = Callable[[], Awaitable[None]]

_AFTER_COMMIT_KEY = "after_commit_callbacks"


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """Make SAVEPOINT work on pysqlite-based engines.

    The driver delays BEGIN until the first DML statement, which breaks
    ``begin_nested``. Its own transaction handling is switched off and BEGIN
    is emitted when SQLAlchemy starts a transaction.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


# Create engine
engine = create_async_engine(DATABASE_URL, echo=DATABASE_ECHO)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, class_=AsyncSession)

# Base for models
Base = declarative_base()

# Ensure all model modules register with Base metadata
from infrastructure.database import models as _models  # noqa: E402,F401


def call_after_commit(db: AsyncSession, callback: AfterCommitCallback) -> None:
    """Register ``callback`` to run once ``db`` is committed through :func:`commit_session`.

    Registering the same callback twice on one session runs it once.
    """
    callbacks = db.info.setdefault(_AFTER_COMMIT_KEY, [])
    if callback not in callbacks:
        callbacks.append(callback)


def discard_after_commit(db: AsyncSession) -> None:
    db.info.pop(_AFTER_COMMIT_KEY, None)


async def commit_session(db: AsyncSession) -> None:
    await db.commit()
    for callback in db.info.pop(_AFTER_COMMIT_KEY, []):
        await callback()


async def get_db():
    db = SessionLocal()
    try:
        yield db
        await commit_session(db)
    except Exception:
        discard_after_commit(db)
        await db.rollback()
        raise
    finally:
        await db.close()

async def create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

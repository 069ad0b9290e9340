import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from infrastructure.context import ContextScope
from infrastructure.database.database import Base, enable_sqlite_savepoints
from infrastructure.database.repositories.document_repository import DocumentRepository
from schemas.associations.enums import EntityType
from services.associations.collections import collection_for

TENANT_ID = "T1"
USER_ID = "user-1"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        yield db


@pytest.fixture
def fail_updates(engine):
    """Make UPDATE statements whose parameters mention ``marker`` fail in the driver layer."""

    def _install(marker: str) -> None:
        @event.listens_for(engine.sync_engine, "before_cursor_execute")
        def _raise(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("UPDATE") and marker in str(parameters):
                raise OperationalError(statement, parameters, Exception("deadlock detected"))

    return _install


@pytest.fixture
def scope():
    return ContextScope(tenant_id=TENANT_ID, user_id=USER_ID)


@pytest.fixture
def repository(session, scope):
    return DocumentRepository(session, scope)


@pytest.fixture
def seed(repository):
    async def _seed(entity_type: EntityType, entity_id: str, **fields):
        data = {"name": f"{entity_type.value} {entity_id}", **fields}
        await repository.set_document(collection_for(entity_type), entity_id, data)
        return {"id": entity_id, **data}

    return _seed

"""Pytest fixtures for Custodian tests."""

from collections.abc import AsyncGenerator, Iterable
from typing import Any

import pytest
import pytest_asyncio
import structlog
from pydantic import SecretStr
from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    func,
    insert,
    select,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from custodian.config.settings import PurgeSettings, Settings
from custodian.db.models.base import Base
from custodian.db.store import SQLRetentionStore
from custodian.retention.notices import MockNoticeSender
from custodian.retention.service import DataRetentionService
from custodian.retention.sources import DATA_SOURCE_REGISTRY
from custodian.retention.types import DataSource

# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Collection schema
# =============================================================================


def build_collection_metadata(sources: Iterable[DataSource]) -> MetaData:
    """Tables for every registered collection and its aggregate/archive targets.

    Columns are derived from the source definitions, so the schema always
    matches what the store addresses.
    """
    metadata = MetaData()
    archives: dict[str, dict[str, Any]] = {}

    for source in sources:
        columns: dict[str, Column] = {
            source.primary_key: Column(source.primary_key, String(64), primary_key=True),
            source.tenant_column: Column(source.tenant_column, String(64), nullable=False),
        }

        def add(name: str, type_: Any) -> None:
            if name not in columns:
                columns[name] = Column(name, type_, nullable=True)

        add(source.age_column, DateTime(timezone=True))
        if source.subject_column:
            add(source.subject_column, String(64))
        add(source.soft_delete_marker, DateTime(timezone=True))
        add(source.anonymized_column, DateTime(timezone=True))
        for pii in source.pii_columns:
            add(pii, String(255))
        Table(source.collection, metadata, *columns.values())

        target = source.aggregation_target
        if target and target not in metadata.tables:
            Table(
                target,
                metadata,
                Column(source.tenant_column, String(64), primary_key=True),
                Column("date", Date, primary_key=True),
                Column("recordCount", Integer, nullable=False),
                Column("aggregatedAt", DateTime(timezone=True)),
            )

        if source.archive_target:
            archive_columns = archives.setdefault(source.archive_target, {})
            for column in columns.values():
                archive_columns.setdefault(column.name, column.type)

    for name, archive_columns in archives.items():
        Table(
            name,
            metadata,
            Column("archiveId", Integer, primary_key=True, autoincrement=True),
            *(Column(col, type_, nullable=True) for col, type_ in archive_columns.items()),
            Column("archivedAt", DateTime(timezone=True)),
        )

    return metadata


COLLECTIONS = build_collection_metadata(DATA_SOURCE_REGISTRY)


class CollectionDB:
    """Seeds and inspects collection tables in tests."""

    def __init__(self, engine: AsyncEngine, metadata: MetaData = COLLECTIONS):
        self.engine = engine
        self.metadata = metadata

    async def insert(self, collection: str, rows: list[dict[str, Any]]) -> None:
        """Insert rows into a collection; keys missing from a row are NULL."""
        keys = list(dict.fromkeys(key for row in rows for key in row))
        params = [{key: row.get(key) for key in keys} for row in rows]
        async with self.engine.begin() as conn:
            await conn.execute(insert(self.metadata.tables[collection]), params)

    async def count(self, collection: str) -> int:
        """Row count of a collection."""
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(func.count()).select_from(self.metadata.tables[collection])
            )
            return int(result.scalar_one())

    async def rows(self, collection: str) -> list[dict[str, Any]]:
        """All rows of a collection, ordered by primary key."""
        t = self.metadata.tables[collection]
        async with self.engine.connect() as conn:
            result = await conn.execute(select(t).order_by(*t.primary_key.columns))
            return [dict(row) for row in result.mappings()]

    async def counts(self) -> dict[str, int]:
        """Row counts of every collection table."""
        return {name: await self.count(name) for name in self.metadata.tables}


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with engine tables and all collections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'custodian.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(COLLECTIONS.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def collections(test_engine: AsyncEngine) -> CollectionDB:
    """Seeding helper bound to the test engine."""
    return CollectionDB(test_engine)


# =============================================================================
# Engine fixtures
# =============================================================================


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for tests: no inter-batch pause, fixed pseudonym salt."""
    return Settings(
        ENVIRONMENT="test",
        DEBUG=False,
        log_level="DEBUG",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'custodian.db'}",
        purge=PurgeSettings(
            batch_pause_seconds=0,
            pseudonym_salt=SecretStr("test-salt"),
        ),
    )


@pytest.fixture
def store(test_engine: AsyncEngine, test_settings: Settings) -> SQLRetentionStore:
    """SQL retention store on the test engine."""
    return SQLRetentionStore(test_engine, settings=test_settings.purge)


@pytest.fixture
def notice_sender() -> MockNoticeSender:
    """In-memory guardian notice sender."""
    return MockNoticeSender()


@pytest.fixture
def service(
    store: SQLRetentionStore,
    notice_sender: MockNoticeSender,
    test_settings: Settings,
) -> DataRetentionService:
    """Retention service wired to the test store."""
    return DataRetentionService(store, notice_sender=notice_sender, settings=test_settings)

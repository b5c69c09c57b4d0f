import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from marketplace_cod.config import settings
from marketplace_cod.core.events import DomainEvent, EventDispatcher, event_dispatcher

logger = logging.getLogger(__name__)


# SQLite doesn't support pool settings, check database type
is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Convert database URL for proper driver
database_url = settings.DATABASE_URL
if database_url.startswith("postgresql+asyncpg://"):
    # Switch to psycopg for async PostgreSQL
    database_url = database_url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
elif database_url.startswith("postgresql://"):
    database_url = database_url.replace("postgresql://", "postgresql+psycopg://")

# Create async engine with appropriate settings
if is_sqlite:
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        future=True,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        future=True,
        pool_pre_ping=True,  # Check connection health before use
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={"connect_timeout": 30},
    )

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def init_db() -> None:
    """Initialize database tables."""
    # Import all models to register them with Base.metadata
    from marketplace_cod import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready ({len(Base.metadata.tables)} tables)")


# ====================
# TRANSACTION BOUNDARY
# ====================

class UnitOfWork:
    """
    One all-or-nothing database transaction plus the domain events it raised.

    Services write through ``uow.session`` and queue events with
    ``uow.record()``; they never commit. Events are handed to the dispatcher
    only after the commit succeeds, so a rolled-back transaction notifies
    nobody.
    """

    def __init__(self, session: AsyncSession, dispatcher: Optional[EventDispatcher] = None):
        self.session = session
        self.dispatcher = dispatcher or event_dispatcher
        self._events: List[DomainEvent] = []

    @property
    def pending_events(self) -> List[DomainEvent]:
        return list(self._events)

    def record(self, event: DomainEvent) -> None:
        self._events.append(event)

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except Exception:
            await self.rollback()
            raise

        events, self._events = self._events, []
        await self.dispatcher.dispatch_all(events)

    async def rollback(self) -> None:
        self._events.clear()
        await self.session.rollback()


@asynccontextmanager
async def unit_of_work(
    session_factory: Optional[async_sessionmaker] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> AsyncGenerator[UnitOfWork, None]:
    """
    Run a block inside a single transaction.

    Usage:
        async with unit_of_work() as uow:
            workflow = CodOrderWorkflow(uow)
            result = await workflow.confirm_order(order_id, actor_id=user_id)
    """
    factory = session_factory or async_session_factory
    async with factory() as session:
        uow = UnitOfWork(session, dispatcher)
        try:
            yield uow
        except Exception:
            logger.exception("Rolling back unit of work")
            await uow.rollback()
            raise
        await uow.commit()

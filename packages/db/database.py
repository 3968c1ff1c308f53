from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from .models import AnalyticsEventRecord, Base, Notification, User
from .schemas import AnalyticsDocument, NotificationDocument, UserRecord

logger = structlog.get_logger(__name__)


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine; SQLite gets no connection pool."""
    if "sqlite" in database_url:
        return create_async_engine(database_url, echo=echo, poolclass=NullPool)
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


class SqlDocumentStore:
    """
    Document store backed by SQLAlchemy's async ORM.

    Every write runs in its own transaction. A notification and an analytics
    record written for the same event are independent: the first can commit
    while the second fails.
    """

    def __init__(self, session_factory: async_sessionmaker, engine: Optional[AsyncEngine] = None):
        self.session_factory = session_factory
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SqlDocumentStore":
        engine = create_engine(database_url, echo=echo)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(session_factory, engine)

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            return UserRecord.model_validate(user)

    async def add_user(self, user: UserRecord) -> str:
        async with self.session_factory() as session:
            async with session.begin():
                session.add(User(**user.model_dump()))
        return user.id

    async def add_notification(self, document: NotificationDocument) -> str:
        record = Notification(
            user_id=document.user_id,
            type=document.type,
            title=document.title,
            message=document.message,
            order_id=document.order_id,
            read=document.read,
            created_at=document.created_at,
            extra_data=document.extra_fields or None,
        )
        async with self.session_factory() as session:
            async with session.begin():
                session.add(record)

        logger.debug("Notification stored", notification_id=record.id, user_id=document.user_id)
        return record.id

    async def add_analytics_event(self, document: AnalyticsDocument) -> str:
        record = AnalyticsEventRecord(
            type=document.type,
            order_id=document.order_id,
            amount=document.amount,
            timestamp=document.timestamp,
            user_id=document.user_id,
            farmer_id=document.farmer_id,
            data=document.data,
        )
        async with self.session_factory() as session:
            async with session.begin():
                session.add(record)

        logger.debug("Analytics event stored", event_id=record.id, type=document.type)
        return record.id

    async def create_tables(self) -> None:
        """Create all tables in the database."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close the database connection."""
        if self.engine is not None:
            await self.engine.dispose()

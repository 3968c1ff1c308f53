"""
Integration tests for the SQLAlchemy document store on SQLite (aiosqlite).
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from packages.db.database import SqlDocumentStore
from packages.db.models import AnalyticsEventRecord, Notification
from packages.db.schemas import AnalyticsDocument, NotificationDocument, UserRecord

pytest.importorskip("aiosqlite")

pytestmark = pytest.mark.integration


def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'farmline.db'}"


class TestSqlDocumentStore:
    @pytest.mark.asyncio
    async def test_user_lookup(self, tmp_path):
        store = SqlDocumentStore.from_url(sqlite_url(tmp_path))
        await store.create_tables()
        try:
            await store.add_user(UserRecord(id="f1", email="farmer@example.ph", display_name="Mang Jose", role="farmer"))

            user = await store.get_user("f1")
            assert user is not None
            assert user.role == "farmer"
            assert user.display_name == "Mang Jose"
            assert await store.get_user("missing") is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_notification_is_stored_with_extras(self, tmp_path):
        store = SqlDocumentStore.from_url(sqlite_url(tmp_path))
        await store.create_tables()
        try:
            notification_id = await store.add_notification(
                NotificationDocument.model_validate(
                    {
                        "userId": "f1",
                        "type": "NEW_ORDER",
                        "title": "New Order Received",
                        "message": "You have a new order worth ₱500",
                        "orderId": "o1",
                        "createdAt": datetime(2024, 5, 1, tzinfo=timezone.utc),
                        "priority": "high",
                    }
                )
            )

            async with store.session_factory() as session:
                record = await session.get(Notification, notification_id)

            assert record.user_id == "f1"
            assert record.order_id == "o1"
            assert record.read is False
            assert record.message == "You have a new order worth ₱500"
            assert record.extra_data == {"priority": "high"}
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_analytics_events_append(self, tmp_path):
        store = SqlDocumentStore.from_url(sqlite_url(tmp_path))
        await store.create_tables()
        try:
            for _ in range(2):
                await store.add_analytics_event(
                    AnalyticsDocument(
                        type="ORDER_CREATED",
                        order_id="o1",
                        amount=500,
                        timestamp=datetime.now(timezone.utc),
                        user_id="u1",
                        farmer_id="f1",
                    )
                )

            async with store.session_factory() as session:
                count = await session.scalar(select(func.count()).select_from(AnalyticsEventRecord))
                record = (await session.scalars(select(AnalyticsEventRecord))).first()

            assert count == 2
            assert record.amount == 500
            assert record.data == {}
        finally:
            await store.close()

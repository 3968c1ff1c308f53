"""
Shared fixtures for the Farmline pipeline tests.

Redis and the document store are replaced with in-memory fakes; the broker
runs on kombu's in-process ``memory://`` transport.
"""

import fnmatch
import uuid
from typing import Any, Dict, List, Optional

import pytest
from kombu.transport import memory
from redis.exceptions import ConnectionError as RedisConnectionError

from packages.cache.redis_cache import CacheService
from packages.db.schemas import AnalyticsDocument, NotificationDocument, UserRecord
from packages.orchestrator.broker import BrokerConnection
from packages.orchestrator.metrics import PipelineMetrics

MEMORY_BROKER_URL = "memory://"


class FakeRedis:
    """Async dict-backed stand-in for the redis.asyncio client"""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = False
        self.deleted: List[str] = []
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def ping(self):
        self._check()
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str):
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        count = 0
        for key in keys:
            self.deleted.append(key)
            if self.data.pop(key, None) is not None:
                count += 1
        return count

    async def keys(self, pattern: str) -> List[str]:
        self._check()
        return [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]

    async def aclose(self):
        self.closed = True


class InMemoryDocumentStore:
    """Document store fake that records writes and can fail on demand"""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.notifications: List[NotificationDocument] = []
        self.analytics_events: List[AnalyticsDocument] = []
        self.fail_notifications = 0
        self.fail_analytics = 0

    def add_user_record(self, user_id: str, role: str = "buyer", **fields: Any) -> UserRecord:
        user = UserRecord(id=user_id, role=role, **fields)
        self.users[user_id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    async def add_notification(self, document: NotificationDocument) -> str:
        if self.fail_notifications:
            self.fail_notifications -= 1
            raise RuntimeError("document store unavailable")
        self.notifications.append(document)
        return uuid.uuid4().hex

    async def add_analytics_event(self, document: AnalyticsDocument) -> str:
        if self.fail_analytics:
            self.fail_analytics -= 1
            raise RuntimeError("document store unavailable")
        self.analytics_events.append(document)
        return uuid.uuid4().hex


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheService(client=fake_redis)


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def metrics():
    return PipelineMetrics()


@pytest.fixture(autouse=True)
def clean_memory_broker():
    """The memory transport keeps queues at class level; reset between tests."""
    memory.Channel.queues.clear()
    memory.Channel.events.clear()
    yield
    memory.Channel.queues.clear()
    memory.Channel.events.clear()


@pytest.fixture
def broker():
    connection = BrokerConnection(MEMORY_BROKER_URL, connect_max_retries=1)
    yield connection
    connection.close()

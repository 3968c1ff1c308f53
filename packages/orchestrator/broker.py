"""
Farmline Broker Connection

Explicitly constructed AMQP connection shared by the event publisher and the
order-event worker. Owners open it in a ``with`` block (or call
``connect()``/``close()``) so the connection lifetime is tied to the service
that created it.
"""

import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional, Union

import structlog
from kombu import Connection, Exchange, Queue

from .event_schemas import QueueName

logger = structlog.get_logger(__name__)

DEFAULT_MAX_QUEUE_LENGTH = 10000

# Default (nameless) exchange: routing key is the destination queue name
DEFAULT_EXCHANGE = Exchange("")


class BrokerState(str, Enum):
    """Availability of the queue service"""

    NOT_CONFIGURED = "not_configured"
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class BrokerUnavailableError(Exception):
    """Raised when the broker is not configured or cannot be reached"""


def build_queue(name: Union[QueueName, str], max_length: int = DEFAULT_MAX_QUEUE_LENGTH) -> Queue:
    """
    Durable, length-bounded queue on the default exchange.

    Publisher and worker both declare through this function so the queue
    arguments always match.
    """
    queue_name = QueueName(name).value if isinstance(name, QueueName) else name
    return Queue(
        queue_name,
        exchange=DEFAULT_EXCHANGE,
        routing_key=queue_name,
        durable=True,
        auto_delete=False,
        max_length=max_length,
    )


class BrokerConnection:
    """Lazily connected kombu connection with an explicit state."""

    def __init__(
        self,
        url: Optional[str],
        connect_timeout: float = 5.0,
        connect_max_retries: int = 3,
        max_queue_length: int = DEFAULT_MAX_QUEUE_LENGTH,
    ):
        self.url = url
        self.connect_timeout = connect_timeout
        self.connect_max_retries = connect_max_retries
        self.max_queue_length = max_queue_length

        self._connection: Optional[Connection] = None
        self._lock = threading.RLock()

    @property
    def state(self) -> BrokerState:
        if not self.url:
            return BrokerState.NOT_CONFIGURED
        if self._connection is not None and self._connection.connected:
            return BrokerState.CONNECTED
        return BrokerState.DISCONNECTED

    @property
    def is_configured(self) -> bool:
        return self.state != BrokerState.NOT_CONFIGURED

    @property
    def safe_url(self) -> Optional[str]:
        """Connection URL with credentials masked"""
        if not self.url:
            return None
        return Connection(self.url).as_uri()

    def connect(self) -> Connection:
        """Return the open connection, establishing it first if needed."""
        if not self.url:
            raise BrokerUnavailableError("Broker URL is not configured")

        with self._lock:
            if self._connection is not None and self._connection.connected:
                return self._connection

            self._release()
            connection = Connection(self.url, connect_timeout=self.connect_timeout)
            try:
                connection.ensure_connection(
                    max_retries=self.connect_max_retries,
                    interval_start=0.5,
                    interval_step=0.5,
                    interval_max=2,
                )
            except Exception as e:
                connection.release()
                raise BrokerUnavailableError(f"Cannot reach broker at {self.safe_url}: {e}") from e

            self._connection = connection
            logger.info("Broker connected", url=self.safe_url)
            return connection

    @contextmanager
    def channel(self) -> Iterator:
        """Yield the connection's default channel while holding the connection lock."""
        with self._lock:
            connection = self.connect()
            yield connection.default_channel

    def declare_queues(self, *names: Union[QueueName, str]) -> None:
        """Idempotently declare the given queues."""
        with self.channel() as channel:
            for name in names:
                build_queue(name, self.max_queue_length)(channel).declare()
                logger.debug("Queue declared", queue=str(getattr(name, "value", name)))

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._release()
                logger.info("Broker connection closed", url=self.safe_url)

    def _release(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.release()
        except Exception as e:
            logger.error("Error closing broker connection", error=str(e))
        finally:
            self._connection = None

    def __enter__(self) -> "BrokerConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

"""
Farmline Order-Event Worker

Long-running consumer for the marketplace's order-event queues. Each message
moves through RECEIVED -> PROCESSING -> ACKED | REQUEUED:

- a handler that returns normally acknowledges the message;
- any exception (undecodable body, document store failure, bug) puts the
  message back on its queue for redelivery. There is no dead-letter queue
  and no retry cap.

Cache problems never fail a handler; the cache service logs them and returns
its "no cache" value.
"""

import asyncio
import signal
import sys
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

import structlog
from dotenv import load_dotenv
from kombu import Connection, Consumer
from kombu.mixins import ConsumerMixin

from packages.cache.keys import (
    PRODUCTS_LIST_PATTERN,
    farmer_orders_key,
    farmer_products_key,
    product_key,
    user_orders_key,
)
from packages.cache.redis_cache import CacheService
from packages.db.database import SqlDocumentStore
from packages.db.schemas import AnalyticsDocument, NotificationDocument
from packages.orchestrator.broker import BrokerConnection, BrokerUnavailableError, build_queue
from packages.orchestrator.event_schemas import (
    CONSUMED_QUEUES,
    NotificationEvent,
    OrderCreatedEvent,
    OrderStatusUpdatedEvent,
    ProductUpdatedEvent,
    QueueName,
    decode_event,
    format_amount,
    utc_now,
)
from packages.orchestrator.metrics import PipelineMetrics, get_metrics
from packages.telemetry.logger import configure_logging

from .config import PipelineConfig, get_config

logger = structlog.get_logger(__name__)


class MessageOutcome(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    ACKED = "acked"
    REQUEUED = "requeued"


Handler = Callable[[Any], Awaitable[None]]


class OrderEventWorker(ConsumerMixin):
    """
    Consumes order.created, order.status.updated, product.updated and
    notification, one consumer per queue with prefetch 1.

    Handlers are coroutines run on an event loop owned by the worker, so the
    async cache and document store clients stay bound to a single loop.
    """

    def __init__(
        self,
        broker: BrokerConnection,
        cache: CacheService,
        store: Any,
        loop: asyncio.AbstractEventLoop,
        metrics: Optional[PipelineMetrics] = None,
        prefetch_count: int = 1,
    ):
        self.broker = broker
        self.cache = cache
        self.store = store
        self.loop = loop
        self.metrics = metrics
        self.prefetch_count = prefetch_count

        self.handlers: Dict[QueueName, Handler] = {
            QueueName.ORDER_CREATED: self.handle_order_created,
            QueueName.ORDER_STATUS_UPDATED: self.handle_order_status_updated,
            QueueName.PRODUCT_UPDATED: self.handle_product_updated,
            QueueName.NOTIFICATION: self.handle_notification,
        }

        self.messages_acked = 0
        self.messages_requeued = 0

    @property
    def connection(self) -> Connection:
        return self.broker.connect()

    def declare_queues(self) -> None:
        """Assert every consumed queue with the publisher's declaration arguments."""
        self.broker.declare_queues(*CONSUMED_QUEUES)

    def get_consumers(self, Consumer: Callable[..., Consumer], channel) -> List[Consumer]:
        consumers = []
        for queue_name in CONSUMED_QUEUES:
            queue = build_queue(queue_name, self.broker.max_queue_length)
            consumer = Consumer(
                queues=[queue],
                on_message=partial(self.on_message, queue_name),
                accept=["json"],
                prefetch_count=self.prefetch_count,
            )
            consumers.append(consumer)
        return consumers

    def on_consume_ready(self, connection, channel, consumers, **kwargs):
        logger.info(
            "Order-event worker consuming",
            queues=[q.value for q in CONSUMED_QUEUES],
            prefetch_count=self.prefetch_count,
        )

    def on_connection_error(self, exc, interval):
        logger.warning("Broker connection error, retrying", error=str(exc), retry_in=interval)

    def on_message(self, queue_name: QueueName, message) -> MessageOutcome:
        """Run the queue's handler and settle the message."""
        started = time.perf_counter()
        logger.debug("Message received", queue=queue_name.value, state=MessageOutcome.RECEIVED.value)

        try:
            logger.debug("Processing message", queue=queue_name.value, state=MessageOutcome.PROCESSING.value)
            event = decode_event(queue_name, message.body)
            self.loop.run_until_complete(self.handlers[queue_name](event))
        except Exception as e:
            logger.error(
                "Error processing message, requeueing",
                queue=queue_name.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            message.requeue()
            outcome = MessageOutcome.REQUEUED
            self.messages_requeued += 1
        else:
            message.ack()
            outcome = MessageOutcome.ACKED
            self.messages_acked += 1

        if self.metrics:
            self.metrics.record_message_processed(queue_name.value, outcome.value, time.perf_counter() - started)
        return outcome

    # Handlers

    async def handle_order_created(self, event: OrderCreatedEvent) -> None:
        if event.total is not None:
            message = f"You have a new order worth ₱{format_amount(event.total)}"
        else:
            logger.warning("Order created without total", order_id=event.order_id)
            message = "You have a new order"

        farmer = await self.store.get_user(event.farmer_id)
        if farmer is not None:
            await self.store.add_notification(
                NotificationDocument(
                    user_id=event.farmer_id,
                    type="NEW_ORDER",
                    title="New Order Received",
                    message=message,
                    order_id=event.order_id,
                    read=False,
                    created_at=utc_now(),
                )
            )
        else:
            logger.warning("Farmer not found, skipping order notification", farmer_id=event.farmer_id)

        await self.store.add_analytics_event(
            AnalyticsDocument(
                type="ORDER_CREATED",
                order_id=event.order_id,
                amount=event.total,
                timestamp=utc_now(),
                user_id=event.user_id,
                farmer_id=event.farmer_id,
                data={},
            )
        )

        await self.invalidate_keys(user_orders_key(event.user_id), farmer_orders_key(event.farmer_id))
        logger.info("Processed order created", order_id=event.order_id)

    async def handle_order_status_updated(self, event: OrderStatusUpdatedEvent) -> None:
        await self.store.add_notification(
            NotificationDocument(
                user_id=event.user_id,
                type="ORDER_STATUS_UPDATED",
                title="Order Status Updated",
                message=f"Your order status is now: {event.new_status}",
                order_id=event.order_id,
                read=False,
                created_at=utc_now(),
            )
        )

        await self.invalidate_keys(user_orders_key(event.user_id))
        logger.info("Processed order status update", order_id=event.order_id, status=event.new_status)

    async def handle_product_updated(self, event: ProductUpdatedEvent) -> None:
        await self.invalidate_keys(product_key(event.product_id), farmer_products_key(event.farmer_id))
        await self.invalidate_pattern(PRODUCTS_LIST_PATTERN)
        logger.info("Processed product update", product_id=event.product_id)

    async def handle_notification(self, event: NotificationEvent) -> None:
        document = NotificationDocument.model_validate(
            {
                **event.notification,
                "userId": event.user_id,
                "read": False,
                "createdAt": utc_now(),
            }
        )
        await self.store.add_notification(document)
        logger.info("Processed notification", user_id=event.user_id)

    # Cache invalidation

    async def invalidate_keys(self, *keys: str) -> int:
        invalidated = 0
        for key in keys:
            if await self.cache.delete(key):
                invalidated += 1
                logger.debug("Invalidated cache key", key=key)

        if self.metrics:
            self.metrics.record_cache_invalidation("key", invalidated)
        return invalidated

    async def invalidate_pattern(self, pattern: str) -> int:
        count = await self.cache.invalidate_pattern(pattern)
        logger.debug("Invalidated cache pattern", pattern=pattern, count=count)

        if self.metrics:
            self.metrics.record_cache_invalidation("pattern", count)
        return count

    def stop(self, signum=None, frame=None) -> None:
        if signum is not None:
            logger.info("Received signal, shutting down", signal=signum)
        self.should_stop = True

    def get_stats(self) -> Dict[str, Any]:
        return {
            "messages_acked": self.messages_acked,
            "messages_requeued": self.messages_requeued,
            "broker_state": self.broker.state.value,
            "cache_state": self.cache.state.value,
        }


@dataclass
class WorkerResources:
    broker: BrokerConnection
    cache: CacheService
    store: SqlDocumentStore
    loop: asyncio.AbstractEventLoop


@contextmanager
def worker_resources(config: PipelineConfig) -> Iterator[WorkerResources]:
    """
    Acquire the broker connection, cache client, document store and event
    loop for one worker run. Everything acquired is released on exit, in
    reverse order, even when startup fails halfway.
    """
    with ExitStack() as stack:
        loop = asyncio.new_event_loop()
        stack.callback(loop.close)

        broker = stack.enter_context(
            BrokerConnection(
                config.rabbitmq_url,
                connect_timeout=config.broker_connect_timeout,
                connect_max_retries=config.broker_connect_max_retries,
                max_queue_length=config.queue_max_length,
            )
        )

        cache = CacheService(config.redis_url, default_ttl=config.cache_default_ttl)
        stack.callback(lambda: loop.run_until_complete(cache.close()))
        loop.run_until_complete(cache.connect())

        store = SqlDocumentStore.from_url(config.database_url, echo=config.db_echo)
        stack.callback(lambda: loop.run_until_complete(store.close()))
        if config.auto_create_tables:
            loop.run_until_complete(store.create_tables())

        yield WorkerResources(broker=broker, cache=cache, store=store, loop=loop)


def run_worker(config: PipelineConfig, metrics: Optional[PipelineMetrics] = None) -> int:
    """Run the worker until a shutdown signal arrives. Returns the exit status."""
    if not config.broker_configured:
        logger.error("RABBITMQ_URL is not set, order-event worker cannot start")
        return 1

    with worker_resources(config) as resources:
        worker = OrderEventWorker(
            resources.broker,
            resources.cache,
            resources.store,
            resources.loop,
            metrics=metrics,
            prefetch_count=config.prefetch_count,
        )

        try:
            worker.declare_queues()
        except BrokerUnavailableError as e:
            logger.error("Failed to start order-event worker", error=str(e))
            return 1

        signal.signal(signal.SIGINT, worker.stop)
        signal.signal(signal.SIGTERM, worker.stop)

        worker.run()
        logger.info("Order-event worker stopped", **worker.get_stats())

    return 0


def main():
    load_dotenv()
    config = get_config()
    configure_logging(config.log_level, json_logs=config.log_json)

    metrics = None
    if config.metrics_enabled:
        metrics = get_metrics()
        metrics.start_metrics_server(config.metrics_port)

    sys.exit(run_worker(config, metrics))


if __name__ == "__main__":
    main()

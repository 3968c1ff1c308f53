"""
Farmline Event Publisher

Turns typed domain actions into durable queue messages. Each call declares
its target queue (durable, bounded length), then sends a persistent UTF-8
JSON message. Delivery failures are logged and reported as ``False``; the
publisher never retries. The typed helpers raise pydantic's
``ValidationError`` for malformed input before anything is sent.
"""

import time
from typing import Any, Dict, Mapping, Optional, Union

import structlog
from kombu import Producer

from .broker import BrokerConnection, build_queue
from .event_schemas import (
    AnalyticsEvent,
    DomainEvent,
    NotificationEvent,
    OrderCreatedEvent,
    OrderSnapshot,
    OrderStatusUpdatedEvent,
    ProductUpdatedEvent,
    QueueName,
)
from .metrics import PipelineMetrics

logger = structlog.get_logger(__name__)

PERSISTENT_DELIVERY_MODE = 2


class EventPublisher:
    """Publishes domain events onto their named durable queues."""

    def __init__(self, broker: BrokerConnection, metrics: Optional[PipelineMetrics] = None):
        self.broker = broker
        self.metrics = metrics

        self.events_published = 0
        self.events_failed = 0
        self.events_by_queue: Dict[str, int] = {}

    def publish(self, queue_name: Union[QueueName, str], message: Union[DomainEvent, Mapping[str, Any]]) -> bool:
        """
        Publish one message to a queue.

        Returns True when the broker accepted the message. Returns False,
        without raising, when the broker is not configured or any step of
        connect/declare/send fails.
        """
        queue_value = queue_name.value if isinstance(queue_name, QueueName) else str(queue_name)

        if not self.broker.is_configured:
            logger.warning("Event publishing unavailable: no broker configured", queue=queue_value)
            self._record(queue_value, False)
            return False

        max_length = self.broker.max_queue_length

        try:
            body = message.to_wire() if isinstance(message, DomainEvent) else dict(message)
            queue = build_queue(queue_value, max_length)

            with self.broker.channel() as channel:
                declared = queue(channel).queue_declare()
                if declared is not None and declared.message_count >= max_length:
                    logger.warning(
                        "Queue is at capacity, broker may evict oldest messages",
                        queue=queue_value,
                        message_count=declared.message_count,
                        max_length=max_length,
                    )

                producer = Producer(channel, exchange=queue.exchange, auto_declare=False)
                producer.publish(
                    body,
                    routing_key=queue_value,
                    serializer="json",
                    delivery_mode=PERSISTENT_DELIVERY_MODE,
                    timestamp=int(time.time()),
                )

        except Exception as e:
            logger.error("Failed to publish event", queue=queue_value, error=str(e))
            self._record(queue_value, False)
            return False

        logger.info("Published event", queue=queue_value, type=body.get("type"))
        self._record(queue_value, True)
        return True

    # Typed event publishers

    def publish_order_created(self, order: Mapping[str, Any]) -> bool:
        """Publish ORDER_CREATED for a full order snapshot."""
        snapshot = OrderSnapshot.model_validate(order)
        event = OrderCreatedEvent(
            order_id=snapshot.id,
            user_id=snapshot.user_id,
            farmer_id=snapshot.farmer_id,
            total=snapshot.total_price,
            data=dict(order),
        )
        return self.publish(event.queue, event)

    def publish_order_status_updated(self, order_id: str, status: str, buyer_id: str, farmer_id: str) -> bool:
        event = OrderStatusUpdatedEvent(
            order_id=order_id,
            new_status=status,
            user_id=buyer_id,
            farmer_id=farmer_id,
        )
        return self.publish(event.queue, event)

    def publish_product_updated(
        self,
        product_id: str,
        farmer_id: str,
        action: Optional[str] = None,
        product_name: Optional[str] = None,
        stock: Optional[Union[int, float]] = None,
    ) -> bool:
        event = ProductUpdatedEvent(
            product_id=product_id,
            farmer_id=farmer_id,
            action=action,
            product_name=product_name,
            stock=stock,
        )
        return self.publish(event.queue, event)

    def publish_notification(self, user_id: str, notification: Mapping[str, Any]) -> bool:
        event = NotificationEvent(user_id=user_id, notification=dict(notification))
        return self.publish(event.queue, event)

    def publish_analytics_event(self, event_type: str, data: Any) -> bool:
        """Publish to the analytics sink; ``type`` on the wire is the raw event type."""
        event = AnalyticsEvent(type=event_type, data=data)
        return self.publish(event.queue, event)

    def get_metrics(self) -> Dict[str, Any]:
        """Get publisher counters"""
        attempts = self.events_published + self.events_failed
        return {
            "events_published": self.events_published,
            "events_failed": self.events_failed,
            "success_rate": self.events_published / max(1, attempts) * 100,
            "events_by_queue": dict(self.events_by_queue),
            "broker_state": self.broker.state.value,
        }

    def _record(self, queue: str, success: bool):
        if success:
            self.events_published += 1
            self.events_by_queue[queue] = self.events_by_queue.get(queue, 0) + 1
        else:
            self.events_failed += 1

        if self.metrics:
            self.metrics.record_event_published(queue, success)

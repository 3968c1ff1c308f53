"""
Farmline Event Gateway

Narrow entry point that takes an event name plus payload, validates it and
performs exactly one publish attempt. Callers get a uniform result that keeps
"bad request" apart from "publish failed", since the two call for different
retry behaviour.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import structlog
from pydantic import ValidationError

from .event_publisher import EventPublisher
from .event_schemas import (
    GATEWAY_INPUTS,
    AnalyticsRequest,
    EventType,
    NotificationRequest,
    ProductChange,
    StatusChange,
)
from .metrics import PipelineMetrics

logger = structlog.get_logger(__name__)


class SubmissionOutcome(str, Enum):
    ACCEPTED = "accepted"
    INVALID_EVENT_TYPE = "invalid_event_type"
    INVALID_PAYLOAD = "invalid_payload"
    PUBLISH_FAILED = "publish_failed"


_REASONS = {
    SubmissionOutcome.INVALID_EVENT_TYPE: "Invalid event type",
    SubmissionOutcome.INVALID_PAYLOAD: "Invalid event data",
    SubmissionOutcome.PUBLISH_FAILED: "Failed to publish event",
}


@dataclass
class GatewayResult:
    outcome: SubmissionOutcome
    reason: Optional[str] = None
    details: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome == SubmissionOutcome.ACCEPTED

    @property
    def is_client_error(self) -> bool:
        return self.outcome in (SubmissionOutcome.INVALID_EVENT_TYPE, SubmissionOutcome.INVALID_PAYLOAD)

    @classmethod
    def of(cls, outcome: SubmissionOutcome, details: Optional[List[Dict[str, Any]]] = None) -> "GatewayResult":
        return cls(outcome=outcome, reason=_REASONS.get(outcome), details=details or [])


class EventGateway:
    """Dispatches a typed event submission to the matching publisher operation."""

    def __init__(self, publisher: EventPublisher, metrics: Optional[PipelineMetrics] = None):
        self.publisher = publisher
        self.metrics = metrics

    def submit(self, event_type: Any, data: Optional[Mapping[str, Any]] = None) -> GatewayResult:
        """Validate and publish one event. No retries, no batching."""
        try:
            kind = EventType(event_type)
        except ValueError:
            logger.warning("Rejected event with unknown type", event_type=str(event_type))
            return self._finish("unknown", GatewayResult.of(SubmissionOutcome.INVALID_EVENT_TYPE))

        if data is not None and not isinstance(data, Mapping):
            logger.warning("Rejected event with non-object data", event_type=kind.value)
            details = [{"loc": ["data"], "msg": "Input should be an object"}]
            return self._finish(kind.value, GatewayResult.of(SubmissionOutcome.INVALID_PAYLOAD, details))

        payload = dict(data or {})

        try:
            request = GATEWAY_INPUTS[kind].model_validate(payload)
        except ValidationError as e:
            logger.warning("Rejected event with invalid data", event_type=kind.value, errors=e.error_count())
            details = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
            return self._finish(kind.value, GatewayResult.of(SubmissionOutcome.INVALID_PAYLOAD, details))

        published = self._publish(kind, request, payload)
        outcome = SubmissionOutcome.ACCEPTED if published else SubmissionOutcome.PUBLISH_FAILED
        return self._finish(kind.value, GatewayResult.of(outcome))

    def _publish(self, kind: EventType, request: Any, payload: Dict[str, Any]) -> bool:
        if kind == EventType.ORDER_CREATED:
            return self.publisher.publish_order_created(payload)

        if kind == EventType.ORDER_STATUS_UPDATED:
            change: StatusChange = request
            return self.publisher.publish_order_status_updated(
                change.order_id, change.status, change.buyer_id, change.farmer_id
            )

        if kind == EventType.PRODUCT_UPDATED:
            product: ProductChange = request
            return self.publisher.publish_product_updated(
                product.product_id,
                product.farmer_id,
                action=product.action,
                product_name=product.product_name,
                stock=product.stock,
            )

        if kind == EventType.NOTIFICATION:
            note: NotificationRequest = request
            return self.publisher.publish_notification(note.user_id, note.notification)

        analytics: AnalyticsRequest = request
        return self.publisher.publish_analytics_event(analytics.event_type, analytics.data)

    def _finish(self, event_type: str, result: GatewayResult) -> GatewayResult:
        if self.metrics:
            self.metrics.record_gateway_submission(event_type, result.outcome.value)
        return result

"""
Farmline Event Schemas

Pydantic models for the domain events carried on the order-event queues,
plus the input models accepted by the event gateway.

Each envelope class is bound to exactly one queue through its ``queue``
class attribute, and serializes to the camelCase wire shape that existing
producers and consumers expect.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Literal, Optional, Type, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)


class EventType(str, Enum):
    """Event names accepted by the gateway"""

    ORDER_CREATED = "ORDER_CREATED"
    ORDER_STATUS_UPDATED = "ORDER_STATUS_UPDATED"
    PRODUCT_UPDATED = "PRODUCT_UPDATED"
    NOTIFICATION = "NOTIFICATION"
    ANALYTICS = "ANALYTICS"


class QueueName(str, Enum):
    """Durable queue names; must match existing producers and consumers exactly"""

    ORDER_CREATED = "order.created"
    ORDER_STATUS_UPDATED = "order.status.updated"
    PRODUCT_UPDATED = "product.updated"
    NOTIFICATION = "notification"
    IMAGE_PROCESSING = "image.processing"
    ANALYTICS = "analytics.events"


# Queues bound by the order-event worker
CONSUMED_QUEUES = (
    QueueName.ORDER_CREATED,
    QueueName.ORDER_STATUS_UPDATED,
    QueueName.PRODUCT_UPDATED,
    QueueName.NOTIFICATION,
)


class EventDecodeError(ValueError):
    """Raised when a queue message cannot be decoded into its event type"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_amount(value: Union[int, float]) -> str:
    """Render a monetary total without a trailing .0 for whole numbers"""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# Event envelopes


class DomainEvent(BaseModel):
    """Base envelope for every queued event"""

    model_config = ConfigDict(populate_by_name=True)

    queue: ClassVar[QueueName]

    type: str
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp", mode="after")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_serializer("timestamp")
    def serialize_timestamp(self, v: datetime) -> str:
        return format_timestamp(v)

    def to_wire(self) -> Dict[str, Any]:
        """Convert to the JSON-ready camelCase message body"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)


class OrderCreatedEvent(DomainEvent):
    queue: ClassVar[QueueName] = QueueName.ORDER_CREATED

    type: Literal["ORDER_CREATED"] = "ORDER_CREATED"
    order_id: str = Field(..., alias="orderId")
    user_id: str = Field(..., alias="userId")
    farmer_id: str = Field(..., alias="farmerId")
    total: Optional[Union[int, float]] = None
    data: Dict[str, Any] = Field(default_factory=dict, description="Full order snapshot")


class OrderStatusUpdatedEvent(DomainEvent):
    queue: ClassVar[QueueName] = QueueName.ORDER_STATUS_UPDATED

    type: Literal["ORDER_STATUS_UPDATED"] = "ORDER_STATUS_UPDATED"
    order_id: str = Field(..., alias="orderId")
    new_status: str = Field(..., alias="newStatus")
    user_id: str = Field(..., alias="userId", description="Buyer receiving the update")
    farmer_id: str = Field(..., alias="farmerId")


class ProductUpdatedEvent(DomainEvent):
    queue: ClassVar[QueueName] = QueueName.PRODUCT_UPDATED

    type: Literal["PRODUCT_UPDATED"] = "PRODUCT_UPDATED"
    product_id: str = Field(..., alias="productId")
    farmer_id: str = Field(..., alias="farmerId")
    action: Optional[str] = None
    product_name: Optional[str] = Field(None, alias="productName")
    stock: Optional[Union[int, float]] = None


class NotificationEvent(DomainEvent):
    queue: ClassVar[QueueName] = QueueName.NOTIFICATION

    type: Literal["NOTIFICATION"] = "NOTIFICATION"
    user_id: str = Field(..., alias="userId")
    notification: Dict[str, Any]


class AnalyticsEvent(DomainEvent):
    """Analytics event; ``type`` carries the caller's raw event type"""

    queue: ClassVar[QueueName] = QueueName.ANALYTICS

    data: Any = None

    def to_wire(self) -> Dict[str, Any]:
        # data is part of the contract even when null
        wire = super().to_wire()
        wire.setdefault("data", None)
        return wire


ConsumedEvent = Union[OrderCreatedEvent, OrderStatusUpdatedEvent, ProductUpdatedEvent, NotificationEvent]

EVENT_MODELS: Dict[QueueName, Type[DomainEvent]] = {
    model.queue: model
    for model in (
        OrderCreatedEvent,
        OrderStatusUpdatedEvent,
        ProductUpdatedEvent,
        NotificationEvent,
        AnalyticsEvent,
    )
}


def decode_event(queue_name: Union[QueueName, str], body: Union[bytes, str, Dict[str, Any]]) -> DomainEvent:
    """
    Decode a queue message body into the event type bound to that queue.

    Raises:
        EventDecodeError: malformed JSON, schema mismatch, or unknown queue
    """
    try:
        queue = QueueName(queue_name)
    except ValueError:
        raise EventDecodeError(f"Unknown queue '{queue_name}'")

    model = EVENT_MODELS.get(queue)
    if model is None:
        raise EventDecodeError(f"No event type is bound to queue '{queue.value}'")

    try:
        if isinstance(body, dict):
            return model.model_validate(body)
        return model.model_validate_json(body)
    except ValidationError as e:
        raise EventDecodeError(f"Invalid {model.__name__} message on '{queue.value}': {e}") from e


# Gateway input models


class GatewayInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OrderSnapshot(GatewayInput):
    """Order as submitted by the checkout flow; unknown fields are preserved"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., validation_alias=AliasChoices("id", "orderId"))
    user_id: str = Field(..., validation_alias=AliasChoices("userId", "user_id"))
    farmer_id: str = Field(..., validation_alias=AliasChoices("farmerId", "farmer_id"))
    total_price: Union[int, float] = Field(..., validation_alias=AliasChoices("totalPrice", "total"))


class StatusChange(GatewayInput):
    order_id: str = Field(..., alias="orderId")
    status: str
    buyer_id: str = Field(..., alias="buyerId")
    farmer_id: str = Field(..., alias="farmerId")


class ProductChange(GatewayInput):
    product_id: str = Field(..., alias="productId")
    farmer_id: str = Field(..., alias="farmerId")
    action: Optional[str] = None
    product_name: Optional[str] = Field(None, alias="productName")
    stock: Optional[Union[int, float]] = None


class NotificationRequest(GatewayInput):
    user_id: str = Field(..., alias="userId")
    notification: Dict[str, Any]


class AnalyticsRequest(GatewayInput):
    event_type: str = Field(..., alias="eventType", min_length=1)
    data: Any = None


GATEWAY_INPUTS: Dict[EventType, Type[GatewayInput]] = {
    EventType.ORDER_CREATED: OrderSnapshot,
    EventType.ORDER_STATUS_UPDATED: StatusChange,
    EventType.PRODUCT_UPDATED: ProductChange,
    EventType.NOTIFICATION: NotificationRequest,
    EventType.ANALYTICS: AnalyticsRequest,
}

"""
Farmline Event Client

HTTP client for code that must not talk to the broker directly (browser-side
code, other services). Submits events to the gateway's ``POST /api/events``
endpoint and reports success as a boolean; it never raises.
"""

from typing import Any, Mapping, Optional, Union

import httpx
import structlog

from .event_schemas import EventType

logger = structlog.get_logger(__name__)


class EventClient:
    """Posts ``{eventType, data}`` submissions to the event gateway."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        events_path: str = "/api/events",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.events_path = events_path
        self._client = client

    async def publish_event(self, event_type: Union[EventType, str], data: Any) -> bool:
        name = event_type.value if isinstance(event_type, EventType) else event_type
        url = f"{self.base_url}{self.events_path}"

        try:
            if self._client is not None:
                response = await self._client.post(url, json={"eventType": name, "data": data})
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json={"eventType": name, "data": data})
        except httpx.HTTPError as e:
            logger.error("Error publishing event", event_type=name, error=str(e))
            return False

        if response.is_success:
            return True

        logger.error(
            "Failed to publish event",
            event_type=name,
            status_code=response.status_code,
            body=response.text[:500],
        )
        return False

    async def publish_order_created(self, order: Mapping[str, Any]) -> bool:
        return await self.publish_event(EventType.ORDER_CREATED, dict(order))

    async def publish_order_status_updated(self, order_id: str, status: str, buyer_id: str, farmer_id: str) -> bool:
        return await self.publish_event(
            EventType.ORDER_STATUS_UPDATED,
            {"orderId": order_id, "status": status, "buyerId": buyer_id, "farmerId": farmer_id},
        )

    async def publish_product_updated(
        self,
        product_id: str,
        farmer_id: str,
        action: Optional[str] = None,
        product_name: Optional[str] = None,
        stock: Optional[Union[int, float]] = None,
    ) -> bool:
        return await self.publish_event(
            EventType.PRODUCT_UPDATED,
            {
                "productId": product_id,
                "farmerId": farmer_id,
                "action": action,
                "productName": product_name,
                "stock": stock,
            },
        )

    async def publish_notification(self, user_id: str, notification: Mapping[str, Any]) -> bool:
        return await self.publish_event(
            EventType.NOTIFICATION, {"userId": user_id, "notification": dict(notification)}
        )

    async def publish_analytics_event(self, event_type: str, data: Any) -> bool:
        return await self.publish_event(EventType.ANALYTICS, {"eventType": event_type, "data": data})

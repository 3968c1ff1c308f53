"""
Document shapes written by the order-event worker.

Field names use the camelCase aliases of the marketplace's documents, while
attribute access stays snake_case.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class NotificationDocument(BaseModel):
    """In-app notification; unknown fields from the producer are preserved"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    user_id: str = Field(..., alias="userId")
    type: str = "GENERAL"
    title: Optional[str] = None
    message: Optional[str] = None
    order_id: Optional[str] = Field(None, alias="orderId")
    read: bool = False
    created_at: datetime = Field(..., alias="createdAt")

    @property
    def extra_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class AnalyticsDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    order_id: Optional[str] = Field(None, alias="orderId")
    amount: Optional[Union[int, float]] = None
    timestamp: datetime
    user_id: Optional[str] = Field(None, alias="userId")
    farmer_id: Optional[str] = Field(None, alias="farmerId")
    data: Dict[str, Any] = Field(default_factory=dict)


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: str = "buyer"

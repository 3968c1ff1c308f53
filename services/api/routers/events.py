from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from packages.orchestrator.event_gateway import EventGateway
from services.api.dependencies import get_gateway

router = APIRouter()
logger = structlog.get_logger(__name__)


class EventSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: Optional[Any] = Field(None, alias="eventType")
    data: Optional[Any] = None


@router.post("")
async def submit_event(submission: EventSubmission, gateway: EventGateway = Depends(get_gateway)):
    """Validate an event submission and publish it to its queue."""
    try:
        # Publishing talks to the broker synchronously
        result = await run_in_threadpool(gateway.submit, submission.event_type, submission.data)
    except Exception as e:
        logger.error("Event API error", event_type=str(submission.event_type), error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    if result.success:
        return {"success": True}

    content = {"error": result.reason}
    if result.details:
        content["details"] = result.details

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST if result.is_client_error else status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
    )

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from dispatcher.api.deps import get_dispatch_context, require_trigger_secret
from dispatcher.api.models import TriggerErrorResponse, TriggerResponse
from dispatcher.dispatch.factory import DispatchContext

router = APIRouter()
logger = logging.getLogger(__name__)


def _timestamp() -> str:
  return datetime.now(UTC).isoformat()


@router.get("/trigger-notifications", response_model=TriggerResponse, responses={500: {"model": TriggerErrorResponse}}, dependencies=[Depends(require_trigger_secret)])
async def trigger_notifications(context: Annotated[DispatchContext, Depends(get_dispatch_context)]) -> TriggerResponse | JSONResponse:
  """Run one dispatch cycle now and report how many deliveries succeeded."""
  logger.info("Dispatch cycle triggered")
  try:
    result = await context.cycle.run()
  except Exception as exc:  # noqa: BLE001
    logger.error("Dispatch cycle aborted error=%s", exc, exc_info=True)
    payload = TriggerErrorResponse(error=str(exc), timestamp=_timestamp())
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload.model_dump())

  return TriggerResponse(success=True, sent=result.total_sent, timestamp=_timestamp())

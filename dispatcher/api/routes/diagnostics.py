"""Read-only diagnostic listings of the dispatch data store."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from dispatcher.api.deps import get_dispatch_context
from dispatcher.api.models import CollectionsResponse, CredentialsResponse, NotificationsResponse, OverviewResponse, TokensResponse, UsersResponse
from dispatcher.core.firebase import check_credentials
from dispatcher.dispatch.factory import DispatchContext

router = APIRouter()
logger = logging.getLogger(__name__)

ContextDep = Annotated[DispatchContext, Depends(get_dispatch_context)]


def _failure(exc: Exception, *, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> JSONResponse:
  return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})


async def _guarded_listing(label: str, fetch: Callable[[], Awaitable[Any]]) -> tuple[Any, JSONResponse | None]:
  try:
    return await fetch(), None
  except Exception as exc:  # noqa: BLE001
    logger.error("Diagnostic listing failed listing=%s error=%s", label, exc, exc_info=True)
    return None, _failure(exc)


@router.get("/users", response_model=UsersResponse)
async def list_users(context: ContextDep) -> UsersResponse | JSONResponse:
  """List every recipient document at the root collection."""
  users, failure = await _guarded_listing("users", context.diagnostics.list_users)
  if failure is not None:
    return failure
  return UsersResponse(count=len(users), users=users)


@router.get("/notifications", response_model=NotificationsResponse)
async def list_notifications(context: ContextDep) -> NotificationsResponse | JSONResponse:
  """List notifications across all recipients."""
  rows, failure = await _guarded_listing("notifications", context.diagnostics.list_notifications)
  if failure is not None:
    return failure
  return NotificationsResponse(count=len(rows), notifications=rows)


@router.get("/tokens", response_model=TokensResponse)
async def list_tokens(context: ContextDep) -> TokensResponse | JSONResponse:
  """List registered push tokens across all recipients."""
  rows, failure = await _guarded_listing("tokens", context.diagnostics.list_tokens)
  if failure is not None:
    return failure
  return TokensResponse(count=len(rows), tokens=rows)


@router.get("/overview", response_model=OverviewResponse)
async def overview(context: ContextDep) -> OverviewResponse | JSONResponse:
  summary, failure = await _guarded_listing("overview", context.diagnostics.overview)
  if failure is not None:
    return failure
  return OverviewResponse(collections=summary["collections"], counts=summary["counts"])


@router.get("/test", response_model=CollectionsResponse)
async def test_connection(context: ContextDep) -> CollectionsResponse | JSONResponse:
  """Check Firestore connectivity; failures are reported in the body with a 200."""
  try:
    collections = await context.diagnostics.list_root_collections()
  except Exception as exc:  # noqa: BLE001
    logger.error("Firestore connectivity check failed error=%s", exc, exc_info=True)
    return _failure(exc, status_code=status.HTTP_200_OK)
  return CollectionsResponse(collections=collections)


@router.get("/test-credentials", response_model=CredentialsResponse)
async def test_credentials(context: ContextDep) -> CredentialsResponse:
  """Report the shape of the configured credentials without returning the key."""
  return CredentialsResponse(credentials=check_credentials(context.settings))

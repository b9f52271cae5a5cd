from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class LivenessResponse(BaseModel):
  """Response model for the liveness check."""

  status: str
  message: str


class TriggerResponse(BaseModel):
  """Outcome of a manually or externally triggered dispatch cycle."""

  success: bool
  sent: int = Field(ge=0, description="Successful deliveries across every gateway call in the cycle.")
  timestamp: str


class TriggerErrorResponse(BaseModel):
  """Returned when the dispatch cycle aborted before completing."""

  success: bool = False
  error: str
  timestamp: str


class UserSummary(BaseModel):
  id: str
  email: str


class UsersResponse(BaseModel):
  success: bool = True
  count: int
  users: list[UserSummary]


class NotificationsResponse(BaseModel):
  success: bool = True
  count: int
  notifications: list[dict[str, Any]]


class TokensResponse(BaseModel):
  success: bool = True
  count: int
  tokens: list[dict[str, Any]]


class OverviewResponse(BaseModel):
  success: bool = True
  collections: list[str]
  counts: dict[str, int]


class CollectionsResponse(BaseModel):
  success: bool = True
  collections: list[str]


class CredentialsResponse(BaseModel):
  success: bool = True
  credentials: dict[str, Any]

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from dispatcher.api.models import LivenessResponse
from dispatcher.api.routes import diagnostics, trigger
from dispatcher.config import get_settings
from dispatcher.core.exceptions import global_exception_handler, http_exception_handler
from dispatcher.core.lifespan import lifespan
from dispatcher.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="reminder-dispatcher", lifespan=lifespan)

if settings.allowed_origins:
  app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=False, allow_methods=["GET", "OPTIONS"], allow_headers=["content-type"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)

_LIVENESS_MESSAGE = "Reminder dispatcher is running"


@app.get("/", response_model=LivenessResponse)
async def root() -> LivenessResponse:
  """Return a simple liveness status."""
  return LivenessResponse(status="ok", message=_LIVENESS_MESSAGE)


@app.get("/health", response_model=LivenessResponse, include_in_schema=False)
async def health_check() -> LivenessResponse:
  return LivenessResponse(status="ok", message=_LIVENESS_MESSAGE)


app.include_router(trigger.router, tags=["dispatch"])
app.include_router(diagnostics.router, tags=["diagnostics"])

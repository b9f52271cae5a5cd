from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from conftest import make_settings
from fastapi import FastAPI

from dispatcher.core.env_contract import EnvContractError
from dispatcher.core.lifespan import lifespan
from dispatcher.dispatch.factory import DispatchContext
from scripts.entrypoint import build_uvicorn_args


@pytest.fixture
def startup_patches():
  with (
    patch("dispatcher.config.get_settings", return_value=make_settings()),
    patch("dispatcher.core.lifespan.initialize_logging") as init_logging,
    patch("dispatcher.core.lifespan.validate_runtime_env_or_raise") as validate_env,
    patch("dispatcher.core.lifespan.initialize_firebase") as init_firebase,
  ):
    yield {"logging": init_logging, "env": validate_env, "firebase": init_firebase}


@pytest.mark.anyio
async def test_lifespan_builds_context_and_drains_on_shutdown(startup_patches):
  app = FastAPI()

  async with lifespan(app):
    context = app.state.dispatch_context
    assert isinstance(context, DispatchContext)
    assert context.settings.lookback_seconds == 60
    context.actions.drain = MagicMock(side_effect=context.actions.drain)

  startup_patches["firebase"].assert_called_once()
  context.actions.drain.assert_called_once()


@pytest.mark.anyio
async def test_lifespan_keeps_preinstalled_context(startup_patches):
  app = FastAPI()
  preinstalled = MagicMock()
  preinstalled.actions.drain = MagicMock(side_effect=_noop)
  app.state.dispatch_context = preinstalled

  async with lifespan(app):
    assert app.state.dispatch_context is preinstalled


@pytest.mark.anyio
async def test_lifespan_refuses_to_start_without_credentials(startup_patches):
  startup_patches["env"].side_effect = EnvContractError("FIREBASE_PROJECT_ID: required variable is missing.")
  app = FastAPI()

  with pytest.raises(EnvContractError):
    async with lifespan(app):
      pytest.fail("startup should not complete")

  startup_patches["firebase"].assert_not_called()


async def _noop() -> None:
  return None


def test_entrypoint_binds_all_interfaces_on_configured_port():
  assert build_uvicorn_args(8080) == ["uvicorn", "dispatcher.main:app", "--host", "0.0.0.0", "--port", "8080", "--no-server-header"]

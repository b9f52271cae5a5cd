"""Runtime environment contract checks for the dispatcher service.

How/Why:
- Missing Firebase credentials must stop the process before it serves a request.
- Secret values are redacted in startup logs.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass

EnvValidator = Callable[[str, dict[str, str]], str | None]


@dataclass(frozen=True)
class EnvVarDefinition:
  """Describe how an environment variable must be validated."""

  name: str
  required: bool
  secret: bool
  validator: EnvValidator | None = None


class EnvContractError(RuntimeError):
  """Raised when required runtime environment keys are missing or invalid."""


def _validate_client_email(value: str, _: dict[str, str]) -> str | None:
  """Service-account emails always carry a domain part."""
  if "@" not in value:
    return "must be a service-account email address."

  return None


def _validate_private_key(value: str, _: dict[str, str]) -> str | None:
  """Accept PEM keys with real or escaped newlines."""
  if "BEGIN PRIVATE KEY" not in value:
    return "must be a PEM encoded private key."

  return None


def _validate_positive_int(value: str, _: dict[str, str]) -> str | None:
  try:
    parsed = int(value)
  except ValueError:
    return "must be an integer."

  if parsed <= 0:
    return "must be a positive integer."

  return None


def _validate_allowed_origins(value: str, _: dict[str, str]) -> str | None:
  """Enforce strict CORS origins so wildcards cannot be introduced silently."""
  origins = [origin.strip() for origin in value.split(",") if origin.strip()]
  if "*" in origins:
    return "must not include wildcard origins."

  return None


REQUIRED_ENV_REGISTRY: tuple[EnvVarDefinition, ...] = (
  EnvVarDefinition(name="FIREBASE_PROJECT_ID", required=True, secret=False),
  EnvVarDefinition(name="FIREBASE_CLIENT_EMAIL", required=True, secret=False, validator=_validate_client_email),
  EnvVarDefinition(name="FIREBASE_PRIVATE_KEY", required=True, secret=True, validator=_validate_private_key),
  EnvVarDefinition(name="DISPATCH_TRIGGER_SECRET", required=False, secret=True),
  EnvVarDefinition(name="PORT", required=False, secret=False, validator=_validate_positive_int),
  EnvVarDefinition(name="DISPATCH_LOOKBACK_SECONDS", required=False, secret=False, validator=_validate_positive_int),
  EnvVarDefinition(name="DISPATCH_ALLOWED_ORIGINS", required=False, secret=False, validator=_validate_allowed_origins),
)


def list_required_env_names() -> tuple[str, ...]:
  """Expose required key names for deploy automation."""
  return tuple(definition.name for definition in REQUIRED_ENV_REGISTRY if definition.required)


def validate_env_values(*, env_map: dict[str, str]) -> list[str]:
  """Validate a provided env map against the contract rules."""
  errors: list[str] = []
  for definition in REQUIRED_ENV_REGISTRY:
    value = env_map.get(definition.name, "")
    if definition.required and value.strip() == "":
      errors.append(f"{definition.name}: required variable is missing.")
      continue

    if definition.validator and value.strip() != "":
      validation_error = definition.validator(value, env_map)
      if validation_error:
        errors.append(f"{definition.name}: {validation_error}")

  return errors


def validate_runtime_env_or_raise(*, logger: logging.Logger) -> None:
  """Validate and log runtime env values, raising on any violation."""
  resolved_values: dict[str, str] = {}
  for definition in REQUIRED_ENV_REGISTRY:
    value = os.getenv(definition.name, "")
    resolved_values[definition.name] = value
    if definition.secret:
      logger.info("ENV_CHECK key=%s value=%s", definition.name, "<redacted>" if value else "<missing>")
    elif value == "":
      logger.info("ENV_CHECK key=%s value=<missing>", definition.name)
    else:
      logger.info("ENV_CHECK key=%s value=%s", definition.name, value)

  errors = validate_env_values(env_map=resolved_values)
  if not errors:
    logger.info("ENV_CHECK status=ok checked=%d", len(REQUIRED_ENV_REGISTRY))
    return

  message = "ENV_CHECK status=failed violations:\n- {errors}".format(errors="\n- ".join(errors))
  logger.error(message)
  raise EnvContractError(message)

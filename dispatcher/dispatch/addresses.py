"""Address lookup and partitioning for a recipient."""

from __future__ import annotations

from dispatcher.dispatch.contracts import DeviceRegistration, RegistrationRegistry


async def fetch_addresses(registry: RegistrationRegistry, recipient_id: str) -> list[DeviceRegistration]:
  """Return every registered address for a recipient, deduplicated by token."""
  registrations = await registry.list_for_recipient(recipient_id)
  seen: set[str] = set()
  unique: list[DeviceRegistration] = []
  for registration in registrations:
    if not registration.token or registration.token in seen:
      continue
    seen.add(registration.token)
    unique.append(registration)
  return unique


def partition_by_device(registrations: list[DeviceRegistration], device_id: str) -> tuple[list[DeviceRegistration], list[DeviceRegistration]]:
  """Split registrations into those tagged with device_id and all others."""
  matching = [registration for registration in registrations if registration.device_id == device_id]
  other = [registration for registration in registrations if registration.device_id != device_id]
  return matching, other

"""Construction of the dispatch context shared by the HTTP surface."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from dispatcher.config import Settings
from dispatcher.dispatch.background import BackgroundActions
from dispatcher.dispatch.contracts import NotificationStore, PushGateway, RegistrationRegistry
from dispatcher.dispatch.orchestrator import DispatchCycle, utc_now
from dispatcher.dispatch.push_gateway import FirebasePushGateway
from dispatcher.dispatch.reconciler import DeliveryReconciler
from dispatcher.dispatch.routing import RoutingPolicy
from dispatcher.storage.diagnostics_repo import DiagnosticsRepository
from dispatcher.storage.notifications_repo import FirestoreNotificationStore
from dispatcher.storage.registrations_repo import FirestoreRegistrationRegistry


@dataclass
class DispatchContext:
  """Collaborators built once at startup and handed to request handlers."""

  settings: Settings
  cycle: DispatchCycle
  actions: BackgroundActions
  diagnostics: DiagnosticsRepository


def build_dispatch_context(
  settings: Settings,
  *,
  store: NotificationStore | None = None,
  registry: RegistrationRegistry | None = None,
  gateway: PushGateway | None = None,
  diagnostics: DiagnosticsRepository | None = None,
  clock: Callable[[], datetime] = utc_now,
) -> DispatchContext:
  """Wire the dispatch engine; any collaborator can be replaced with a double."""
  store = store if store is not None else FirestoreNotificationStore()
  registry = registry if registry is not None else FirestoreRegistrationRegistry()
  gateway = gateway if gateway is not None else FirebasePushGateway(dry_run=settings.push_dry_run)
  diagnostics = diagnostics if diagnostics is not None else DiagnosticsRepository()

  actions = BackgroundActions()
  reconciler = DeliveryReconciler(store=store, registry=registry, actions=actions)
  routing = RoutingPolicy(gateway=gateway, reconciler=reconciler, android_channel_id=settings.android_channel_id)
  cycle = DispatchCycle(
    store=store,
    registry=registry,
    routing=routing,
    lookback=timedelta(seconds=settings.lookback_seconds),
    claim_ttl=timedelta(seconds=settings.claim_ttl_seconds),
    recipient_concurrency=settings.recipient_concurrency,
    clock=clock,
  )
  return DispatchContext(settings=settings, cycle=cycle, actions=actions, diagnostics=diagnostics)

from __future__ import annotations

import logging

import pytest
from conftest import NOW, FakeRegistrationRegistry, InMemoryNotificationStore, make_notification

from dispatcher.dispatch.background import BackgroundActions
from dispatcher.dispatch.contracts import AddressOutcome, DeliveryReport, DeliveryTarget, DeviceRegistration, StoreWriteError
from dispatcher.dispatch.reconciler import NOTE_NO_ADDRESSES, DeliveryReconciler, Reconciliation, describe_target


def _claimed(store: InMemoryNotificationStore, notification, claim_id: str = "claim-1"):
  store.add(notification)
  store.fields[notification.id].update({"status": "processing", "claimId": claim_id})
  return notification


def _report(*outcomes: tuple[str, bool]) -> DeliveryReport:
  return DeliveryReport(outcomes=[AddressOutcome(token=token, success=ok, error_code=None if ok else "NOT_FOUND") for token, ok in outcomes])


def test_describe_target_labels():
  assert describe_target(DeliveryTarget.ORIGIN_DEVICE, "x") == "x"
  assert describe_target(DeliveryTarget.FALLBACK_OTHER, "x") == "other_devices"
  assert describe_target(DeliveryTarget.BROADCAST, None) == "all_devices"
  assert describe_target(DeliveryTarget.NONE, "x") is None


@pytest.mark.anyio
async def test_record_sent_writes_metadata_and_prunes_failed_tokens():
  store = InMemoryNotificationStore()
  registry = FakeRegistrationRegistry([DeviceRegistration(recipient_id="r1", token="good"), DeviceRegistration(recipient_id="r1", token="stale")])
  actions = BackgroundActions()
  reconciler = DeliveryReconciler(store=store, registry=registry, actions=actions)
  notification = _claimed(store, make_notification())

  recorded = await reconciler.record_sent(notification, claim_id="claim-1", target=DeliveryTarget.BROADCAST, report=_report(("good", True), ("stale", False)), now=NOW)
  await actions.drain()

  fields = store.fields["n1"]
  assert fields["status"] == "sent"
  assert fields["sentAt"] == NOW
  assert fields["successCount"] == 1
  assert fields["failureCount"] == 1
  assert fields["deliveryTarget"] == "broadcast"
  assert fields["sentToDevice"] == "all_devices"
  assert "note" not in fields
  assert recorded == Reconciliation(applied=True, pruned_tokens=("stale",))
  assert registry.tokens_for("r1") == ["good"]


@pytest.mark.anyio
async def test_record_sent_without_report_annotates_note():
  store = InMemoryNotificationStore()
  reconciler = DeliveryReconciler(store=store, registry=FakeRegistrationRegistry(), actions=BackgroundActions())
  notification = _claimed(store, make_notification())

  recorded = await reconciler.record_sent(notification, claim_id="claim-1", target=DeliveryTarget.NONE, report=None, now=NOW, note=NOTE_NO_ADDRESSES)

  assert recorded == Reconciliation(applied=True)
  assert store.fields["n1"]["status"] == "sent"
  assert store.fields["n1"]["successCount"] == 0
  assert store.fields["n1"]["note"] == NOTE_NO_ADDRESSES


@pytest.mark.anyio
async def test_record_failed_writes_error():
  store = InMemoryNotificationStore()
  reconciler = DeliveryReconciler(store=store, registry=FakeRegistrationRegistry(), actions=BackgroundActions())
  notification = _claimed(store, make_notification(device_id="x"))

  applied = await reconciler.record_failed(notification, claim_id="claim-1", target=DeliveryTarget.ORIGIN_DEVICE, error="FCM send failed: boom", now=NOW)

  fields = store.fields["n1"]
  assert fields["status"] == "failed"
  assert fields["failedAt"] == NOW
  assert fields["error"] == "FCM send failed: boom"
  assert fields["deliveryTarget"] == "origin_device"
  assert applied is True


@pytest.mark.anyio
async def test_prune_failure_is_logged_and_does_not_block_finalize(caplog):
  store = InMemoryNotificationStore()
  registry = FakeRegistrationRegistry()
  registry.delete_error = RuntimeError("permission denied")
  actions = BackgroundActions()
  reconciler = DeliveryReconciler(store=store, registry=registry, actions=actions)
  notification = _claimed(store, make_notification())

  with caplog.at_level(logging.ERROR, logger="dispatcher.dispatch.reconciler"):
    await reconciler.record_sent(notification, claim_id="claim-1", target=DeliveryTarget.BROADCAST, report=_report(("stale", False)), now=NOW)
    await actions.drain()

  assert store.fields["n1"]["status"] == "sent"
  assert any("Failed pruning address" in record.getMessage() for record in caplog.records)


@pytest.mark.anyio
async def test_finalize_with_lost_claim_leaves_document_untouched():
  store = InMemoryNotificationStore()
  reconciler = DeliveryReconciler(store=store, registry=FakeRegistrationRegistry(), actions=BackgroundActions())
  notification = _claimed(store, make_notification(), claim_id="someone-else")

  recorded = await reconciler.record_sent(notification, claim_id="claim-1", target=DeliveryTarget.BROADCAST, report=_report(("t", True)), now=NOW)

  assert store.fields["n1"]["status"] == "processing"
  assert recorded == Reconciliation(applied=False)
  assert "sentAt" not in store.fields["n1"]


@pytest.mark.anyio
async def test_finalize_errors_surface_as_store_write_error():
  store = InMemoryNotificationStore()
  store.finalize_error = RuntimeError("aborted")
  reconciler = DeliveryReconciler(store=store, registry=FakeRegistrationRegistry(), actions=BackgroundActions())
  notification = _claimed(store, make_notification())

  with pytest.raises(StoreWriteError, match="n1"):
    await reconciler.record_failed(notification, claim_id="claim-1", target=DeliveryTarget.BROADCAST, error="x", now=NOW)

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import NOW, make_notification

from dispatcher.dispatch.contracts import DueSetQueryError, NotificationStatus
from dispatcher.dispatch.due_set import resolve_due_set


@pytest.mark.anyio
async def test_resolve_due_set_groups_by_recipient_in_store_order(store):
  store.add(make_notification("n1", recipient_id="r1", seconds_ago=30))
  store.add(make_notification("n2", recipient_id="r2", seconds_ago=20))
  store.add(make_notification("n3", recipient_id="r1", seconds_ago=5))

  groups = await resolve_due_set(store, now=NOW, lookback=timedelta(seconds=60))

  assert set(groups) == {"r1", "r2"}
  assert [n.id for n in groups["r1"]] == ["n1", "n3"]
  assert [n.id for n in groups["r2"]] == ["n2"]


@pytest.mark.anyio
async def test_resolve_due_set_window_is_inclusive_on_both_ends(store):
  store.add(make_notification("edge-start", seconds_ago=60))
  store.add(make_notification("edge-now", seconds_ago=0))
  store.add(make_notification("too-old", seconds_ago=61))
  store.add(make_notification("future", seconds_ago=-5))

  groups = await resolve_due_set(store, now=NOW, lookback=timedelta(seconds=60))

  assert [n.id for n in groups["r1"]] == ["edge-start", "edge-now"]


@pytest.mark.anyio
async def test_resolve_due_set_refilters_results_from_a_lax_store():
  lax_store = AsyncMock()
  lax_store.query_due.return_value = [
    make_notification("ok", seconds_ago=10),
    make_notification("sent-already", seconds_ago=10, status=NotificationStatus.SENT),
    make_notification("outside", seconds_ago=600),
  ]

  groups = await resolve_due_set(lax_store, now=NOW, lookback=timedelta(seconds=60))

  assert [n.id for n in groups["r1"]] == ["ok"]
  lax_store.query_due.assert_awaited_once_with(window_start=NOW - timedelta(seconds=60), now=NOW)


@pytest.mark.anyio
async def test_resolve_due_set_empty_store_returns_empty_mapping(store):
  assert await resolve_due_set(store, now=NOW, lookback=timedelta(seconds=60)) == {}


@pytest.mark.anyio
async def test_resolve_due_set_wraps_query_failures(store):
  store.query_error = RuntimeError("deadline exceeded")

  with pytest.raises(DueSetQueryError, match="deadline exceeded"):
    await resolve_due_set(store, now=NOW, lookback=timedelta(seconds=60))

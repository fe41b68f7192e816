import asyncio

import pytest

from apfsds.billing import BillingAggregator


class RecordingStore:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def record_usage(self, user_id, nbytes):
        self.calls.append((user_id, nbytes))
        if self.fail:
            raise RuntimeError("database down")


@pytest.mark.asyncio
async def test_usage_is_summed_per_user():
    store = RecordingStore()
    billing = BillingAggregator(store)
    await billing.record_usage(1, 100)
    await billing.record_usage(1, 50)
    await billing.record_usage(2, 7)
    await billing.flush()
    assert sorted(store.calls) == [(1, 100 + 50), (2, 7)]
    assert billing.pending() == {}


@pytest.mark.asyncio
async def test_empty_flush_writes_nothing():
    store = RecordingStore()
    billing = BillingAggregator(store)
    await billing.flush()
    assert store.calls == []


@pytest.mark.asyncio
async def test_flush_twice_does_not_double_count():
    store = RecordingStore()
    billing = BillingAggregator(store)
    await billing.record_usage(3, 10)
    await billing.flush()
    await billing.flush()
    assert store.calls == [(3, 10)]


@pytest.mark.asyncio
async def test_failed_writes_are_dropped():
    store = RecordingStore(fail=True)
    billing = BillingAggregator(store)
    await billing.record_usage(4, 1)
    await billing.record_usage(5, 2)
    await billing.flush()
    assert sorted(store.calls) == [(4, 1), (5, 2)]
    assert billing.pending() == {}


@pytest.mark.asyncio
async def test_start_flushes_periodically():
    store = RecordingStore()
    billing = BillingAggregator(store, flush_interval=0.01)
    task = billing.start()
    await billing.record_usage(6, 42)
    for _ in range(100):
        if store.calls:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert store.calls == [(6, 42)]
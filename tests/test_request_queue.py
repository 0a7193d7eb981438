import asyncio

import pytest

from fakes import FakeHttpClient, FakeLegacyClient, legacy_details, modern_details
from printer_contexts import (
    ContextNotFoundError,
    Outcome,
    QueueOverflowError,
    UnsupportedOperationError,
    build_runtime,
)


@pytest.mark.asyncio
async def test_legacy_printer_runs_one_request_at_a_time(quiet_runtime):
    legacy = FakeLegacyClient(thumbnail_delay=0.01)
    context_id = await quiet_runtime.create_context(legacy_details(), legacy)

    files = [f"job{n}.gx" for n in range(5)]
    results = await asyncio.gather(*(quiet_runtime.enqueue_request(name) for name in files))

    assert all(result.ok for result in results)
    assert [result.value for result in results] == [f"png:{name}".encode() for name in files]
    assert legacy.max_active_requests == 1
    assert quiet_runtime.requests.max_in_flight_seen(context_id) == 1
    assert quiet_runtime.requests.in_flight_count(context_id) == 0


@pytest.mark.asyncio
async def test_modern_printer_respects_concurrency_limit(quiet_runtime, quiet_config):
    http = FakeHttpClient(thumbnail_delay=0.02)
    context_id = await quiet_runtime.create_context(modern_details(), http, FakeLegacyClient())

    results = await asyncio.gather(*(quiet_runtime.enqueue_request(f"job{n}.gcode") for n in range(8)))
    assert all(result.ok for result in results)
    assert http.max_active_requests == quiet_config.modern_request_concurrency
    assert quiet_runtime.requests.max_in_flight_seen(context_id) == quiet_config.modern_request_concurrency


@pytest.mark.asyncio
async def test_same_key_shares_one_request(quiet_runtime):
    legacy = FakeLegacyClient(thumbnail_delay=0.01)
    await quiet_runtime.create_context(legacy_details(), legacy)

    first, second = await asyncio.gather(quiet_runtime.enqueue_request("cube.gx"),
                                         quiet_runtime.enqueue_request("cube.gx"))
    assert legacy.thumbnail_calls == ["cube.gx"]
    assert first == second
    assert first.ok


@pytest.mark.asyncio
async def test_higher_priority_served_first(quiet_runtime):
    legacy = FakeLegacyClient(thumbnail_delay=0.01)
    await quiet_runtime.create_context(legacy_details(), legacy)

    tasks = [
        asyncio.create_task(quiet_runtime.enqueue_request("first.gx")),
        asyncio.create_task(quiet_runtime.enqueue_request("low.gx")),
        asyncio.create_task(quiet_runtime.enqueue_request("high.gx", priority=5)),
        asyncio.create_task(quiet_runtime.enqueue_request("low2.gx")),
        asyncio.create_task(quiet_runtime.enqueue_request("mid.gx", priority=1)),
    ]
    await asyncio.gather(*tasks)
    assert legacy.thumbnail_calls == ["first.gx", "high.gx", "mid.gx", "low.gx", "low2.gx"]


@pytest.mark.asyncio
async def test_duplicate_raises_pending_priority(quiet_runtime):
    legacy = FakeLegacyClient(thumbnail_delay=0.01)
    await quiet_runtime.create_context(legacy_details(), legacy)

    tasks = [
        asyncio.create_task(quiet_runtime.enqueue_request("first.gx")),
        asyncio.create_task(quiet_runtime.enqueue_request("a.gx", priority=1)),
        asyncio.create_task(quiet_runtime.enqueue_request("b.gx")),
        asyncio.create_task(quiet_runtime.enqueue_request("b.gx", priority=2)),
    ]
    await asyncio.gather(*tasks)
    assert legacy.thumbnail_calls == ["first.gx", "b.gx", "a.gx"]


@pytest.mark.asyncio
async def test_cancel_all_resolves_callers_at_once(quiet_runtime):
    legacy = FakeLegacyClient(thumbnail_delay=0.05)
    context_id = await quiet_runtime.create_context(legacy_details(), legacy)

    tasks = [asyncio.create_task(quiet_runtime.enqueue_request(f"job{n}.gx")) for n in range(3)]
    await asyncio.sleep(0.01)
    assert quiet_runtime.requests.in_flight_count(context_id) == 1

    assert quiet_runtime.cancel_requests() == 3
    results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=0.02)
    assert [result.outcome for result in results] == [Outcome.CANCELLED] * 3
    assert all(result.error is None for result in results)
    assert quiet_runtime.requests.pending_count(context_id) == 0

    result = await quiet_runtime.enqueue_request("next.gx")
    assert result.ok
    # Pending entries were dropped, the running exchange was allowed to finish
    assert legacy.thumbnail_calls == ["job0.gx", "next.gx"]


@pytest.mark.asyncio
async def test_cancel_all_never_overlaps_single_channel_requests(quiet_runtime):
    legacy = FakeLegacyClient(thumbnail_delay=0.05)
    context_id = await quiet_runtime.create_context(legacy_details(), legacy)

    first = asyncio.create_task(quiet_runtime.enqueue_request("a.gx"))
    await asyncio.sleep(0.01)
    quiet_runtime.cancel_requests()
    second = await quiet_runtime.enqueue_request("b.gx")

    assert (await first).outcome is Outcome.CANCELLED
    assert second.ok
    assert legacy.thumbnail_calls == ["a.gx", "b.gx"]
    assert legacy.max_active_requests == 1
    assert quiet_runtime.requests.max_in_flight_seen(context_id) == 1


@pytest.mark.asyncio
async def test_cancel_all_stops_retry_backoff(quiet_config):
    runtime = build_runtime(quiet_config.replace(request_retry_delay=5.0))
    try:
        legacy = FakeLegacyClient()
        legacy.thumbnail_failures["cube.gx"] = 1
        context_id = await runtime.create_context(legacy_details(), legacy)

        waiting = asyncio.create_task(runtime.enqueue_request("cube.gx"))
        await asyncio.sleep(0.01)
        runtime.cancel_requests()
        assert (await waiting).outcome is Outcome.CANCELLED
        assert runtime.requests.in_flight_count(context_id) == 0

        result = await asyncio.wait_for(runtime.enqueue_request("cube.gx"), timeout=0.5)
        assert result.ok
    finally:
        await runtime.dispose()


@pytest.mark.asyncio
async def test_cancelling_one_caller_keeps_shared_request(quiet_runtime):
    legacy = FakeLegacyClient(thumbnail_delay=0.05)
    await quiet_runtime.create_context(legacy_details(), legacy)

    impatient = asyncio.create_task(quiet_runtime.enqueue_request("cube.gx"))
    patient = asyncio.create_task(quiet_runtime.enqueue_request("cube.gx"))
    await asyncio.sleep(0.01)
    impatient.cancel()

    result = await patient
    assert result.ok
    assert impatient.cancelled()


@pytest.mark.asyncio
async def test_failed_request_retried(quiet_runtime):
    legacy = FakeLegacyClient()
    legacy.thumbnail_failures["cube.gx"] = 2
    await quiet_runtime.create_context(legacy_details(), legacy)

    result = await quiet_runtime.enqueue_request("cube.gx")
    assert result.ok
    assert legacy.thumbnail_calls == ["cube.gx"] * 3


@pytest.mark.asyncio
async def test_request_fails_after_max_retries(quiet_runtime, quiet_config):
    legacy = FakeLegacyClient()
    legacy.thumbnail_failures["cube.gx"] = 100
    await quiet_runtime.create_context(legacy_details(), legacy)

    result = await quiet_runtime.enqueue_request("cube.gx")
    assert result.outcome is Outcome.FAILED
    assert "channel reset" in result.error
    assert len(legacy.thumbnail_calls) == quiet_config.request_max_retries + 1


@pytest.mark.asyncio
async def test_unsupported_request_not_retried(quiet_config):
    calls = []

    async def query_slots(backend, key):
        calls.append(key)
        return await backend.query_material_slots()

    runtime = build_runtime(quiet_config, request_factory=query_slots)
    try:
        await runtime.create_context(legacy_details(), FakeLegacyClient())
        result = await runtime.enqueue_request("slots")
        assert result.outcome is Outcome.FAILED
        assert calls == ["slots"]
    finally:
        await runtime.dispose()


@pytest.mark.asyncio
async def test_queue_overflow(quiet_config):
    runtime = build_runtime(quiet_config.replace(max_queue_size=2))
    try:
        legacy = FakeLegacyClient(thumbnail_delay=0.5)
        await runtime.create_context(legacy_details(), legacy)

        tasks = [asyncio.create_task(runtime.enqueue_request(f"job{n}.gx")) for n in range(3)]
        await asyncio.sleep(0.01)

        with pytest.raises(QueueOverflowError):
            await runtime.enqueue_request("one-too-many.gx")

        # Joining an existing entry never overflows
        joined = asyncio.create_task(runtime.enqueue_request("job2.gx"))
        await asyncio.sleep(0.01)
        assert not joined.done()

        runtime.cancel_requests()
        results = await asyncio.gather(*tasks, joined)
        assert {result.outcome for result in results} == {Outcome.CANCELLED}
    finally:
        await runtime.dispose()


@pytest.mark.asyncio
async def test_removing_context_cancels_its_requests(quiet_runtime):
    legacy = FakeLegacyClient(thumbnail_delay=0.5)
    context_id = await quiet_runtime.create_context(legacy_details(), legacy)

    tasks = [asyncio.create_task(quiet_runtime.enqueue_request(f"job{n}.gx")) for n in range(2)]
    await asyncio.sleep(0.01)
    await quiet_runtime.remove_context(context_id)

    results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=0.2)
    assert [result.outcome for result in results] == [Outcome.CANCELLED] * 2


@pytest.mark.asyncio
async def test_queues_are_independent_per_context(quiet_runtime):
    slow = FakeLegacyClient(thumbnail_delay=0.5)
    fast = FakeHttpClient()
    slow_id = await quiet_runtime.create_context(legacy_details(), slow)
    fast_id = await quiet_runtime.create_context(modern_details(), fast, FakeLegacyClient())

    blocked = asyncio.create_task(quiet_runtime.enqueue_request("big.gx", context_id=slow_id))
    await asyncio.sleep(0.01)
    result = await asyncio.wait_for(quiet_runtime.enqueue_request("small.gcode", context_id=fast_id), timeout=0.2)
    assert result.ok

    quiet_runtime.cancel_requests(slow_id)
    assert (await blocked).outcome is Outcome.CANCELLED


@pytest.mark.asyncio
async def test_unknown_context(quiet_runtime):
    with pytest.raises(ContextNotFoundError):
        await quiet_runtime.enqueue_request("cube.gx")
    with pytest.raises(ContextNotFoundError):
        await quiet_runtime.requests.enqueue("context-99", "cube.gx")


def test_unsupported_error_message():
    assert "ad5x" in str(UnsupportedOperationError("set_filtration", "ad5x"))

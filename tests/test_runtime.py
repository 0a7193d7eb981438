import pytest

from fakes import FakeHttpClient, FakeLegacyClient, legacy_details, modern_details
from printer_contexts import (
    ContextNotFoundError,
    ExecutionFailedError,
    Feature,
    UnsupportedOperationError,
    build_runtime,
    dispose_runtime,
    get_runtime,
    init_runtime,
)


@pytest.mark.asyncio
async def test_process_runtime_lifecycle(quiet_config):
    with pytest.raises(RuntimeError):
        get_runtime()

    runtime = init_runtime(quiet_config)
    try:
        assert get_runtime() is runtime
        with pytest.raises(RuntimeError):
            init_runtime(quiet_config)
    finally:
        await dispose_runtime()

    with pytest.raises(RuntimeError):
        get_runtime()
    # Disposing twice is harmless
    await dispose_runtime()


@pytest.mark.asyncio
async def test_operations_default_to_active_context(quiet_runtime):
    legacy = FakeLegacyClient()
    http = FakeHttpClient()
    await quiet_runtime.create_context(legacy_details(), legacy)
    modern_id = await quiet_runtime.create_context(modern_details(), http, FakeLegacyClient())

    assert await quiet_runtime.list_local_jobs() == ["cube.gx", "benchy.gx"]
    await quiet_runtime.send_command("~M601 S1")
    assert legacy.commands == ["~M601 S1"]

    assert await quiet_runtime.list_recent_jobs(modern_id) == ["benchy.gcode", "cube.gcode"]
    assert await quiet_runtime.get_model_preview(modern_id) == b"preview"

    quiet_runtime.switch_context(modern_id)
    status = await quiet_runtime.get_status()
    assert status.job_name == "benchy.gcode"
    await quiet_runtime.set_filtration("external")
    await quiet_runtime.cancel_job()
    assert http.job_actions == ["cancel"]


@pytest.mark.asyncio
async def test_capability_gaps_surface_as_unsupported(quiet_runtime):
    await quiet_runtime.create_context(legacy_details(), FakeLegacyClient())

    caps = quiet_runtime.get_capabilities()
    assert not caps.supports(Feature.RECENT_JOBS)
    with pytest.raises(UnsupportedOperationError):
        await quiet_runtime.list_recent_jobs()
    with pytest.raises(UnsupportedOperationError):
        await quiet_runtime.query_material_slots()


@pytest.mark.asyncio
async def test_operations_without_active_context(quiet_runtime):
    with pytest.raises(ContextNotFoundError):
        await quiet_runtime.get_status()
    with pytest.raises(ContextNotFoundError):
        await quiet_runtime.pause_job("context-99")
    with pytest.raises(ContextNotFoundError):
        quiet_runtime.cancel_requests()


@pytest.mark.asyncio
async def test_list_contexts_info(quiet_runtime):
    legacy_id = await quiet_runtime.create_context(legacy_details(), FakeLegacyClient())
    modern_id = await quiet_runtime.create_context(modern_details(), FakeHttpClient(), FakeLegacyClient())

    infos = {info.id: info for info in quiet_runtime.list_contexts()}
    assert infos[legacy_id].is_active
    assert infos[legacy_id].camera_url is None
    assert infos[modern_id].camera_url == "http://localhost:9000/stream"
    assert infos[modern_id].as_dict()["serial_number"] == "SN-5MPRO-1"
    assert infos[modern_id].status == "connected"


@pytest.mark.asyncio
async def test_dispose_removes_everything(fast_config):
    runtime = build_runtime(fast_config)
    legacy = FakeLegacyClient()
    http = FakeHttpClient()
    await runtime.create_context(legacy_details(), legacy)
    await runtime.create_context(modern_details(), http, FakeLegacyClient())

    await runtime.dispose()
    assert runtime.list_contexts() == []
    assert runtime.polling.polling_contexts == []
    assert runtime.ports.allocated_count == 0
    assert legacy.disposed and http.disposed


@pytest.mark.asyncio
async def test_rejected_command_retried_until_accepted(quiet_runtime):
    legacy = FakeLegacyClient()
    await quiet_runtime.create_context(legacy_details(), legacy)
    answers = [False, True]

    async def pause_job():
        return answers.pop(0)

    legacy.pause_job = pause_job
    await quiet_runtime.pause_job()
    assert answers == []


@pytest.mark.asyncio
async def test_command_fails_after_max_retries(quiet_runtime, quiet_config):
    legacy = FakeLegacyClient()
    await quiet_runtime.create_context(legacy_details(), legacy)
    calls = []

    async def resume_job():
        calls.append("resume")
        return False

    legacy.resume_job = resume_job
    with pytest.raises(ExecutionFailedError):
        await quiet_runtime.resume_job()
    assert len(calls) == quiet_config.command_max_retries + 1


@pytest.mark.asyncio
async def test_unreachable_printer_read_retried(quiet_runtime):
    legacy = FakeLegacyClient()
    await quiet_runtime.create_context(legacy_details(), legacy)
    legacy.status_failures = 1

    before = legacy.status_calls
    status = await quiet_runtime.get_status()
    assert status.state == "ready"
    assert legacy.status_calls - before == 2


@pytest.mark.asyncio
async def test_job_start_and_raw_commands_not_repeated(quiet_runtime):
    legacy = FakeLegacyClient()
    await quiet_runtime.create_context(legacy_details(), legacy)
    legacy.ack = False

    with pytest.raises(ExecutionFailedError):
        await quiet_runtime.start_job("cube.gx")
    assert legacy.commands == ["start cube.gx"]


@pytest.mark.asyncio
async def test_unsupported_operation_not_retried(quiet_runtime, monkeypatch):
    await quiet_runtime.create_context(legacy_details(), FakeLegacyClient())
    routed = []
    route = quiet_runtime.dispatcher.route

    async def counting_route(backend, operation, *args, **kwargs):
        routed.append(operation)
        return await route(backend, operation, *args, **kwargs)

    monkeypatch.setattr(quiet_runtime.dispatcher, "route", counting_route)
    with pytest.raises(UnsupportedOperationError):
        await quiet_runtime.query_material_slots()
    assert routed == ["query_material_slots"]

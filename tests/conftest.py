import pytest
import pytest_asyncio

from printer_contexts import CoordinatorConfig, build_runtime


@pytest.fixture
def fast_config():
    return CoordinatorConfig(
        active_poll_interval=0.02,
        inactive_poll_interval=0.2,
        poll_max_retries=2,
        poll_retry_delay=0.001,
        port_range_start=9000,
        port_range_end=9002,
        request_retry_delay=0.001,
        command_retry_delay=0.001,
        command_timeout=1.0,
    )


@pytest.fixture
def quiet_config(fast_config):
    """Config without automatic polling, for tests that drive components directly."""
    return fast_config.replace(auto_start_polling=False)


@pytest_asyncio.fixture
async def runtime(fast_config):
    runtime = build_runtime(fast_config)
    yield runtime
    await runtime.dispose()


@pytest_asyncio.fixture
async def quiet_runtime(quiet_config):
    runtime = build_runtime(quiet_config)
    yield runtime
    await runtime.dispose()

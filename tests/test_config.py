import json

import pytest

from printer_contexts import CoordinatorConfig, load_config


def test_defaults():
    config = CoordinatorConfig()
    assert config.active_poll_interval == 3.0
    assert config.inactive_poll_interval == 30.0
    assert config.legacy_request_concurrency == 1
    assert config.modern_request_concurrency >= 2


def test_is_immutable():
    config = CoordinatorConfig()
    with pytest.raises(Exception):
        config.active_poll_interval = 1.0


@pytest.mark.parametrize("changes", [
    {"active_poll_interval": 0},
    {"active_poll_interval": 5.0, "inactive_poll_interval": 1.0},
    {"legacy_request_concurrency": 2},
    {"modern_request_concurrency": 1},
    {"port_range_start": 9000, "port_range_end": 8000},
    {"port_range_end": 70000},
    {"max_queue_size": 0},
    {"command_max_retries": -1},
    {"command_retry_delay": -0.1},
])
def test_invalid_values_rejected(changes):
    with pytest.raises(ValueError):
        CoordinatorConfig(**changes)


def test_replace_validates():
    config = CoordinatorConfig()
    assert config.replace(active_poll_interval=1.0).active_poll_interval == 1.0
    with pytest.raises(ValueError):
        config.replace(modern_request_concurrency=0)


def test_load_config(tmp_path):
    path = tmp_path / "coordinator.json"
    path.write_text(json.dumps({"active_poll_interval": 2.0, "port_range_end": 8200}), "utf-8")
    config = load_config(path)
    assert config.active_poll_interval == 2.0
    assert config.port_range_end == 8200
    assert config.inactive_poll_interval == 30.0


def test_load_config_rejects_unknown_keys(tmp_path):
    path = tmp_path / "coordinator.json"
    path.write_text(json.dumps({"poll_every": 2}), "utf-8")
    with pytest.raises(ValueError, match="poll_every"):
        load_config(path)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.json")

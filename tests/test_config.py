import logging

import pytest

from pantry_core.config import (
    config_file, load_config, load_settings, log, log_file, save_config, setup_logging,
)
from pantry_core.constants import DEFAULT_API_URL, FRESHNESS_WINDOW_MS, POLL_INTERVAL_MS
from pantry_core.jobs import JobKind


def test_defaults():
    settings = load_settings(config={}, environ={})
    assert settings.api_url == DEFAULT_API_URL
    assert settings.freshness_window_ms == FRESHNESS_WINDOW_MS == 60 * 60 * 1000
    assert settings.interval_for(JobKind.EMAIL_VERIFICATION) == 3000
    assert settings.interval_for(JobKind.ACCOUNT_DATA_FETCH) == 5000
    assert settings.max_wait_for(JobKind.DASHBOARD_AGGREGATE) is not None


def test_config_file_overrides_defaults():
    settings = load_settings(
        config={
            "apiUrl": "https://pantry.example.com/api/",
            "freshnessWindowSec": 600,
            "pollIntervalMs": {"email_verification": 1500, "bogus": 1},
            "pollMaxWaitMs": {"dashboard_aggregate": None},
        },
        environ={},
    )
    assert settings.api_url == "https://pantry.example.com/api"
    assert settings.freshness_window_ms == 600_000
    assert settings.interval_for(JobKind.EMAIL_VERIFICATION) == 1500
    assert settings.interval_for(JobKind.ACCOUNT_DATA_FETCH) == POLL_INTERVAL_MS[JobKind.ACCOUNT_DATA_FETCH]
    assert settings.max_wait_for(JobKind.DASHBOARD_AGGREGATE) is None


def test_environment_wins_over_config():
    settings = load_settings(
        config={"apiUrl": "https://from-config/api", "freshnessWindowSec": 600},
        environ={"PANTRY_API_URL": "https://from-env/api", "PANTRY_FRESHNESS_SEC": "30"},
    )
    assert settings.api_url == "https://from-env/api"
    assert settings.freshness_window_ms == 30_000


@pytest.mark.parametrize("config", [
    {"freshnessWindowSec": 0},
    {"pollIntervalMs": {"account_data_fetch": 0}},
])
def test_non_positive_values_are_rejected(config):
    with pytest.raises(ValueError):
        load_settings(config=config, environ={})


def test_save_and_load_config(pantry_home):
    save_config({"apiUrl": "https://saved/api"})
    assert config_file().parent == pantry_home
    assert load_config() == {"apiUrl": "https://saved/api"}
    assert load_settings(environ={}).api_url == "https://saved/api"


def test_corrupt_config_is_ignored():
    config_file().write_text("{oops", encoding="utf-8")
    assert load_config() is None
    assert load_settings(environ={}).api_url == DEFAULT_API_URL


def test_setup_logging_writes_to_data_dir():
    setup_logging(level=logging.DEBUG, console=False)
    log.info("hello from test")
    for handler in log.handlers:
        handler.flush()
    assert "hello from test" in log_file().read_text(encoding="utf-8")
    assert len(log.handlers) == 1


def test_setup_logging_truncates_large_log():
    log_file().write_text("x" * 1_100_000, encoding="utf-8")
    setup_logging(console=True)
    assert log_file().stat().st_size < 1_000_000
    assert len(log.handlers) == 2

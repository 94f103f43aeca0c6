"""
Paths, logging setup, config load/save, settings.
"""

import os
import json
import sys
import logging
from dataclasses import dataclass, field
from pathlib import Path

from .constants import (
    DEFAULT_API_URL, FRESHNESS_WINDOW_MS, POLL_INTERVAL_MS, POLL_MAX_WAIT_MS,
)
from .jobs import JobKind


# ─── Paths ───────────────────────────────────────────────────────
# One data directory per user. PANTRY_HOME overrides it (tests, portable installs).

def data_dir():
    base = os.environ.get("PANTRY_HOME")
    path = Path(base) if base else Path.home() / ".pantry"
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_file():
    return data_dir() / "config.json"


def log_file():
    return data_dir() / "client.log"


def state_file():
    return data_dir() / "storage.json"


# ─── Logging ─────────────────────────────────────────────────────

log = logging.getLogger("pantry")

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level=logging.INFO, console=True):
    """File log in the data dir (reset past 1 MB) plus optional stdout echo."""
    path = log_file()
    try:
        if path.exists() and path.stat().st_size > 1_000_000:
            path.write_text("")
    except OSError:
        pass

    log.setLevel(level)
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(str(path), encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
    log.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(_FORMAT))
        log.addHandler(console_handler)
    return log


# ─── Config Management ──────────────────────────────────────────

def load_config():
    """Load config from disk. Returns dict or None."""
    path = config_file()
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            return None
    return None


def save_config(config):
    """Save config dict to disk."""
    path = config_file()
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    log.info("Config saved to %s", path)


@dataclass
class Settings:
    api_url: str = DEFAULT_API_URL
    freshness_window_ms: int = FRESHNESS_WINDOW_MS
    poll_interval_ms: dict = field(default_factory=lambda: dict(POLL_INTERVAL_MS))
    poll_max_wait_ms: dict = field(default_factory=lambda: dict(POLL_MAX_WAIT_MS))

    def interval_for(self, kind: JobKind) -> int:
        return self.poll_interval_ms[kind]

    def max_wait_for(self, kind: JobKind):
        return self.poll_max_wait_ms.get(kind)


def _kind_overrides(raw, target):
    """Apply {"email_verification": 3000, ...} style overrides onto target."""
    for name, value in (raw or {}).items():
        try:
            kind = JobKind(name)
        except ValueError:
            log.warning("Ignoring unknown job kind in config: %s", name)
            continue
        target[kind] = int(value) if value is not None else None


def load_settings(config=None, environ=None):
    """
    Defaults < config.json < environment.

    Recognised config keys: apiUrl, freshnessWindowSec, pollIntervalMs,
    pollMaxWaitMs. Environment: PANTRY_API_URL, PANTRY_FRESHNESS_SEC.
    """
    environ = os.environ if environ is None else environ
    config = load_config() if config is None else config
    config = config or {}

    settings = Settings()
    if config.get("apiUrl"):
        settings.api_url = config["apiUrl"]
    if config.get("freshnessWindowSec") is not None:
        settings.freshness_window_ms = int(config["freshnessWindowSec"]) * 1000
    _kind_overrides(config.get("pollIntervalMs"), settings.poll_interval_ms)
    _kind_overrides(config.get("pollMaxWaitMs"), settings.poll_max_wait_ms)

    if environ.get("PANTRY_API_URL"):
        settings.api_url = environ["PANTRY_API_URL"]
    if environ.get("PANTRY_FRESHNESS_SEC"):
        settings.freshness_window_ms = int(environ["PANTRY_FRESHNESS_SEC"]) * 1000

    if settings.freshness_window_ms <= 0:
        raise ValueError("freshness window must be > 0")
    for kind, interval in settings.poll_interval_ms.items():
        if interval is None or interval <= 0:
            raise ValueError(f"poll interval for {kind.value} must be > 0")

    settings.api_url = settings.api_url.rstrip("/")
    return settings

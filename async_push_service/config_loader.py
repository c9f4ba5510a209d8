"""Settings loader for the push relay."""

from __future__ import annotations

import configparser
import os
from pathlib import Path
from typing import Mapping

from .core import DEFAULT_MIN_INTERVAL_MS, DEFAULT_STAGGER_MS, DELIVERY_MODES, MODE_QUEUED
from .delivery import DEFAULT_ENDPOINT, DEFAULT_SEND_TIMEOUT


def load_settings(environ: Mapping[str, str] | None = None) -> dict[str, object]:
    """
    Load configuration from an INI file (default: config.ini) with environment variables as fallbacks.

    Environment variables:
      PUSH_CONFIG - Path to config.ini file (default: config.ini)
      HOST - Server host (default: 0.0.0.0)
      PORT - Server port (default: 8080)
      EXPO_ENDPOINT - Push-delivery API URL (default: Expo push endpoint)
      MIN_INTERVAL_MS - Minimum spacing between two sends (default: 20000)
      STAGGER_MS - Extra pause between consecutive recipients (default: 3000)
      DELIVERY_MODE - "queued" or "immediate" (default: queued)
      SEND_TIMEOUT_SECONDS - Timeout of one outbound send (default: 30)
      QUEUE_MAX_SIZE - Queue capacity, 0 or unset for unbounded
      LOG_LEVEL - Logging level (default: INFO)

    Config file sections/keys:
      [server] host, port
      [delivery] endpoint, min_interval_ms, stagger_ms, mode, send_timeout_seconds, queue_max_size
      [logging] level
    """
    env = os.environ if environ is None else environ
    config_path = Path(env.get("PUSH_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(config_path)

    def get(section: str, option: str, fallback: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return fallback

    def get_int(section: str, option: str, fallback: str | None = None, default: int | None = None) -> int | None:
        value = get(section, option, fallback)
        if value is None or not str(value).strip():
            return default
        return int(value)

    def get_float(section: str, option: str, fallback: str | None = None, default: float | None = None) -> float | None:
        value = get(section, option, fallback)
        if value is None or not str(value).strip():
            return default
        return float(value)

    settings = {
        "http_host": get("server", "host", env.get("HOST", "0.0.0.0")),
        "http_port": get_int("server", "port", env.get("PORT"), default=8080),
        "endpoint": get("delivery", "endpoint", env.get("EXPO_ENDPOINT")) or DEFAULT_ENDPOINT,
        "min_interval_ms": get_int("delivery", "min_interval_ms", env.get("MIN_INTERVAL_MS"), default=DEFAULT_MIN_INTERVAL_MS),
        "stagger_ms": get_int("delivery", "stagger_ms", env.get("STAGGER_MS"), default=DEFAULT_STAGGER_MS),
        "mode": (get("delivery", "mode", env.get("DELIVERY_MODE")) or MODE_QUEUED).strip().lower(),
        "send_timeout": get_float(
            "delivery", "send_timeout_seconds", env.get("SEND_TIMEOUT_SECONDS"), default=DEFAULT_SEND_TIMEOUT
        ),
        "queue_max_size": get_int("delivery", "queue_max_size", env.get("QUEUE_MAX_SIZE")),
        "log_level": (get("logging", "level", env.get("LOG_LEVEL")) or "INFO").strip().upper(),
    }

    if settings["mode"] not in DELIVERY_MODES:
        raise ValueError(f"Invalid delivery mode {settings['mode']!r}; expected one of {', '.join(DELIVERY_MODES)}")
    settings["min_interval_ms"] = max(0, settings["min_interval_ms"])
    settings["stagger_ms"] = max(0, settings["stagger_ms"])
    queue_max_size = settings["queue_max_size"]
    if queue_max_size is not None and queue_max_size <= 0:
        settings["queue_max_size"] = None
    return settings

"""Configuration helpers for the recurrence engine."""

from __future__ import annotations

import os
from typing import Any, Dict

import yaml


NON_SERVING_ENVIRONMENTS = ("test", "ci")


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load configuration from ``path`` or ``RECURRENCE_CONFIG`` env var.

    Values from the YAML file are overridden by ``RECURRENCE_*`` environment
    variables. ``timezone`` is the single IANA zone every cron expression is
    evaluated in; ``environment`` set to ``test`` or ``ci`` keeps the
    background scheduler from starting.
    """

    cfg: Dict[str, Any] = {}
    path = path or os.getenv("RECURRENCE_CONFIG")
    if path and os.path.exists(path):
        with open(path, "r") as fh:
            cfg = yaml.safe_load(fh) or {}

    cfg["timezone"] = os.getenv("RECURRENCE_TIMEZONE", cfg.get("timezone", "UTC"))
    cfg["environment"] = os.getenv(
        "RECURRENCE_ENV", cfg.get("environment", "production")
    )

    tick_env = os.getenv("RECURRENCE_TICK_SECONDS")
    cfg["tick_seconds"] = float(
        tick_env if tick_env is not None else cfg.get("tick_seconds", 60)
    )

    fallback_env = os.getenv("RECURRENCE_FALLBACK_HOURS")
    cfg["fallback_hours"] = float(
        fallback_env if fallback_env is not None else cfg.get("fallback_hours", 24)
    )
    if cfg["fallback_hours"] <= 0:
        raise ValueError("fallback_hours must be positive")

    if "RECURRENCE_TEMPLATES_PATH" in os.environ:
        cfg["templates_path"] = os.environ["RECURRENCE_TEMPLATES_PATH"]
    if "RECURRENCE_INSTANCES_PATH" in os.environ:
        cfg["instances_path"] = os.environ["RECURRENCE_INSTANCES_PATH"]
    if "RECURRENCE_GENERATIONS_PATH" in os.environ:
        cfg["generations_path"] = os.environ["RECURRENCE_GENERATIONS_PATH"]

    if "RECURRENCE_NOTIFY_WEBHOOK" in os.environ:
        cfg["notify_webhook_url"] = os.environ["RECURRENCE_NOTIFY_WEBHOOK"]
    if "RECURRENCE_NOTIFY_TIMEOUT" in os.environ:
        cfg["notify_timeout"] = float(os.environ["RECURRENCE_NOTIFY_TIMEOUT"])
    else:
        cfg["notify_timeout"] = float(cfg.get("notify_timeout", 5))

    cfg["app_url"] = os.getenv(
        "RECURRENCE_APP_URL", cfg.get("app_url", "http://localhost:3000")
    )

    return cfg


def is_serving(cfg: Dict[str, Any]) -> bool:
    """Return ``False`` when ``cfg`` describes a test or CI process."""

    return str(cfg.get("environment", "")).lower() not in NON_SERVING_ENVIRONMENTS

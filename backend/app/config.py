"""Configuration loader that keeps all runtime constants centralized."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml


CONFIG_PATH = Path(__file__).resolve().parent / "app_config.yaml"

DEFAULT_TIMER_WARNING_MINUTES = 5
DEFAULT_MANUAL_END_COOLDOWN_SECONDS = 300
DEFAULT_EVALUATION_INTERVAL_SECONDS = 30.0
DEFAULT_NOTIFICATION_QUEUE_SIZE = 1000


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed wrapper over the raw YAML document."""

    raw: Dict[str, Any]

    @property
    def version(self) -> str:
        return str(self.raw.get("version", "v1"))

    @property
    def storage(self) -> Dict[str, Any]:
        return self.raw.get("storage") or {}

    @property
    def database_backend(self) -> str:
        """``memory`` or ``sqlite``; the ``STORAGE`` env var wins over the file."""
        backend = os.getenv("STORAGE") or self.storage.get("database", "memory")
        return str(backend).lower()

    @property
    def sqlite_path(self) -> str | None:
        return self.storage.get("sqlite_path")

    @property
    def billing(self) -> Dict[str, Any]:
        return self.raw.get("billing") or {}

    @property
    def timer_warning_minutes(self) -> int:
        return int(self.billing.get("timer_warning_minutes", DEFAULT_TIMER_WARNING_MINUTES))

    @property
    def monitor(self) -> Dict[str, Any]:
        return self.raw.get("monitor") or {}

    @property
    def manual_end_cooldown_seconds(self) -> int:
        return int(self.monitor.get("manual_end_cooldown_seconds", DEFAULT_MANUAL_END_COOLDOWN_SECONDS))

    @property
    def evaluation(self) -> Dict[str, Any]:
        return self.raw.get("evaluation") or {}

    @property
    def evaluation_interval_seconds(self) -> float:
        return float(self.evaluation.get("interval_seconds", DEFAULT_EVALUATION_INTERVAL_SECONDS))

    @property
    def clock(self) -> Dict[str, Any]:
        return self.raw.get("clock") or {}

    @property
    def clock_mode(self) -> str:
        return str(self.clock.get("mode", "system")).lower()

    @property
    def notifications(self) -> Dict[str, Any]:
        return self.raw.get("notifications") or {}

    @property
    def notification_dispatchers(self) -> List[str]:
        return list(self.notifications.get("dispatchers", ["logging", "socketio"]))

    @property
    def notification_queue_size(self) -> int:
        return int(self.notifications.get("queue_size", DEFAULT_NOTIFICATION_QUEUE_SIZE))

    @property
    def stations(self) -> List[Dict[str, Any]]:
        return list(self.raw.get("stations") or [])

    @property
    def menu(self) -> List[Dict[str, Any]]:
        return list(self.raw.get("menu") or [])

    @property
    def cors_origins(self) -> List[str]:
        cors = self.raw.get("cors") or {}
        return list(cors.get("origins", ["*"]))


@lru_cache(maxsize=1)
def get_settings(path: Path | None = None) -> AppConfig:
    """Load configuration once per process."""

    config_path = path or CONFIG_PATH
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):  # pragma: no cover - invalid file guard
        raise ValueError("Configuration file must define a mapping at the top level.")
    return AppConfig(raw=data)

"""
Application configuration.

Values come from an optional YAML file and are overridden by environment
variables prefixed with ``TOOLSHARE_``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_CONFIG_PATH = "config/toolshare.yaml"


def _get_env(key: str, default: Any = None, cast: type = None) -> Any:
    value = os.environ.get(f"TOOLSHARE_{key}")
    if value is None:
        return default
    if cast is not None:
        return cast(value)
    return value


@dataclass
class LogConfig:
    level: str = "INFO"
    format: str = "text"  # "text" or "json"


@dataclass
class BillingConfig:
    dispute_after_days: int = 10
    reminder_after_days: int = 3


@dataclass
class SchedulerConfig:
    """Cron schedules, in crontab field order (minute hour day month day_of_week)."""
    timezone: str = "UTC"
    mark_overdue_rentals: str = "0 2 * * *"
    send_overdue_reminders: str = "0 3 * * *"
    send_bill_reminders: str = "0 4 * * *"
    check_overdue_bills: str = "0 5 * * *"
    send_bill_notices: str = "0 9 * * *"
    resolve_disputed_bills: str = "0 23 last * *"
    take_balance_snapshots: str = "30 23 last * *"
    perform_bill_splitting: str = "0 0 1 * *"

    def schedules(self) -> dict[str, str]:
        return {
            "mark-overdue-rentals": self.mark_overdue_rentals,
            "send-overdue-reminders": self.send_overdue_reminders,
            "send-bill-reminders": self.send_bill_reminders,
            "check-overdue-bills": self.check_overdue_bills,
            "send-bill-notices": self.send_bill_notices,
            "resolve-disputed-bills": self.resolve_disputed_bills,
            "take-balance-snapshots": self.take_balance_snapshots,
            "perform-bill-splitting": self.perform_bill_splitting,
        }


@dataclass
class AppConfig:
    log: LogConfig = field(default_factory=LogConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    state_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        data = data or {}
        return cls(
            log=LogConfig(**data.get("log", {})),
            billing=BillingConfig(**data.get("billing", {})),
            scheduler=SchedulerConfig(**data.get("scheduler", {})),
            state_file=data.get("state_file"),
        )

    @classmethod
    def load(cls, path: Optional[str] = None) -> "AppConfig":
        """Load the YAML file if present, then apply environment overrides."""
        config_path = Path(path or _get_env("CONFIG", DEFAULT_CONFIG_PATH))
        data = {}
        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}

        config = cls.from_dict(data)
        config.apply_env()
        return config

    def apply_env(self) -> None:
        self.log.level = _get_env("LOG_LEVEL", self.log.level)
        self.log.format = _get_env("LOG_FORMAT", self.log.format)
        self.billing.dispute_after_days = _get_env(
            "DISPUTE_AFTER_DAYS", self.billing.dispute_after_days, int
        )
        self.billing.reminder_after_days = _get_env(
            "REMINDER_AFTER_DAYS", self.billing.reminder_after_days, int
        )
        self.scheduler.timezone = _get_env("TIMEZONE", self.scheduler.timezone)
        self.state_file = _get_env("STATE_FILE", self.state_file)

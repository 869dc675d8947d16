from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import os


class TimeUnit(str, Enum):
    MILLISECONDS = "MILLISECONDS"
    SECONDS = "SECONDS"
    MINUTES = "MINUTES"
    HOURS = "HOURS"
    DAYS = "DAYS"

    @property
    def seconds(self) -> float:
        return _UNIT_SECONDS[self]

    @classmethod
    def parse(cls, raw: str | TimeUnit) -> TimeUnit:
        if isinstance(raw, cls):
            return raw
        normalized = str(raw).strip().upper()
        if not normalized.endswith("S"):
            normalized += "S"
        try:
            return cls(normalized)
        except ValueError:
            allowed = ", ".join(unit.value for unit in cls)
            raise ValueError(f"Unknown time unit {raw!r}; expected one of {allowed}") from None


_UNIT_SECONDS = {
    TimeUnit.MILLISECONDS: 0.001,
    TimeUnit.SECONDS: 1.0,
    TimeUnit.MINUTES: 60.0,
    TimeUnit.HOURS: 3600.0,
    TimeUnit.DAYS: 86400.0,
}


def env_log_level() -> str:
    return os.getenv("CRPT_LOG_LEVEL", "WARNING")


@dataclass(slots=True)
class Settings:
    base_url: str = field(
        default_factory=lambda: os.getenv("CRPT_API_BASE_URL", "https://ismp.crpt.ru/api/v3")
    )
    request_limit: int = field(default_factory=lambda: int(os.getenv("CRPT_REQUEST_LIMIT", "10")))
    time_unit: TimeUnit = field(
        default_factory=lambda: TimeUnit.parse(os.getenv("CRPT_TIME_UNIT", "SECONDS"))
    )
    timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("CRPT_TIMEOUT_SECONDS", "30"))
    )
    token: str | None = field(default_factory=lambda: os.getenv("CRPT_TOKEN") or None)
    log_level: str = field(default_factory=env_log_level)

    @property
    def window_seconds(self) -> float:
        return self.time_unit.seconds

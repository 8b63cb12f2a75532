"""Environment-driven settings and policy constants."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import UTC, datetime

SUPERSEDED_YEAR_SPAN = 6


def _current_year() -> int:
    return datetime.now(UTC).year


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Policy:
    """Thresholds shared by the classifier, repairer, quality gate and scheduler."""

    freshness_year: int = field(default_factory=_current_year)
    min_external_references: int = 8
    min_internal_links: int = 5
    min_word_count: int = 1200
    max_age_days: int = 60
    max_single_word_anchors: int = 2
    min_content_chars: int = 300

    max_links_added: int = 8
    link_catalog_size: int = 30
    section_workers: int = 3
    batch_delay_seconds: float = 0.5
    polish_enabled: bool = True

    quality_threshold: int = 90
    quality_max_iterations: int = 1

    lookback_hours: float = 24
    failure_cap: int = 3
    short_cooldown_minutes: float = 30
    long_cooldown_hours: float = 24
    idle_sleep_seconds: float = 60
    cooldown_seconds: float = 15
    recovery_seconds: float = 10

    @property
    def superseded_years(self) -> tuple[int, ...]:
        start = self.freshness_year - SUPERSEDED_YEAR_SPAN
        return tuple(range(start, self.freshness_year))

    @classmethod
    def from_env(cls) -> Policy:
        defaults = cls()
        return cls(
            freshness_year=_env_int("FRESHNESS_YEAR", defaults.freshness_year),
            min_external_references=_env_int("MIN_EXTERNAL_REFERENCES", defaults.min_external_references),
            min_internal_links=_env_int("MIN_INTERNAL_LINKS", defaults.min_internal_links),
            min_word_count=_env_int("MIN_WORD_COUNT", defaults.min_word_count),
            max_age_days=_env_int("MAX_AGE_DAYS", defaults.max_age_days),
            max_links_added=_env_int("MAX_LINKS_ADDED", defaults.max_links_added),
            section_workers=_env_int("SECTION_WORKERS", defaults.section_workers),
            batch_delay_seconds=_env_float("BATCH_DELAY_SECONDS", defaults.batch_delay_seconds),
            polish_enabled=_env_bool("POLISH_ENABLED", defaults.polish_enabled),
            quality_threshold=_env_int("QUALITY_THRESHOLD", defaults.quality_threshold),
            quality_max_iterations=_env_int("QUALITY_MAX_ITERATIONS", defaults.quality_max_iterations),
            lookback_hours=_env_float("LOOKBACK_HOURS", defaults.lookback_hours),
            failure_cap=_env_int("FAILURE_CAP", defaults.failure_cap),
            short_cooldown_minutes=_env_float("SHORT_COOLDOWN_MINUTES", defaults.short_cooldown_minutes),
            long_cooldown_hours=_env_float("LONG_COOLDOWN_HOURS", defaults.long_cooldown_hours),
            idle_sleep_seconds=_env_float("IDLE_SLEEP_SECONDS", defaults.idle_sleep_seconds),
            cooldown_seconds=_env_float("COOLDOWN_SECONDS", defaults.cooldown_seconds),
            recovery_seconds=_env_float("RECOVERY_SECONDS", defaults.recovery_seconds),
        )


@dataclass(frozen=True, slots=True)
class CmsSettings:
    url: str
    username: str
    password: str

    @classmethod
    def from_env(cls) -> CmsSettings:
        url = os.getenv("WP_URL")
        username = os.getenv("WP_USERNAME")
        password = os.getenv("WP_APP_PASSWORD")
        if not url:
            raise RuntimeError("WP_URL environment variable is required")
        if not username:
            raise RuntimeError("WP_USERNAME environment variable is required")
        if not password:
            raise RuntimeError("WP_APP_PASSWORD environment variable is required")
        return cls(url=url.rstrip("/"), username=username, password=password)

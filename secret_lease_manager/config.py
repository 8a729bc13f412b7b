# -*- coding: utf-8 -*-
"""Scheduler configuration."""

import os
from dataclasses import dataclass, fields


def _to_bool(value, default=False):
    if value is None:
        return default
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SchedulerSettings:
    renewal_factor: float = 0.8
    min_renewal_seconds: float = 1.0
    min_sleep_seconds: float = 0.05
    max_sleep_seconds: float = 30.0
    expiry_threshold_seconds: float = 5.0
    revoke_on_remove: bool = True
    revoke_on_shutdown: bool = True
    max_renewal_failures: int = 3
    retry_backoff_seconds: float = 5.0
    shutdown_timeout_seconds: float = 5.0

    def __post_init__(self):
        assert 0.0 < self.renewal_factor < 1.0, \
            f"Renewal factor must be between 0 and 1 exclusive was {self.renewal_factor}"
        assert self.min_renewal_seconds >= 0.0, "Minimum renewal seconds must not be negative"
        assert 0.0 < self.min_sleep_seconds <= self.max_sleep_seconds, \
            "Sleep bounds must be positive and min_sleep_seconds <= max_sleep_seconds"
        assert self.expiry_threshold_seconds >= 0.0, "Expiry threshold must not be negative"
        assert self.max_renewal_failures >= 1, "At least one renewal failure must be allowed"
        assert self.retry_backoff_seconds > 0.0, "Retry backoff must be positive"
        assert self.shutdown_timeout_seconds >= 0.0, "Shutdown timeout must not be negative"

    def due_offset(self, duration):
        """Seconds after issue at which a lease of ``duration`` seconds is renewed."""
        offset = max(duration * self.renewal_factor, self.min_renewal_seconds)
        return min(offset, duration)

    def retry_delay(self, failures):
        """Backoff before the next attempt after ``failures`` consecutive failures."""
        return min(self.retry_backoff_seconds * (2 ** max(failures - 1, 0)),
                   self.max_sleep_seconds)

    @classmethod
    def from_env(cls, prefix="SECRET_LEASE_", environ=None):
        """Build settings from environment variables, e.g. SECRET_LEASE_RENEWAL_FACTOR=0.75.

        Unset variables keep their defaults.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field in fields(cls):
            raw = environ.get(f"{prefix}{field.name.upper()}")
            if raw is None or not raw.strip():
                continue
            if field.type in (bool, "bool"):
                values[field.name] = _to_bool(raw)
            elif field.type in (int, "int"):
                values[field.name] = int(raw)
            else:
                values[field.name] = float(raw)
        return cls(**values)

"""Tunables for the Availability Group join workflow.

The values are read once at the start of an invocation and passed explicitly
into the workflow; nothing reads process-wide state mid-run.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

_EXISTING_TIMEOUT_ENV = "SQLOPS_AG_EXISTING_TIMEOUT"
_SYNC_TIMEOUT_ENV = "SQLOPS_AG_SYNC_TIMEOUT"
_POLL_INTERVAL_ENV = "SQLOPS_AG_POLL_INTERVAL_MS"
_REPORT_SEEDING_ENV = "SQLOPS_AG_REPORT_SEEDING"

DEFAULT_EXISTING_TIMEOUT = 60.0
DEFAULT_SYNC_TIMEOUT = 86400.0
DEFAULT_POLL_INTERVAL = 0.1


def _float_env(name: str, default: float, *, scale: float = 1.0) -> float:
    """Return a non-negative float from the environment, or the default."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw) * scale
    except ValueError:
        return default
    return value if value >= 0 else default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(frozen=True)
class AgJoinConfig:
    """
    Timeouts and polling behaviour of the join workflow.

    Attributes:
        existing_timeout: Seconds to wait for an availability-database object
            to reach the Existing state.
        sync_timeout: Seconds to wait for secondaries to reach their target
            synchronization state.
        poll_interval: Seconds to sleep between two polls.
        report_seeding: Query and report automatic seeding progress.
    """

    existing_timeout: float = DEFAULT_EXISTING_TIMEOUT
    sync_timeout: float = DEFAULT_SYNC_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    report_seeding: bool = True

    @classmethod
    def from_env(cls) -> AgJoinConfig:
        """Build a config from SQLOPS_AG_* environment variables."""
        return cls(
            existing_timeout=_float_env(_EXISTING_TIMEOUT_ENV, DEFAULT_EXISTING_TIMEOUT),
            sync_timeout=_float_env(_SYNC_TIMEOUT_ENV, DEFAULT_SYNC_TIMEOUT),
            poll_interval=_float_env(
                _POLL_INTERVAL_ENV, DEFAULT_POLL_INTERVAL, scale=0.001
            ),
            report_seeding=_bool_env(_REPORT_SEEDING_ENV, True),
        )

    def with_overrides(self, **overrides: float | bool | None) -> AgJoinConfig:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

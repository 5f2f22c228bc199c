"""
Privacy helpers: IP truncation, consent state and data retention.

The consent flag is a single process-wide value. It lives in a small
holder object owned by the application so handlers and tests can each
use their own instance. Retention is only decided here; deleting expired
rows is the store's job (`VisitorStore.purge_older_than`).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# Two years
RETENTION_WINDOW = timedelta(days=2 * 365)


def anonymize_ip(ip: Optional[str]) -> Optional[str]:
    """Zero the host part of an address.

    IPv4 loses its last octet (203.0.113.45 -> 203.0.113.0). IPv6 keeps its
    first four groups and zeroes the rest. Anything else is returned as is.
    """
    if not ip or not isinstance(ip, str):
        return ip

    if "." in ip:
        parts = ip.split(".")
        if len(parts) != 4:
            return ip
        parts[3] = "0"
        return ".".join(parts)

    if ":" in ip:
        parts = ip.split(":")
        for i in range(4, len(parts)):
            parts[i] = "0"
        return ":".join(parts)

    return ip


@dataclass(frozen=True)
class ConsentRecord:
    """A consent decision and when it was made."""
    granted: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    options: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "granted": self.granted,
            "timestamp": self.timestamp.isoformat(),
            "options": dict(self.options),
        }


class ConsentState:
    """Holder for the tracking consent flag.

    Defaults to granted when nothing has been recorded. Writes are rare,
    last write wins.
    """

    def __init__(self, granted: bool = True):
        self._record = ConsentRecord(granted=granted)

    @property
    def record(self) -> ConsentRecord:
        return self._record

    def consent_granted(self) -> bool:
        return self._record.granted

    def set_consent(self, granted: bool, options: Optional[dict] = None) -> ConsentRecord:
        self._record = ConsentRecord(granted=bool(granted), options=dict(options or {}))
        return self._record


def retention_window(days: Optional[int] = None) -> timedelta:
    """The retention window, or a custom one in days."""
    if days is None:
        return RETENTION_WINDOW
    return timedelta(days=days)


def _as_datetime(timestamp: datetime | str) -> datetime:
    if isinstance(timestamp, str):
        # Store timestamps come back as "YYYY-MM-DD HH:MM:SS" or ISO 8601
        timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp


def retention_cutoff(now: Optional[datetime] = None, window: Optional[timedelta] = None) -> datetime:
    """Oldest timestamp still inside the retention window."""
    now = _as_datetime(now) if now is not None else datetime.now(timezone.utc)
    return now - (window or RETENTION_WINDOW)


def is_within_retention(
    timestamp: datetime | str,
    now: Optional[datetime] = None,
    window: Optional[timedelta] = None,
) -> bool:
    """Whether a record created at `timestamp` may still be kept.

    Naive datetimes are treated as UTC.
    """
    now = _as_datetime(now) if now is not None else datetime.now(timezone.utc)
    return now - _as_datetime(timestamp) < (window or RETENTION_WINDOW)

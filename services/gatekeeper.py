"""
Per-submission validity gate: capture time freshness and GPS presence.

Bills are exempt from the freshness window since they are usually existing
documents photographed after the fact, not live captures.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from schemas.submission import Submission

REASON_INVALID_TIMESTAMP = "invalid timestamp format"
REASON_PHOTO_EXPIRED = "photo expired"
REASON_GPS_MISSING = "GPS missing"
REASON_LOCATION_MISMATCH = "location mismatch"

DEFAULT_MAX_AGE_MINUTES = 15.0

# Numeric timestamps below this are epoch seconds (1e11 ms is March 1973)
EPOCH_MILLIS_FLOOR = 1e11


@dataclass(frozen=True)
class GateDecision:
    passed: bool
    reason: Optional[str] = None
    captured_at: Optional[datetime] = None

    @classmethod
    def ok(cls, captured_at: datetime) -> "GateDecision":
        return cls(passed=True, captured_at=captured_at)

    @classmethod
    def fail(cls, reason: str, captured_at: Optional[datetime] = None) -> "GateDecision":
        return cls(passed=False, reason=reason, captured_at=captured_at)


def parse_capture_time(raw: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or an epoch number into an aware UTC datetime.
    Epoch values are milliseconds unless small enough to only make sense as
    seconds. Naive ISO values are taken as UTC. Returns None when unparseable.
    """
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    try:
        number = float(s)
    except ValueError:
        number = None
    if number is not None:
        seconds = number if abs(number) < EPOCH_MILLIS_FLOOR else number / 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def check_submission(
    submission: Submission,
    now: Optional[datetime] = None,
    *,
    max_age_minutes: float = DEFAULT_MAX_AGE_MINUTES,
    bill_requires_gps: bool = False,
) -> GateDecision:
    now = now or datetime.now(timezone.utc)
    captured_at = parse_capture_time(submission.timestamp)
    if captured_at is None:
        return GateDecision.fail(REASON_INVALID_TIMESTAMP)

    if not submission.is_bill:
        elapsed = abs((now - captured_at).total_seconds()) / 60.0
        if elapsed > max_age_minutes:
            return GateDecision.fail(
                f"{REASON_PHOTO_EXPIRED}: captured {elapsed:.1f} minutes from server time "
                f"(limit {max_age_minutes:g})",
                captured_at,
            )

    if not submission.has_location and (not submission.is_bill or bill_requires_gps):
        return GateDecision.fail(REASON_GPS_MISSING, captured_at)

    return GateDecision.ok(captured_at)

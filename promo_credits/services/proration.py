"""Prorated refunds for cancelled promotions.

Refunds are truncated toward zero, so over a whole term the platform keeps at
most one credit more than the exact pro-rata share. That bias is intended: a
refund never exceeds the unused fraction of what was paid.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol

from promo_credits.services.exceptions import DataIntegrityError

_ONE_MICROSECOND = timedelta(microseconds=1)
_ONE_DAY = timedelta(days=1)


class ProratedTerm(Protocol):
    start_at: datetime
    end_at: datetime
    cost_in_credits: int


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _term_bounds(term: ProratedTerm) -> tuple[datetime, datetime]:
    start_at = ensure_utc(term.start_at)
    end_at = ensure_utc(term.end_at)
    if end_at <= start_at:
        raise DataIntegrityError(
            f"Promotion term ends at {end_at.isoformat()} which is not after "
            f"its start {start_at.isoformat()}"
        )
    return start_at, end_at


def compute_refund(term: ProratedTerm, now: datetime) -> int:
    """Return the credits refundable if ``term`` is cancelled at ``now``.

    Full cost before the term starts, nothing once it has ended, otherwise
    ``floor(cost * remaining / total)`` in integer microseconds.
    """
    start_at, end_at = _term_bounds(term)
    now = ensure_utc(now)

    if now >= end_at:
        return 0
    if now <= start_at:
        return term.cost_in_credits

    remaining = (end_at - now) // _ONE_MICROSECOND
    total = (end_at - start_at) // _ONE_MICROSECOND
    return (term.cost_in_credits * remaining) // total


def remaining_days(term: ProratedTerm, now: datetime) -> int:
    """Whole days left in the term at ``now`` (0 once it has ended)."""
    start_at, end_at = _term_bounds(term)
    now = max(ensure_utc(now), start_at)
    if now >= end_at:
        return 0
    return (end_at - now) // _ONE_DAY

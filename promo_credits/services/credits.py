"""Credit ledger with append-only entries and a derived balance."""

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from promo_credits.core.config import settings
from promo_credits.models.credit_account import CreditAccount
from promo_credits.models.credit_transaction import CreditTransaction
from promo_credits.models.organization import Organization
from promo_credits.services import store
from promo_credits.services.exceptions import InsufficientCreditsError, OrganizationNotFound
from promo_credits.services.proration import ensure_utc

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-organization locking
# ---------------------------------------------------------------------------


class OrganizationLocks:
    """Keyed re-entrant locks, one per organization with writers in flight.

    Entries are dropped once no thread holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[uuid.UUID, list] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, org_id: uuid.UUID) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(org_id, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[org_id]

    def active_count(self) -> int:
        with self._guard:
            return len(self._locks)


org_locks = OrganizationLocks()


def _lock_account(db: Session, org_id: uuid.UUID) -> CreditAccount:
    """Return the org's credit account row, locked for this transaction."""
    account = db.execute(
        select(CreditAccount).where(CreditAccount.org_id == org_id).with_for_update()
    ).scalar_one_or_none()

    if account is None:
        if db.get(Organization, org_id) is None:
            raise OrganizationNotFound(f"Organization {org_id} not found")
        account = CreditAccount(org_id=org_id, balance=0, total_spent=0, total_refunded=0)
        db.add(account)
        db.flush()

    return account


@contextmanager
def organization_transaction(db: Session, org_id: uuid.UUID) -> Iterator[CreditAccount]:
    """Run a block as one serialized unit against an org's ledger.

    Commits when the block finishes and rolls back on any exception, so a
    ledger entry and the record change that goes with it land together.
    """
    with org_locks.hold(org_id):
        try:
            account = _lock_account(db, org_id)
            yield account
            db.commit()
        except Exception:
            db.rollback()
            raise


# ---------------------------------------------------------------------------
# Balance queries
# ---------------------------------------------------------------------------


def get_balance(db: Session, org_id: uuid.UUID) -> int:
    """Return an org's balance: the signed sum of its ledger entries."""
    return store.sum_ledger_entries(db, org_id)


def get_account(db: Session, org_id: uuid.UUID) -> CreditAccount | None:
    return db.execute(
        select(CreditAccount).where(CreditAccount.org_id == org_id)
    ).scalar_one_or_none()


def find_entry_by_key(db: Session, org_id: uuid.UUID, idempotency_key: str) -> CreditTransaction | None:
    return store.find_ledger_entry_by_key(db, org_id, idempotency_key)


def get_transaction_history(
    db: Session,
    org_id: uuid.UUID,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[CreditTransaction], int]:
    """Return paginated ledger entries for an org, newest first."""
    return store.list_ledger_entries(db, org_id, page, page_size)


@dataclass
class BalanceCheck:
    """Cached balance compared against the ledger fold."""

    org_id: uuid.UUID
    stored_balance: int
    calculated_balance: int

    @property
    def difference(self) -> int:
        return self.stored_balance - self.calculated_balance

    @property
    def is_valid(self) -> bool:
        return self.difference == 0


def verify_balance(db: Session, org_id: uuid.UUID) -> BalanceCheck:
    account = get_account(db, org_id)
    check = BalanceCheck(
        org_id=org_id,
        stored_balance=account.balance if account else 0,
        calculated_balance=get_balance(db, org_id),
    )
    if not check.is_valid:
        logger.error(
            "Cached balance for org %s drifted from ledger: stored=%d ledger=%d",
            org_id,
            check.stored_balance,
            check.calculated_balance,
        )
    return check


# ---------------------------------------------------------------------------
# Ledger writes
# ---------------------------------------------------------------------------


def _validate_sign(kind: str, amount: int) -> None:
    if kind == "purchase" and amount > 0:
        raise ValueError("Purchase entries must debit (amount <= 0)")
    if kind == "refund" and amount < 0:
        raise ValueError("Refund entries must credit (amount >= 0)")
    if kind == "adjustment" and amount == 0:
        raise ValueError("Adjustment amount must be non-zero")


def _write_entry(
    db: Session,
    account: CreditAccount,
    amount: int,
    kind: str,
    related_promotion_id: uuid.UUID | None,
    idempotency_key: str,
    description: str | None,
    performed_by_id: uuid.UUID | None,
) -> CreditTransaction:
    existing = store.find_ledger_entry_by_key(db, account.org_id, idempotency_key)
    if existing is not None:
        logger.info(
            "Ledger entry for key %s already recorded for org %s (entry %s)",
            idempotency_key,
            account.org_id,
            existing.id,
        )
        return existing

    balance = store.sum_ledger_entries(db, account.org_id)
    new_balance = balance + amount
    if amount < 0 and new_balance < 0:
        raise InsufficientCreditsError(required=-amount, available=balance)

    entry = CreditTransaction(
        org_id=account.org_id,
        account_id=account.id,
        amount=amount,
        kind=kind,
        related_promotion_id=related_promotion_id,
        idempotency_key=idempotency_key,
        balance_after=new_balance,
        description=description,
        performed_by_id=performed_by_id,
    )
    store.append_ledger_entry(db, entry)

    account.balance = new_balance
    if kind == "purchase":
        account.total_spent += -amount
    elif kind == "refund":
        account.total_refunded += amount
    db.flush()

    logger.info(
        "Ledger %s %+d for org %s (key=%s, balance %d -> %d)",
        kind,
        amount,
        account.org_id,
        idempotency_key,
        balance,
        new_balance,
    )
    return entry


def append_entry(
    db: Session,
    org_id: uuid.UUID,
    amount: int,
    kind: str,
    related_promotion_id: uuid.UUID | None,
    idempotency_key: str,
    *,
    description: str | None = None,
    performed_by_id: uuid.UUID | None = None,
    commit: bool = True,
) -> CreditTransaction:
    """Append a ledger entry for an org.

    If an entry with ``idempotency_key`` already exists for the org it is
    returned unchanged. A debit that would leave the balance negative raises
    ``InsufficientCreditsError`` and writes nothing.

    With ``commit=False`` the caller must already be inside
    ``organization_transaction`` for the same org; the entry is flushed but
    commits with the caller's unit of work.
    """
    _validate_sign(kind, amount)

    if not commit:
        account = _lock_account(db, org_id)
        return _write_entry(
            db, account, amount, kind, related_promotion_id, idempotency_key, description, performed_by_id
        )

    with organization_transaction(db, org_id) as account:
        entry = _write_entry(
            db, account, amount, kind, related_promotion_id, idempotency_key, description, performed_by_id
        )
    db.refresh(entry)
    return entry


def adjust_credits(
    db: Session,
    org_id: uuid.UUID,
    amount: int,
    *,
    idempotency_key: str,
    description: str | None = None,
    performed_by_id: uuid.UUID | None = None,
) -> CreditTransaction:
    """Admin top-up (positive) or correction (negative) of an org's credits."""
    return append_entry(
        db,
        org_id,
        amount,
        "adjustment",
        None,
        f"adjustment:{idempotency_key}",
        description=description or f"Credit adjustment: {amount:+d}",
        performed_by_id=performed_by_id,
    )


# ---------------------------------------------------------------------------
# Low-balance alerts
# ---------------------------------------------------------------------------

# Severity bands, checked in order: a balance at or below the bound gets the level
LOW_BALANCE_LEVELS = (
    (100_000, "critical"),
    (500_000, "low"),
    (1_000_000, "moderate"),
)


@dataclass
class AlertSettings:
    org_id: uuid.UUID
    enabled: bool
    threshold: int
    billing_email: str | None


def low_balance_level(balance: int) -> str | None:
    for bound, level in LOW_BALANCE_LEVELS:
        if balance <= bound:
            return level
    return None


def _alert_settings(org_id: uuid.UUID, account: CreditAccount | None) -> AlertSettings:
    if account is None:
        return AlertSettings(org_id, True, settings.LOW_BALANCE_ALERT_THRESHOLD, None)
    threshold = account.low_balance_alert_threshold
    return AlertSettings(
        org_id=org_id,
        enabled=account.low_balance_alert_enabled,
        threshold=settings.LOW_BALANCE_ALERT_THRESHOLD if threshold is None else threshold,
        billing_email=account.billing_email,
    )


def get_alert_settings(db: Session, org_id: uuid.UUID) -> AlertSettings:
    return _alert_settings(org_id, get_account(db, org_id))


def update_alert_settings(
    db: Session,
    org_id: uuid.UUID,
    *,
    enabled: bool | None = None,
    threshold: int | None = None,
    billing_email: str | None = None,
) -> AlertSettings:
    """Change an org's low-balance alert settings. ``None`` leaves a field as is."""
    if threshold is not None and threshold < 0:
        raise ValueError("Alert threshold must be non-negative")

    with organization_transaction(db, org_id) as account:
        if enabled is not None:
            account.low_balance_alert_enabled = enabled
        if threshold is not None:
            account.low_balance_alert_threshold = threshold
        if billing_email is not None:
            account.billing_email = billing_email
        result = _alert_settings(org_id, account)

    logger.info("Updated low-balance alert settings for org %s", org_id)
    return result


def check_low_balance_alert(account: CreditAccount, balance: int, now: datetime) -> str | None:
    """Raise a low-balance alert for the account if one is due.

    Returns the alert level, or ``None`` when alerts are off, the balance is
    at or above the org's threshold, an alert already went out within
    ``LOW_BALANCE_ALERT_INTERVAL_HOURS``, or the balance is in no severity
    band. The caller must hold the account's lock; the alert time is saved
    with the caller's transaction.
    """
    config = _alert_settings(account.org_id, account)
    if not config.enabled or balance >= config.threshold:
        return None

    last_alert_at = account.last_low_balance_alert_at
    interval = timedelta(hours=settings.LOW_BALANCE_ALERT_INTERVAL_HOURS)
    if last_alert_at is not None and ensure_utc(now) - ensure_utc(last_alert_at) < interval:
        return None

    level = low_balance_level(balance)
    if level is None:
        return None

    logger.warning(
        "Low credit balance for org %s: %d (threshold %d, level %s, notify %s)",
        account.org_id,
        balance,
        config.threshold,
        level,
        config.billing_email or "-",
    )
    account.last_low_balance_alert_at = now
    return level

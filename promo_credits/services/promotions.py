"""Promotion purchase and cancellation with prorated refunds."""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from promo_credits.core.config import settings
from promo_credits.models.credit_transaction import CreditTransaction
from promo_credits.models.promotion import Promotion
from promo_credits.models.promotion_package import PromotionPackage
from promo_credits.services import store
from promo_credits.services.access import Caller, require_org_action, require_sponsor
from promo_credits.services.credits import append_entry, check_low_balance_alert, organization_transaction
from promo_credits.services.exceptions import (
    DataIntegrityError,
    Forbidden,
    IdempotencyConflict,
    InvalidState,
    PackageNotFound,
    PromotionAlreadyCancelled,
    PromotionNotFound,
)
from promo_credits.services.proration import compute_refund, ensure_utc, remaining_days

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = frozenset({"pending", "active"})


@dataclass
class CancellationResult:
    credits_refunded: int
    new_balance: int


def _now(now: datetime | None) -> datetime:
    return ensure_utc(now) if now is not None else datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_active_packages(db: Session) -> list[PromotionPackage]:
    """Packages currently on sale, in catalog order."""
    return store.list_active_packages(db)


# ---------------------------------------------------------------------------
# Purchase
# ---------------------------------------------------------------------------


def purchase_idempotency_key(
    org_id: uuid.UUID,
    package_id: uuid.UUID | None,
    request_token: str | None,
    now: datetime,
) -> str:
    """Key for a purchase request.

    A client-supplied token wins. Otherwise repeat submissions for the same
    org and package inside one ``PURCHASE_IDEMPOTENCY_WINDOW_SECONDS`` bucket
    collapse into a single purchase.
    """
    if request_token:
        return f"purchase:{request_token}"
    bucket = int(now.timestamp()) // settings.PURCHASE_IDEMPOTENCY_WINDOW_SECONDS
    digest = hashlib.sha256(f"{org_id}|{package_id}|{bucket}".encode()).hexdigest()
    return f"purchase:{digest}"


@dataclass
class PurchaseResult:
    promotion: Promotion
    credits_spent: int
    new_balance: int
    replayed: bool = False


def _replay_purchase(
    db: Session,
    entry: CreditTransaction,
    package: PromotionPackage | None,
) -> PurchaseResult:
    promotion = (
        store.find_promotion_by_id(db, entry.related_promotion_id)
        if entry.related_promotion_id
        else None
    )
    if promotion is None:
        raise DataIntegrityError(f"Purchase entry {entry.id} has no promotion")
    if package is not None and promotion.package_id != package.id:
        raise IdempotencyConflict(
            f"Request token was already used to buy a different package (promotion {promotion.id})"
        )
    logger.info("Purchase retry for key %s returns promotion %s", entry.idempotency_key, promotion.id)
    return PurchaseResult(promotion, -entry.amount, entry.balance_after, replayed=True)


def purchase_promotion(
    db: Session,
    org_id: uuid.UUID,
    package_ref: uuid.UUID | str,
    caller: Caller,
    *,
    request_token: str | None = None,
    start_at: datetime | None = None,
    auto_renew: bool | None = None,
    now: datetime | None = None,
) -> PurchaseResult:
    """Buy a package for an org, debiting its ledger.

    The promotion row and the debit commit together. A retried request with
    the same idempotency key returns the first purchase's promotion and
    balance without debiting again, even if the package has since been
    withdrawn from sale. A start date in the past is treated as now.
    """
    now = _now(now)

    require_org_action(caller, org_id)

    package = store.find_package_by_id_or_slug(db, package_ref)
    if package is None and not request_token:
        raise PackageNotFound(f"Promotion package '{package_ref}' is not available")

    key = purchase_idempotency_key(org_id, package.id if package else None, request_token, now)

    with organization_transaction(db, org_id) as account:
        existing = store.find_ledger_entry_by_key(db, org_id, key)
        if existing is not None:
            result = _replay_purchase(db, existing, package)
        else:
            if package is None or not package.is_active:
                raise PackageNotFound(f"Promotion package '{package_ref}' is not available")

            start_at = max(ensure_utc(start_at), now) if start_at is not None else now
            promotion = Promotion(
                org_id=org_id,
                package_id=package.id,
                status="active" if start_at <= now else "pending",
                start_at=start_at,
                end_at=start_at + timedelta(days=package.duration_days),
                cost_in_credits=package.cost_in_credits,
                auto_renew=package.auto_renewal_default if auto_renew is None else auto_renew,
                purchased_by_id=caller.id,
            )
            db.add(promotion)
            db.flush()

            entry = append_entry(
                db,
                org_id,
                -package.cost_in_credits,
                "purchase",
                promotion.id,
                key,
                description=f"Promotion purchase: {package.name}",
                performed_by_id=caller.id,
                commit=False,
            )
            check_low_balance_alert(account, entry.balance_after, now)
            result = PurchaseResult(promotion, package.cost_in_credits, entry.balance_after)
            logger.info(
                "Org %s bought package %s as promotion %s for %d credits",
                org_id,
                package.slug,
                promotion.id,
                package.cost_in_credits,
            )

    db.refresh(result.promotion)
    return result


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


def refund_idempotency_key(promotion_id: uuid.UUID) -> str:
    return f"refund:{promotion_id}"


def cancel_promotion(
    db: Session,
    promotion_id: uuid.UUID,
    caller: Caller,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> CancellationResult:
    """Cancel a pending or active promotion and refund the unused share.

    Exactly one refund entry is ever written per promotion. A second call
    raises ``PromotionAlreadyCancelled`` carrying the first call's result;
    if the refund landed but the status change did not, the status is
    completed from the existing entry without crediting again.

    A promotion whose term has ended (``now >= end_at``) is not cancelled:
    ``InvalidState`` is raised and nothing is written, even though its
    prorated refund would be 0, so ``cancelled_at < end_at`` always holds.
    Such promotions are left for the expiry sweep.
    """
    now = _now(now)

    promotion = store.find_promotion_by_id(db, promotion_id)
    if promotion is None:
        raise PromotionNotFound(f"Promotion {promotion_id} not found")

    require_org_action(caller, promotion.org_id)

    org_id = promotion.org_id
    key = refund_idempotency_key(promotion.id)

    with organization_transaction(db, org_id):
        db.refresh(promotion)
        existing = store.find_ledger_entry_by_key(db, org_id, key)

        if existing is not None:
            if promotion.status == "cancelled":
                raise PromotionAlreadyCancelled(existing.amount, existing.balance_after)
            logger.warning(
                "Promotion %s has refund entry %s but status %s; completing cancellation",
                promotion.id,
                existing.id,
                promotion.status,
            )
            store.update_promotion(
                db,
                promotion,
                status="cancelled",
                cancelled_at=ensure_utc(existing.created_at),
                cancelled_by_id=existing.performed_by_id or caller.id,
                cancel_reason=reason,
                credits_refunded=existing.amount,
            )
            result = CancellationResult(existing.amount, existing.balance_after)
        else:
            if promotion.status not in CANCELLABLE_STATUSES:
                raise InvalidState(
                    promotion.status,
                    f"Only pending or active promotions can be cancelled (status: {promotion.status})",
                )
            if now >= ensure_utc(promotion.end_at):
                raise InvalidState(promotion.status, "Promotion term has already ended")

            refund = compute_refund(promotion, now)
            entry = append_entry(
                db,
                org_id,
                refund,
                "refund",
                promotion.id,
                key,
                description=(
                    f"Promotion cancellation refund ({remaining_days(promotion, now)} days remaining)"
                ),
                performed_by_id=caller.id,
                commit=False,
            )
            store.update_promotion(
                db,
                promotion,
                status="cancelled",
                cancelled_at=now,
                cancelled_by_id=caller.id,
                cancel_reason=reason,
                credits_refunded=refund,
            )
            result = CancellationResult(entry.amount, entry.balance_after)

    logger.info(
        "Promotion %s cancelled by %s: refunded %d credits, balance %d",
        promotion_id,
        caller.id,
        result.credits_refunded,
        result.new_balance,
    )
    return result


# ---------------------------------------------------------------------------
# Queries and settings
# ---------------------------------------------------------------------------


def get_promotion(db: Session, promotion_id: uuid.UUID, caller: Caller) -> Promotion:
    """Return a promotion the caller may see. Others' promotions look missing."""
    require_sponsor(caller)
    promotion = store.find_promotion_by_id(db, promotion_id)
    if promotion is None or not (caller.is_elevated or promotion.org_id == caller.org_id):
        raise PromotionNotFound(f"Promotion {promotion_id} not found")
    return promotion


def list_promotions(
    db: Session,
    caller: Caller,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Promotion], int]:
    require_sponsor(caller)
    if caller.org_id is None:
        raise Forbidden("You must belong to an organization")
    return store.list_promotions(db, caller.org_id, status, page, page_size)


def set_auto_renew(
    db: Session,
    promotion_id: uuid.UUID,
    caller: Caller,
    auto_renew: bool,
) -> Promotion:
    promotion = get_promotion(db, promotion_id, caller)
    require_org_action(caller, promotion.org_id)
    if promotion.status not in CANCELLABLE_STATUSES:
        raise InvalidState(promotion.status, "Can only update pending or active promotions")

    store.update_promotion(db, promotion, auto_renew=auto_renew)
    db.commit()
    db.refresh(promotion)
    return promotion

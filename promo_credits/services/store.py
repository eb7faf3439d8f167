"""Record-store access for packages, promotions and ledger entries.

Plain functions over a ``Session``. None of them commit; the caller owns
the transaction boundary.
"""

import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from promo_credits.models.credit_transaction import CreditTransaction
from promo_credits.models.promotion import Promotion
from promo_credits.models.promotion_package import PromotionPackage

# Fields a lifecycle operation may patch on a promotion. The price snapshot,
# term and ownership are fixed at purchase.
UPDATABLE_PROMOTION_FIELDS = frozenset(
    {
        "status",
        "auto_renew",
        "cancelled_at",
        "cancelled_by_id",
        "cancel_reason",
        "credits_refunded",
    }
)


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------


def find_package_by_id_or_slug(db: Session, ref: uuid.UUID | str) -> PromotionPackage | None:
    if isinstance(ref, uuid.UUID):
        return db.get(PromotionPackage, ref)
    try:
        return db.get(PromotionPackage, uuid.UUID(ref))
    except ValueError:
        return db.execute(
            select(PromotionPackage).where(PromotionPackage.slug == ref)
        ).scalar_one_or_none()


def list_active_packages(db: Session) -> list[PromotionPackage]:
    return list(
        db.execute(
            select(PromotionPackage)
            .where(PromotionPackage.is_active.is_(True))
            .order_by(PromotionPackage.sort_order, PromotionPackage.name)
        ).scalars()
    )


# ---------------------------------------------------------------------------
# Promotions
# ---------------------------------------------------------------------------


def find_promotion_by_id(db: Session, promotion_id: uuid.UUID) -> Promotion | None:
    return db.get(Promotion, promotion_id)


def update_promotion(db: Session, promotion: Promotion, **patch) -> Promotion:
    unknown = set(patch) - UPDATABLE_PROMOTION_FIELDS
    if unknown:
        raise ValueError(f"Promotion fields cannot be updated: {', '.join(sorted(unknown))}")
    for field, value in patch.items():
        setattr(promotion, field, value)
    db.flush()
    return promotion


def list_promotions(
    db: Session,
    org_id: uuid.UUID,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Promotion], int]:
    conditions = [Promotion.org_id == org_id]
    if status is not None:
        conditions.append(Promotion.status == status)

    total = db.execute(
        select(func.count()).select_from(Promotion).where(*conditions)
    ).scalar_one()
    offset = (page - 1) * page_size
    items = db.execute(
        select(Promotion)
        .where(*conditions)
        .order_by(Promotion.created_at.desc(), Promotion.start_at.desc())
        .offset(offset)
        .limit(page_size)
    ).scalars().all()
    return list(items), total


# ---------------------------------------------------------------------------
# Ledger entries
# ---------------------------------------------------------------------------


def append_ledger_entry(db: Session, entry: CreditTransaction) -> CreditTransaction:
    db.add(entry)
    db.flush()
    return entry


def sum_ledger_entries(db: Session, org_id: uuid.UUID) -> int:
    return db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.org_id == org_id
        )
    ).scalar_one()


def find_ledger_entry_by_key(
    db: Session, org_id: uuid.UUID, idempotency_key: str
) -> CreditTransaction | None:
    return db.execute(
        select(CreditTransaction).where(
            CreditTransaction.org_id == org_id,
            CreditTransaction.idempotency_key == idempotency_key,
        )
    ).scalar_one_or_none()


def list_ledger_entries(
    db: Session,
    org_id: uuid.UUID,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[CreditTransaction], int]:
    total = db.execute(
        select(func.count()).select_from(CreditTransaction).where(CreditTransaction.org_id == org_id)
    ).scalar_one()
    offset = (page - 1) * page_size
    items = db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.org_id == org_id)
        .order_by(CreditTransaction.created_at.desc())
        .offset(offset)
        .limit(page_size)
    ).scalars().all()
    return list(items), total

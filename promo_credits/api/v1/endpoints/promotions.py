"""Promotion API endpoints."""

import uuid

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from promo_credits.api.v1.errors import http_error
from promo_credits.core.auth import get_current_caller
from promo_credits.core.database import get_db
from promo_credits.schemas.promotions import (
    CancelRequest,
    CancelResponse,
    PackageListResponse,
    PromotionListResponse,
    PromotionResponse,
    PromotionStatus,
    PromotionUpdate,
    PurchaseRequest,
    PurchaseResponse,
)
from promo_credits.services.access import Caller
from promo_credits.services.exceptions import PromotionServiceError
from promo_credits.services.promotions import (
    cancel_promotion,
    get_promotion,
    list_active_packages,
    list_promotions,
    purchase_promotion,
    set_auto_renew,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_org(caller: Caller) -> uuid.UUID:
    if caller.org_id is None:
        raise HTTPException(status_code=400, detail="You must belong to an organization")
    return caller.org_id


# ---------------------------------------------------------------------------
# Package catalog (public)
# ---------------------------------------------------------------------------


@router.api_route("/packages", methods=["GET", "POST"], response_model=PackageListResponse)
def list_packages(db: Session = Depends(get_db)):
    """List promotion packages on sale, ordered by sort order."""
    return PackageListResponse(packages=list_active_packages(db))


# ---------------------------------------------------------------------------
# Purchase
# ---------------------------------------------------------------------------


@router.post("/", response_model=PurchaseResponse, status_code=201)
def purchase_promotion_endpoint(
    payload: PurchaseRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Buy a promotion package for the caller's organization using credits."""
    org_id = _require_org(caller)
    try:
        result = purchase_promotion(
            db,
            org_id,
            payload.package_id,
            caller,
            request_token=payload.request_token or idempotency_key,
            start_at=payload.start_at,
            auto_renew=payload.auto_renew,
        )
    except PromotionServiceError as exc:
        raise http_error(exc)

    return PurchaseResponse(
        promotion=PromotionResponse.model_validate(result.promotion),
        credits_spent=result.credits_spent,
        new_balance=result.new_balance,
    )


# ---------------------------------------------------------------------------
# Listing and detail
# ---------------------------------------------------------------------------


@router.get("/", response_model=PromotionListResponse)
def list_promotions_endpoint(
    status: PromotionStatus | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """List the caller organization's promotions, newest first."""
    _require_org(caller)
    try:
        items, total = list_promotions(db, caller, status, page, page_size)
    except PromotionServiceError as exc:
        raise http_error(exc)
    return PromotionListResponse(items=items, total=total, page=page, page_size=page_size)


@router.get("/{promotion_id}", response_model=PromotionResponse)
def get_promotion_endpoint(
    promotion_id: uuid.UUID,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return get_promotion(db, promotion_id, caller)
    except PromotionServiceError as exc:
        raise http_error(exc)


@router.patch("/{promotion_id}", response_model=PromotionResponse)
def update_promotion_endpoint(
    promotion_id: uuid.UUID,
    payload: PromotionUpdate,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Update promotion settings (auto-renewal)."""
    try:
        return set_auto_renew(db, promotion_id, caller, payload.auto_renew)
    except PromotionServiceError as exc:
        raise http_error(exc)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@router.post("/{promotion_id}/cancel", response_model=CancelResponse)
def cancel_promotion_endpoint(
    promotion_id: uuid.UUID,
    body: CancelRequest | None = None,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Cancel a promotion and refund the unused share of its credits."""
    try:
        result = cancel_promotion(db, promotion_id, caller, body.reason if body else None)
    except PromotionServiceError as exc:
        raise http_error(exc)

    return CancelResponse(
        credits_refunded=result.credits_refunded,
        new_balance=result.new_balance,
    )

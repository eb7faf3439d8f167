"""Credit ledger API endpoints."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from promo_credits.api.v1.errors import http_error
from promo_credits.core.auth import get_admin_caller, get_current_caller
from promo_credits.core.database import get_db
from promo_credits.schemas.credits import (
    BalanceCheckResponse,
    CreditAdjustmentRequest,
    CreditBalanceResponse,
    CreditHistoryResponse,
    CreditSettingsResponse,
    CreditSettingsUpdate,
    CreditTransactionResponse,
)
from promo_credits.services.access import Caller, require_org_admin, require_sponsor
from promo_credits.services.credits import (
    AlertSettings,
    adjust_credits,
    get_account,
    get_alert_settings,
    get_balance,
    get_transaction_history,
    update_alert_settings,
    verify_balance,
)
from promo_credits.services.exceptions import PromotionServiceError

router = APIRouter()


def _caller_org(caller: Caller) -> uuid.UUID:
    if caller.org_id is None:
        raise HTTPException(status_code=400, detail="You must belong to an organization")
    return caller.org_id


# ---------------------------------------------------------------------------
# Balance
# ---------------------------------------------------------------------------


@router.get("/balance", response_model=CreditBalanceResponse)
def get_credit_balance(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Get the credit balance for the caller's organization."""
    org_id = _caller_org(caller)
    account = get_account(db, org_id)
    return CreditBalanceResponse(
        org_id=org_id,
        balance=get_balance(db, org_id),
        total_spent=account.total_spent if account else 0,
        total_refunded=account.total_refunded if account else 0,
    )


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@router.get("/history", response_model=CreditHistoryResponse)
def get_credit_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Get paginated ledger entries for the caller's organization."""
    transactions, total = get_transaction_history(db, _caller_org(caller), page, page_size)
    return CreditHistoryResponse(
        items=transactions,
        total=total,
        page=page,
        page_size=page_size,
    )


# ---------------------------------------------------------------------------
# Low-balance alert settings
# ---------------------------------------------------------------------------


def _settings_response(alert_settings: AlertSettings) -> CreditSettingsResponse:
    return CreditSettingsResponse(
        low_balance_alert_enabled=alert_settings.enabled,
        low_balance_alert_threshold=alert_settings.threshold,
        billing_email=alert_settings.billing_email,
    )


@router.get("/settings", response_model=CreditSettingsResponse)
def get_credit_settings(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Get the low-balance alert settings for the caller's organization."""
    try:
        require_sponsor(caller)
    except PromotionServiceError as exc:
        raise http_error(exc)
    return _settings_response(get_alert_settings(db, _caller_org(caller)))


@router.patch("/settings", response_model=CreditSettingsResponse)
def update_credit_settings(
    payload: CreditSettingsUpdate,
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    """Update low-balance alert settings (organization admins only)."""
    try:
        require_org_admin(caller)
    except PromotionServiceError as exc:
        raise http_error(exc)
    org_id = _caller_org(caller)

    if not payload.model_dump(exclude_none=True):
        raise HTTPException(status_code=400, detail="No valid updates provided")

    try:
        alert_settings = update_alert_settings(
            db,
            org_id,
            enabled=payload.low_balance_alert_enabled,
            threshold=payload.low_balance_alert_threshold,
            billing_email=payload.billing_email,
        )
    except PromotionServiceError as exc:
        raise http_error(exc)
    return _settings_response(alert_settings)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("/adjustments", response_model=CreditTransactionResponse, status_code=201)
def adjust_credits_endpoint(
    payload: CreditAdjustmentRequest,
    caller: Caller = Depends(get_admin_caller),
    db: Session = Depends(get_db),
):
    """Add or remove credits for an organization (admin only)."""
    if payload.amount == 0:
        raise HTTPException(status_code=422, detail="Adjustment amount must be non-zero")
    try:
        return adjust_credits(
            db,
            payload.org_id,
            payload.amount,
            idempotency_key=payload.idempotency_key,
            description=payload.description,
            performed_by_id=caller.id,
        )
    except PromotionServiceError as exc:
        raise http_error(exc)


@router.get("/{org_id}/verify", response_model=BalanceCheckResponse)
def verify_balance_endpoint(
    org_id: uuid.UUID,
    _: Caller = Depends(get_admin_caller),
    db: Session = Depends(get_db),
):
    """Compare an organization's cached balance with its ledger (admin only)."""
    check = verify_balance(db, org_id)
    return BalanceCheckResponse(
        org_id=check.org_id,
        is_valid=check.is_valid,
        stored_balance=check.stored_balance,
        calculated_balance=check.calculated_balance,
        difference=check.difference,
    )

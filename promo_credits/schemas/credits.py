import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

CreditTransactionKind = Literal["purchase", "refund", "adjustment"]


# ---------------------------------------------------------------------------
# Balance
# ---------------------------------------------------------------------------


class CreditBalanceResponse(BaseModel):
    org_id: uuid.UUID
    balance: int
    total_spent: int
    total_refunded: int


class BalanceCheckResponse(BaseModel):
    org_id: uuid.UUID
    is_valid: bool
    stored_balance: int
    calculated_balance: int
    difference: int


# ---------------------------------------------------------------------------
# Transaction history
# ---------------------------------------------------------------------------


class CreditTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: uuid.UUID
    amount: int
    kind: CreditTransactionKind
    related_promotion_id: uuid.UUID | None
    balance_after: int
    description: str | None
    created_at: datetime


class CreditHistoryResponse(BaseModel):
    items: list[CreditTransactionResponse]
    total: int
    page: int
    page_size: int


# ---------------------------------------------------------------------------
# Adjustments (admin)
# ---------------------------------------------------------------------------


class CreditAdjustmentRequest(BaseModel):
    org_id: uuid.UUID
    amount: int = Field(..., description="Positive to add credits, negative to remove")
    idempotency_key: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Low-balance alert settings
# ---------------------------------------------------------------------------


class CreditSettingsResponse(BaseModel):
    low_balance_alert_enabled: bool
    low_balance_alert_threshold: int
    billing_email: str | None


class CreditSettingsUpdate(BaseModel):
    low_balance_alert_enabled: bool | None = None
    low_balance_alert_threshold: int | None = Field(None, ge=0)
    billing_email: str | None = Field(None, min_length=3, max_length=255)

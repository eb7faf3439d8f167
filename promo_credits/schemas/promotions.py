import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PromotionStatus = Literal["pending", "active", "cancelled", "expired"]


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------


class PackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    slug: str
    description: str | None
    duration_days: int
    cost_in_credits: int
    sort_order: int
    features: dict | None
    badge: dict | None
    auto_renewal_default: bool


class PackageListResponse(BaseModel):
    packages: list[PackageResponse]


# ---------------------------------------------------------------------------
# Promotions
# ---------------------------------------------------------------------------


class PromotionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: uuid.UUID
    package_id: uuid.UUID
    status: PromotionStatus
    start_at: datetime
    end_at: datetime
    cost_in_credits: int
    auto_renew: bool
    cancelled_at: datetime | None
    cancel_reason: str | None
    credits_refunded: int | None
    created_at: datetime


class PromotionListResponse(BaseModel):
    items: list[PromotionResponse]
    total: int
    page: int
    page_size: int


class PurchaseRequest(BaseModel):
    """Body for POST /promotions. ``package_id`` accepts an id or a slug."""

    package_id: str = Field(..., min_length=1, max_length=100)
    start_at: datetime | None = None
    auto_renew: bool | None = None
    request_token: str | None = Field(None, min_length=1, max_length=200)


class PurchaseResponse(BaseModel):
    promotion: PromotionResponse
    credits_spent: int
    new_balance: int


class PromotionUpdate(BaseModel):
    auto_renew: bool


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class CancelResponse(BaseModel):
    success: bool = True
    credits_refunded: int
    new_balance: int

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from promo_credits.core.database import Base


class PromotionPackage(Base):
    """Catalog entry a sponsor can buy.

    Promotions snapshot ``cost_in_credits`` and their end date when purchased,
    so editing a package never changes the terms of promotions already sold.
    """

    __tablename__ = "promotion_packages"
    __table_args__ = (
        CheckConstraint("duration_days > 0", name="ck_promotion_packages_duration_positive"),
        CheckConstraint("cost_in_credits >= 0", name="ck_promotion_packages_cost_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_in_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    features: Mapped[dict | None] = mapped_column(JSONB)
    badge: Mapped[dict | None] = mapped_column(JSONB)
    auto_renewal_default: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<PromotionPackage {self.slug} {self.cost_in_credits}cr/{self.duration_days}d>"

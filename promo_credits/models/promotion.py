import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_credits.core.database import Base

PROMOTION_STATUSES = ("pending", "active", "cancelled", "expired")


class Promotion(Base):
    """A purchased, time-boxed placement for an organization."""

    __tablename__ = "promotions"
    __table_args__ = (
        Index("ix_promotions_org_id", "org_id"),
        Index("ix_promotions_status", "status"),
        Index("ix_promotions_end_at", "end_at"),
        CheckConstraint("end_at > start_at", name="ck_promotions_term_positive"),
        CheckConstraint("cost_in_credits >= 0", name="ck_promotions_cost_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    package_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promotion_packages.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        Enum(*PROMOTION_STATUSES, name="promotion_status"),
        nullable=False,
        default="active",
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Snapshot of the package price at purchase time
    cost_in_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    auto_renew: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    purchased_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    cancel_reason: Mapped[str | None] = mapped_column(String(500))
    credits_refunded: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )

    organization: Mapped["Organization"] = relationship(back_populates="promotions")
    package: Mapped["PromotionPackage"] = relationship()

    def __repr__(self) -> str:
        return f"<Promotion {self.id} {self.status}>"

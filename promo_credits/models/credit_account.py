import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_credits.core.database import Base


class CreditAccount(Base):
    """Per-organization ledger head, one row per org.

    ``balance`` caches the sum of the org's ledger entries. It is written only
    by the ledger, in the same transaction as the entry it reflects, and the
    row doubles as the lock that serializes ledger writes for the org.
    """

    __tablename__ = "credit_accounts"
    __table_args__ = (
        Index("ix_credit_accounts_org_id", "org_id", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, unique=True
    )
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_refunded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Low-balance alert settings; a NULL threshold means the configured default
    low_balance_alert_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    low_balance_alert_threshold: Mapped[int | None] = mapped_column(Integer)
    last_low_balance_alert_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    billing_email: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )

    organization: Mapped["Organization"] = relationship(back_populates="credit_account")
    transactions: Mapped[list["CreditTransaction"]] = relationship(
        back_populates="account", order_by="CreditTransaction.created_at.desc()"
    )

    def __repr__(self) -> str:
        return f"<CreditAccount org={self.org_id} balance={self.balance}>"

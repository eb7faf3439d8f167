import uuid
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_credits.core.database import Base

CREDIT_TRANSACTION_KINDS = ("purchase", "refund", "adjustment")


class CreditTransaction(Base):
    """Immutable ledger entry."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("org_id", "idempotency_key", name="uq_credit_transactions_idempotency"),
        Index("ix_credit_transactions_org_id", "org_id"),
        Index("ix_credit_transactions_account_id", "account_id"),
        Index("ix_credit_transactions_kind", "kind"),
        Index("ix_credit_transactions_related_promotion_id", "related_promotion_id"),
        Index("ix_credit_transactions_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("credit_accounts.id"), nullable=False
    )
    # Signed: negative = debit, positive = credit
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(
        Enum(*CREDIT_TRANSACTION_KINDS, name="credit_transaction_kind"),
        nullable=False,
    )
    related_promotion_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promotions.id")
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    performed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    account: Mapped["CreditAccount"] = relationship(back_populates="transactions")

    def __repr__(self) -> str:
        return f"<CreditTransaction {self.kind} {self.amount}>"

"""Payment ledger model definition."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class Payment(Base):
    """A guide payment recorded against a tour."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tour_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tours.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    guide_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("guides.id", ondelete="SET NULL"),
        nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False, default="cash")
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, tour_id={self.tour_id}, amount={self.amount})>"

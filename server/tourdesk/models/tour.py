"""Tour model definition."""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class PaymentStatus(str, Enum):
    """Guide payment state of a tour, derived from the payment ledger."""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERPAID = "overpaid"


class ExternalSource(str, Enum):
    """Where a tour record came from."""
    CHANNEL = "channel"
    MANUAL = "manual"


def _in_check(column: str, enum_cls: type[Enum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class Tour(Base):
    """Tour entity: one booked appointment on a given date and time."""

    __tablename__ = "tours"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Channel identity
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    confirmation_code: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Scheduling (local wall clock in the channel time zone)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Party
    participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    adults: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    children: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    infants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    participant_names: Mapped[list[dict[str, str]] | None] = mapped_column(JSON, nullable=True)

    # Descriptive
    language: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)
    booking_channel: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Assignment
    guide_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("guides.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    group_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("tour_groups.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    needs_guide_assignment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Payment (owned by the payment subsystem)
    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.UNPAID.value
    )
    total_amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0")
    )
    expected_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    # Provenance
    external_source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ExternalSource.MANUAL.value
    )
    channel_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_synced: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Lifecycle
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Dispatcher-owned; the channel never writes it
    cancelled_locally: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rescheduled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    original_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    original_time: Mapped[dt.time | None] = mapped_column(Time, nullable=True)
    rescheduled_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("participants >= 0", name="ck_tour_participants_non_negative"),
        CheckConstraint("adults >= 0 AND children >= 0 AND infants >= 0", name="ck_tour_breakdown_non_negative"),
        CheckConstraint("total_amount_paid >= 0", name="ck_tour_total_amount_paid_non_negative"),
        CheckConstraint(_in_check("payment_status", PaymentStatus), name="ck_tour_payment_status"),
        CheckConstraint(_in_check("external_source", ExternalSource), name="ck_tour_external_source"),
    )

    @property
    def is_cancelled(self) -> bool:
        """Cancelled on the channel or by a dispatcher."""
        return self.cancelled or self.cancelled_locally

    @property
    def live_pax(self) -> int:
        """Participants counted towards group capacity."""
        return 0 if self.is_cancelled else self.participants

    def __repr__(self) -> str:
        return (
            f"<Tour(id={self.id}, external_id={self.external_id!r}, "
            f"date={self.date}, time={self.time}, pax={self.participants})>"
        )

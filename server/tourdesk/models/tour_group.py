"""Tour group model definition."""

import datetime as dt

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text, Time, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class TourGroup(Base):
    """
    A set of tours sharing a time slot that one guide runs together.

    Groups are a derived index over tours: membership lives on
    ``tours.group_id`` and ``total_pax`` is always recomputed from the
    non-cancelled members.
    """

    __tablename__ = "tour_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    group_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    group_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    guide_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("guides.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    guide_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    max_pax: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    total_pax: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_manual_merge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

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

    __table_args__ = (
        CheckConstraint("max_pax >= 1", name="ck_tour_group_max_pax_positive"),
        CheckConstraint("total_pax >= 0", name="ck_tour_group_total_pax_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<TourGroup(id={self.id}, date={self.group_date}, time={self.group_time}, "
            f"pax={self.total_pax}/{self.max_pax}, manual={self.is_manual_merge})>"
        )

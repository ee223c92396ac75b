from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    plan_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fincode_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    fincode_card_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fincode_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    # Gateway-defined status token: pending | active | card_registered | canceled | ...
    status: Mapped[str] = mapped_column(String(64), nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_charge_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancel_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    raw_payload: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="subscription")

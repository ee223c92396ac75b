from __future__ import annotations

from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    fincode_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    subscription: Mapped["Subscription | None"] = relationship(
        "Subscription", back_populates="user", uselist=False
    )

    @validates("fincode_customer_id")
    def _validate_customer_id(self, key: str, value: str | None) -> str | None:
        """A linked gateway customer is never replaced."""
        current = self.fincode_customer_id
        if current and value != current:
            raise ValueError(f"User {self.id} is already linked to fincode customer {current}")
        return value

    def link_customer(self, customer_id: str) -> bool:
        """Set the gateway customer id if none is linked yet. Returns True when it was set."""
        if self.fincode_customer_id or not customer_id:
            return False
        self.fincode_customer_id = customer_id
        return True

"""Margin rule model.

Scope is (merchant, optional brand, optional category). At most one active rule
may cover a scope at a time; that is checked by app.services.pricing when
rules are written, not by a table constraint.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column

from app.stores.postgres import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MarginRule(Base):
    """Marketplace margin applied to a merchant's listed prices."""

    __tablename__ = "margin_rules"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True)

    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), index=True)
    brand_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"))
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id"))

    margin_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2))

    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    valid_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<MarginRule m={self.merchant_id} b={self.brand_id} c={self.category_id} "
            f"{self.margin_percentage}%>"
        )

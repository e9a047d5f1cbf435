"""Merchant offer model.

The commercial link between a merchant and a master variant. offer_status is
the storefront visibility gate: only LIVE offers are sold.
"""

from datetime import datetime
import enum

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.stores.postgres import Base


class OfferStatus(str, enum.Enum):
    LIVE = "LIVE"
    PENDING_REVIEW = "PENDING_REVIEW"
    REJECTED = "REJECTED"


class MerchantOffer(Base):
    """Priced, stocked offer of one merchant for one master variant."""

    __tablename__ = "merchant_offers"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint("merchant_id", "variant_id", name="uq_merchant_offers_merchant_variant"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), index=True)
    variant_id: Mapped[int] = mapped_column(ForeignKey("variants.id"), index=True)

    # Merchant feed identifiers
    external_product_id: Mapped[str | None] = mapped_column(String(100), index=True)
    external_variant_id: Mapped[str | None] = mapped_column(String(100))
    merchant_sku: Mapped[str | None] = mapped_column(String(100))

    # Pricing (minor units)
    currency_code: Mapped[str] = mapped_column(String(3))
    cached_price_minor: Mapped[int] = mapped_column(BigInteger, default=0)
    cached_settlement_price_minor: Mapped[int] = mapped_column(BigInteger, default=0)

    current_stock: Mapped[int] = mapped_column(default=0)

    offer_status: Mapped[OfferStatus] = mapped_column(
        Enum(OfferStatus, native_enum=False, length=20),
        default=OfferStatus.PENDING_REVIEW,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(default=True)

    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<MerchantOffer m={self.merchant_id} v={self.variant_id} {self.offer_status.value}>"

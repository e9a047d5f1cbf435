"""Staging variant model.

Variants of a staging product, denormalized from the raw feed for matching.
Rewritten on every re-sync of the parent product.
"""

from datetime import datetime
import json

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.stores.postgres import Base


class StagingVariant(Base):
    """One variant of a staging product."""

    __tablename__ = "staging_variants"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint(
            "staging_product_id",
            "external_variant_id",
            name="uq_staging_variants_product_external",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    staging_product_id: Mapped[int] = mapped_column(ForeignKey("staging_products.id"), index=True)
    external_variant_id: Mapped[str] = mapped_column(String(100))

    raw_sku: Mapped[str | None] = mapped_column(String(100))
    raw_barcode: Mapped[str | None] = mapped_column(String(50), index=True)
    raw_price_minor: Mapped[int] = mapped_column(BigInteger, default=0)
    raw_inventory: Mapped[int] = mapped_column(default=0)
    raw_weight_grams: Mapped[int | None] = mapped_column()
    raw_options_json: Mapped[str | None] = mapped_column(Text)

    matched_master_variant_id: Mapped[int | None] = mapped_column(ForeignKey("variants.id"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def raw_options(self) -> dict[str, str]:
        return json.loads(self.raw_options_json) if self.raw_options_json else {}

    def __repr__(self) -> str:
        return f"<StagingVariant {self.id} ext={self.external_variant_id}>"

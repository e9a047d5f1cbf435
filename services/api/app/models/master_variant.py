"""Master variant model.

One row per distinct SKU/configuration under a master product.

Identity:
- internal_sku: globally unique
- gtin: unique among active variants (partial unique index)
- normalized attribute map: dedup key inside one product when no identifier is present
"""

from datetime import datetime
import json

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.stores.postgres import Base


class MasterVariant(Base):
    """Sellable configuration of a master product."""

    __tablename__ = "variants"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index(
            "uq_variants_active_gtin",
            "gtin",
            unique=True,
            postgresql_where=text("gtin IS NOT NULL AND is_active"),
            sqlite_where=text("gtin IS NOT NULL AND is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)

    internal_sku: Mapped[str] = mapped_column(String(100), unique=True)
    gtin: Mapped[str | None] = mapped_column(String(50))
    mpn: Mapped[str | None] = mapped_column(String(100), index=True)

    # Display attributes as received ({"Color": "Red"}) and their normalized form ({"color": "red"})
    attributes_json: Mapped[str | None] = mapped_column(Text)
    normalized_attributes_json: Mapped[str | None] = mapped_column(Text)

    weight_grams: Mapped[int | None] = mapped_column()
    is_active: Mapped[bool] = mapped_column(default=True)

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
    def attributes(self) -> dict[str, str]:
        return json.loads(self.attributes_json) if self.attributes_json else {}

    @property
    def normalized_attributes(self) -> dict[str, str]:
        return json.loads(self.normalized_attributes_json) if self.normalized_attributes_json else {}

    def __repr__(self) -> str:
        return f"<MasterVariant {self.id} {self.internal_sku}>"

"""Staging product model.

One row per merchant-submitted product, keyed by (merchant, external product id).
Rows are never hard-deleted: rejected rows stay for audit and resubmission.

Lifecycle:
  PENDING_SYNC -> NEEDS_REVIEW -> APPROVED | REJECTED
  REJECTED -> PENDING_SYNC (resubmission)
"""

from datetime import datetime
import enum
import json
from typing import Any

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.stores.postgres import Base


class StagingStatus(str, enum.Enum):
    PENDING_SYNC = "PENDING_SYNC"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class StagingProduct(Base):
    """Unreconciled merchant product awaiting admin adjudication."""

    __tablename__ = "staging_products"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint(
            "merchant_id",
            "external_product_id",
            name="uq_staging_products_merchant_external",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), index=True)
    external_product_id: Mapped[str] = mapped_column(String(100))

    # Raw feed fields
    raw_title: Mapped[str] = mapped_column(Text)
    raw_body_html: Mapped[str | None] = mapped_column(Text)
    raw_vendor: Mapped[str | None] = mapped_column(String(200))
    raw_product_type: Mapped[str | None] = mapped_column(String(200))
    raw_tags_json: Mapped[str | None] = mapped_column(Text)
    raw_image_url: Mapped[str | None] = mapped_column(Text)
    raw_payload_json: Mapped[str | None] = mapped_column(Text)

    status: Mapped[StagingStatus] = mapped_column(
        Enum(StagingStatus, native_enum=False, length=20),
        default=StagingStatus.PENDING_SYNC,
        index=True,
    )

    # Matching
    suggested_master_product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id"))
    match_confidence_score: Mapped[int] = mapped_column(default=0)
    matched_brand_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"))

    # Review
    admin_notes: Mapped[str | None] = mapped_column(Text)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

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
    def raw_tags(self) -> list[str]:
        return json.loads(self.raw_tags_json) if self.raw_tags_json else []

    @property
    def raw_payload(self) -> dict[str, Any]:
        return json.loads(self.raw_payload_json) if self.raw_payload_json else {}

    def __repr__(self) -> str:
        return f"<StagingProduct {self.id} m={self.merchant_id} ext={self.external_product_id} {self.status.value}>"

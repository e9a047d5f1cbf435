"""Merchant model.

A merchant lists products in the rewards marketplace. Its feed source
(Shopify store credentials, or push-only) is stored as a tagged JSON config
validated by app.schemas.merchant at registration time.
"""

from datetime import datetime
import enum
import json
from typing import Any

from sqlalchemy import DateTime, Enum, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.stores.postgres import Base


class SourceType(str, enum.Enum):
    """Where a merchant's product feed comes from."""

    SHOPIFY = "SHOPIFY"
    MANUAL = "MANUAL"


class Merchant(Base):
    """Merchant selling through the marketplace."""

    __tablename__ = "merchants"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(200), index=True)
    email: Mapped[str | None] = mapped_column(String(200))

    # Feed source
    source_type: Mapped[SourceType] = mapped_column(
        Enum(SourceType, native_enum=False, length=20),
        default=SourceType.MANUAL,
    )
    source_config_json: Mapped[str | None] = mapped_column(Text)

    is_active: Mapped[bool] = mapped_column(default=True)

    # Timestamps
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
    def source_config(self) -> dict[str, Any]:
        return json.loads(self.source_config_json) if self.source_config_json else {}

    def __repr__(self) -> str:
        return f"<Merchant {self.name} ({self.source_type.value})>"

"""Merchant feed schema.

Minimal explicit structure parsed out of a merchant's raw product payload
(Shopify product JSON shape). Anything not named here stays in the stored raw
payload but is never read by matching or merge logic.

Rows that do not validate are quarantined by the ingest step.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_OPTIONS = 3


def _coerce_str(v: Any) -> Any:
    # Shopify ids/barcodes arrive as ints as often as strings
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(int(v)) if float(v).is_integer() else str(v)
    return v


class FeedOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    position: int | None = None
    values: list[str] = Field(default_factory=list)


class FeedImage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    src: str


class FeedVariant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str | None = None
    sku: str | None = None
    barcode: str | None = None
    price: Decimal = Decimal("0")
    inventory_quantity: int = 0
    grams: int | None = None
    option1: str | None = None
    option2: str | None = None
    option3: str | None = None

    @field_validator("id", "sku", "barcode", mode="before")
    @classmethod
    def _ids_as_text(cls, v: Any) -> Any:
        return _coerce_str(v)

    @field_validator("price", mode="before")
    @classmethod
    def _blank_price(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return Decimal("0")
        return v

    @field_validator("price")
    @classmethod
    def _non_negative_price(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("price must not be negative")
        return v

    @field_validator("inventory_quantity", mode="before")
    @classmethod
    def _missing_inventory(cls, v: Any) -> Any:
        return 0 if v is None else v

    @property
    def price_minor(self) -> int:
        """Price in minor units (x100, half-up)."""
        return int((self.price * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    def option_values(self) -> list[str | None]:
        return [self.option1, self.option2, self.option3]


class FeedProduct(BaseModel):
    """One product of a merchant feed."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = Field(min_length=1)
    body_html: str | None = None
    vendor: str | None = None
    product_type: str | None = None
    handle: str | None = None
    tags: list[str] = Field(default_factory=list)
    options: list[FeedOption] = Field(default_factory=list)
    variants: list[FeedVariant] = Field(min_length=1)
    images: list[FeedImage] = Field(default_factory=list)
    image: FeedImage | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, v: Any) -> Any:
        return _coerce_str(v)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, v: Any) -> Any:
        """Shopify sends tags as one comma-separated string."""
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return v

    @property
    def image_url(self) -> str | None:
        if self.image is not None:
            return self.image.src
        if self.images:
            return self.images[0].src
        return None

    def option_map(self, variant: FeedVariant) -> dict[str, str]:
        """Pair variant option1..3 with the product's option names.

        Unnamed positions fall back to "Option{n}"; empty values are skipped.
        """
        names = [o.name for o in self.options[:MAX_OPTIONS]]
        out: dict[str, str] = {}
        for i, value in enumerate(variant.option_values()):
            if value is None or not str(value).strip():
                continue
            name = names[i] if i < len(names) and names[i].strip() else f"Option{i + 1}"
            out[name] = str(value).strip()
        return out

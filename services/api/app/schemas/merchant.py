"""Merchant schemas.

Feed source configuration is a tagged union on `source_type`:
- SHOPIFY: store_url + access_token (fetched through the Shopify Admin REST API)
- MANUAL: no remote source; feeds are pushed to the ingest endpoint
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class ShopifySourceConfig(BaseModel):
    source_type: Literal["SHOPIFY"] = "SHOPIFY"
    store_url: str = Field(min_length=3)
    access_token: str = Field(min_length=1)

    @field_validator("store_url")
    @classmethod
    def _bare_host(cls, v: str) -> str:
        """Keep only the host ("shop.myshopify.com")."""
        s = v.strip()
        for prefix in ("https://", "http://"):
            if s.lower().startswith(prefix):
                s = s[len(prefix):]
        s = s.split("/", 1)[0]
        if "." not in s:
            raise ValueError("store_url must be a host name like shop.myshopify.com")
        return s.lower()


class ManualSourceConfig(BaseModel):
    source_type: Literal["MANUAL"] = "MANUAL"


SourceConfig = Annotated[
    Union[ShopifySourceConfig, ManualSourceConfig],
    Field(discriminator="source_type"),
]

_source_config_adapter: TypeAdapter[Any] = TypeAdapter(SourceConfig)


def parse_source_config(raw: dict[str, Any]) -> ShopifySourceConfig | ManualSourceConfig:
    """Validate a stored/submitted source config (raises pydantic.ValidationError)."""
    return _source_config_adapter.validate_python(raw)


class RegisterMerchantRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=200)
    source_config: SourceConfig


class MerchantResponse(BaseModel):
    id: int
    name: str
    email: str | None
    source_type: str
    is_active: bool

"""Admin review schemas."""

import enum

from pydantic import AliasChoices, BaseModel, Field


class DecisionAction(str, enum.Enum):
    APPROVE_NEW = "approve_new"
    APPROVE_MATCH = "approve_match"
    REJECT = "reject"


class ReviewDecisionRequest(BaseModel):
    """Admin decision on one staging product.

    variant_mappings: staging variant id -> master variant id, or null to force
    "create new" for that variant. Only used by approve_match.
    """

    action: DecisionAction
    target_product_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("target_product_id", "targetProductId"),
    )
    variant_mappings: dict[int, int | None] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("variant_mappings", "variantMappings"),
    )
    brand_id: int | None = Field(default=None, validation_alias=AliasChoices("brand_id", "brandId"))
    category_id: int | None = Field(default=None, validation_alias=AliasChoices("category_id", "categoryId"))
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    rejection_reason: str | None = Field(
        default=None,
        validation_alias=AliasChoices("rejection_reason", "rejectionReason"),
    )
    admin_notes: str | None = Field(default=None, validation_alias=AliasChoices("admin_notes", "adminNotes"))

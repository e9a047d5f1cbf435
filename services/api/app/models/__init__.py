"""SQLAlchemy ORM models.

Models represent database tables:
- merchants / sync_logs: Merchants and their feed sync history
- brands / categories / product_categories: Catalog taxonomy
- products / variants: Master catalog
- merchant_offers: Priced merchant links to master variants
- margin_rules: Settlement margin per merchant scope
- staging_products / staging_variants: Merchant feed intake awaiting review
"""

from app.models.brand import Brand
from app.models.category import Category, ProductCategory
from app.models.margin_rule import MarginRule
from app.models.master_product import MasterProduct, ProductStatus
from app.models.master_variant import MasterVariant
from app.models.merchant import Merchant, SourceType
from app.models.merchant_offer import MerchantOffer, OfferStatus
from app.models.staging_product import StagingProduct, StagingStatus
from app.models.staging_variant import StagingVariant
from app.models.sync_log import SyncLog, SyncStatus

__all__ = [
    "Brand",
    "Category",
    "MarginRule",
    "MasterProduct",
    "MasterVariant",
    "Merchant",
    "MerchantOffer",
    "OfferStatus",
    "ProductCategory",
    "ProductStatus",
    "SourceType",
    "StagingProduct",
    "StagingStatus",
    "StagingVariant",
    "SyncLog",
    "SyncStatus",
]

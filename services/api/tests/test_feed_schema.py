import pytest
from pydantic import ValidationError

from app.schemas.feed import FeedProduct
from app.schemas.merchant import ManualSourceConfig, ShopifySourceConfig, parse_source_config


def _product(**overrides):
    raw = {
        "id": 7001,
        "title": "  Acme Trail Runner ",
        "vendor": "Acme",
        "tags": "running, trail ,",
        "options": [{"name": "Size"}, {"name": "Color"}],
        "variants": [
            {"id": 9001, "price": "19.995", "barcode": 12345, "sku": " AC-TR-9 ", "option1": "9", "option2": "Red"},
        ],
        "images": [{"src": "https://cdn.example.com/a.jpg"}],
        "unknown_field": {"kept": "only in raw payload"},
    }
    raw.update(overrides)
    return raw


def test_feed_product_parses_shopify_shape():
    product = FeedProduct.model_validate(_product())
    assert product.id == "7001"
    assert product.title == "Acme Trail Runner"
    assert product.tags == ["running", "trail"]
    assert product.image_url == "https://cdn.example.com/a.jpg"

    variant = product.variants[0]
    assert variant.id == "9001"
    assert variant.barcode == "12345"
    assert variant.price_minor == 2000  # 1999.5 rounds half-up
    assert variant.inventory_quantity == 0
    assert product.option_map(variant) == {"Size": "9", "Color": "Red"}


def test_option_map_falls_back_to_positional_names():
    product = FeedProduct.model_validate(
        _product(options=[{"name": "Size"}], variants=[{"id": 1, "option1": "9", "option2": "Blue", "option3": " "}])
    )
    assert product.option_map(product.variants[0]) == {"Size": "9", "Option2": "Blue"}


@pytest.mark.parametrize(
    "overrides",
    [
        {"variants": []},
        {"title": "   "},
        {"variants": [{"id": 1, "price": "-1.00"}]},
        {"variants": [{"price": "1.00"}]},
    ],
)
def test_feed_product_rejects_nonconforming_rows(overrides):
    with pytest.raises(ValidationError):
        FeedProduct.model_validate(_product(**overrides))


def test_blank_price_and_missing_inventory_default_to_zero():
    product = FeedProduct.model_validate(
        _product(variants=[{"id": 1, "price": "", "inventory_quantity": None}])
    )
    assert product.variants[0].price_minor == 0
    assert product.variants[0].inventory_quantity == 0


def test_source_config_is_tagged_union():
    shopify = parse_source_config(
        {"source_type": "SHOPIFY", "store_url": "https://Acme-Store.myshopify.com/admin", "access_token": "shpat_x"}
    )
    assert isinstance(shopify, ShopifySourceConfig)
    assert shopify.store_url == "acme-store.myshopify.com"

    manual = parse_source_config({"source_type": "MANUAL"})
    assert isinstance(manual, ManualSourceConfig)


def test_source_config_validation_errors():
    with pytest.raises(ValidationError):
        parse_source_config({"source_type": "SHOPIFY", "store_url": "localhost", "access_token": "x"})
    with pytest.raises(ValidationError):
        parse_source_config({"source_type": "FTP"})

import re

from app.services.dedup import (
    compute_internal_sku,
    generate_slug,
    normalize_attributes,
    normalize_identifier,
    slugify,
)


def test_normalize_identifier_trims_and_drops_blank():
    assert normalize_identifier(" 0001 ") == "0001"
    assert normalize_identifier(123) == "123"
    assert normalize_identifier("   ") is None
    assert normalize_identifier(None) is None


def test_normalize_attributes_is_case_and_whitespace_insensitive():
    assert normalize_attributes({"Color": " Red", "SIZE": "M "}) == {"color": "red", "size": "m"}
    assert normalize_attributes({"Color": "Red"}) == normalize_attributes({"color": "red"})


def test_normalize_attributes_drops_blank_entries():
    assert normalize_attributes({"Color": "", " ": "x", "Size": None, "Fit": "Slim"}) == {"fit": "slim"}
    assert normalize_attributes(None) == {}


def test_slugify():
    assert slugify("Nike Air Max 90 / Men's") == "nike-air-max-90-mens"
    assert slugify("  Rock & Roll  ") == "rock-roll"
    assert slugify("") == ""


def test_generate_slug_has_random_suffix():
    a = generate_slug("Trail Runner")
    b = generate_slug("Trail Runner")
    assert re.fullmatch(r"trail-runner-[0-9a-f]{8}", a)
    assert a != b
    assert re.fullmatch(r"product-[0-9a-f]{8}", generate_slug("!!!"))


def test_compute_internal_sku():
    assert compute_internal_sku(12, 345) == "P12-SV345"

"""Product identifier parsing and locator construction."""

import pytest

from buyer.errors import ValidationError
from buyer.sources.registry import (
    AmazonSource,
    ProductSource,
    SourceRegistry,
    create_product_locator,
    extract_asin_from_url,
    resolve_line_item,
    source_registry,
)


def test_extract_asin_from_dp_url():
    assert extract_asin_from_url("https://www.amazon.com/dp/B01DFKC2SO") == "B01DFKC2SO"


def test_extract_asin_with_query_and_trailing_path():
    assert extract_asin_from_url(
        "https://www.amazon.com/Some-Product/dp/B01DFKC2SO/ref=sr_1_1?keywords=x"
    ) == "B01DFKC2SO"
    assert extract_asin_from_url("https://amazon.com/gp/product/B07ZPKN6YR?th=1") == "B07ZPKN6YR"


def test_extract_asin_before_fragment():
    assert extract_asin_from_url("https://www.amazon.com/dp/B01DFKC2SO#reviews") == "B01DFKC2SO"


def test_extract_asin_takes_last_matching_segment():
    url = "https://www.amazon.com/ABCDEFGHIJ/dp/B01DFKC2SO"
    assert extract_asin_from_url(url) == "B01DFKC2SO"


def test_extract_asin_none_when_absent():
    assert extract_asin_from_url("https://www.amazon.com/dp/b01dfkc2so") is None
    assert extract_asin_from_url("https://www.amazon.com/dp/B01DFKC2SOX") is None
    assert extract_asin_from_url("") is None


def test_locator_is_idempotent_over_url_and_id():
    url = "https://www.amazon.com/dp/B01DFKC2SO"
    asin = extract_asin_from_url(url)
    assert create_product_locator(url, True) == create_product_locator(asin, False)
    assert create_product_locator(asin, False) == "amazon:B01DFKC2SO"


def test_locator_falls_back_to_raw_url():
    url = "https://www.amazon.com/deals"
    assert create_product_locator(url, True) == f"amazon:{url}"


def test_validate_identifier():
    src = AmazonSource()
    assert src.validate_identifier("B01DFKC2SO", False)
    assert not src.validate_identifier("B01DFKC2S", False)
    assert not src.validate_identifier("b01dfkc2so", False)
    assert src.validate_identifier("https://www.amazon.com/dp/B01DFKC2SO", True)
    assert not src.validate_identifier("https://www.amazon.com/deals", True)


def test_resolve_line_item():
    assert resolve_line_item("amazon", "B01DFKC2SO", False) == "amazon:B01DFKC2SO"
    with pytest.raises(ValidationError, match="Unsupported product source"):
        resolve_line_item("ebay", "123", False)
    with pytest.raises(ValidationError, match="Invalid product identifier"):
        resolve_line_item("amazon", "nope", False)


def test_validate_locator():
    assert source_registry.validate_locator("amazon:B01DFKC2SO")
    assert source_registry.validate_locator("amazon:https://www.amazon.com/dp/B01DFKC2SO")
    for bad in ("x:", "amazon:", "amazon:nope", "B01DFKC2SO", "walmart:B01DFKC2SO", ""):
        assert not source_registry.validate_locator(bad), bad


def test_registry_register_and_lookup():
    class Shop(ProductSource):
        name = "shop"

        def extract_product_id(self, identifier):
            return identifier.rsplit("/", 1)[-1] or None

        def create_product_locator(self, identifier, is_url):
            return "shop:" + (self.extract_product_id(identifier) if is_url else identifier)

        def validate_identifier(self, identifier, is_url):
            return bool(identifier)

    reg = SourceRegistry()
    reg.register(Shop())
    assert reg.names() == ["shop"]
    assert reg.get("missing") is None
    assert resolve_line_item("shop", "https://x/item/42", True, registry=reg) == "shop:42"
    assert "amazon" in source_registry.names()
    with pytest.raises(ValueError):
        reg.register(ProductSource())

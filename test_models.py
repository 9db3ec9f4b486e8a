"""Order snapshot parsing: nested and flattened response shapes."""

import pytest

from buyer.errors import ValidationError
from buyer.orders.models import (
    UNKNOWN,
    Order,
    ShippingAddress,
    normalize_order_response,
)

NESTED = {
    "clientSecret": "secret-1",
    "order": {
        "orderId": "ord-1",
        "phase": "payment",
        "locale": "en-US",
        "quote": {
            "status": "valid",
            "totalPrice": {"amount": "9.79", "currency": "usdc"},
            "quotedAt": "2024-01-01T00:00:00Z",
            "expiresAt": "2024-01-01T01:00:00Z",
        },
        "payment": {
            "status": "awaiting-payment",
            "method": "base-sepolia",
            "currency": "usdc",
            "preparation": {"serializedTransaction": "0x02f8", "chain": "base-sepolia"},
        },
        "lineItems": [{"metadata": {"name": "USB-C Cable"}}],
        "fulfillment": {"carrier": "UPS"},
    },
}

FLAT = {
    "orderId": "ord-2",
    "phase": "quote",
    "quote": {"status": "requires-physical-address"},
    "payment": {"status": "requires-quote", "method": "polygon-amoy", "currency": "usdc"},
    "somethingNew": 42,
}


def test_nested_shape():
    order = Order.from_response(NESTED)
    assert order.order_id == "ord-1"
    assert order.phase == "payment"
    assert order.client_secret == "secret-1"
    assert order.quote.status == "valid"
    assert order.quote.total_price.amount == "9.79"
    assert order.quote.expires_at == "2024-01-01T01:00:00Z"
    assert order.payment.method == "base-sepolia"
    assert order.serialized_transaction == "0x02f8"
    assert order.payment.preparation.extra == {"chain": "base-sepolia"}
    assert order.extra == {"fulfillment": {"carrier": "UPS"}}
    assert order.product_name() == "USB-C Cable"
    assert order.raw is NESTED


def test_flat_shape():
    order = Order.from_response(FLAT)
    assert order.order_id == "ord-2"
    assert order.requires_address
    assert not order.has_preparation
    assert order.extra == {"somethingNew": 42}
    assert order.product_name() is None


def test_missing_fields_become_unknown():
    order = Order.from_response({"orderId": "ord-3"})
    assert order.phase == UNKNOWN
    assert order.quote.status == UNKNOWN
    assert order.payment.status == UNKNOWN
    assert order.payment.preparation is None


def test_completion_and_failure_flags():
    assert Order.from_response({"orderId": "a", "phase": "completed"}).is_complete
    assert Order.from_response({"orderId": "a", "phase": "complete"}).is_complete
    assert Order.from_response({"orderId": "a", "payment": {"status": "completed"}}).is_complete
    assert not Order.from_response({"orderId": "a", "phase": "delivery"}).is_complete
    assert Order.from_response({"orderId": "a", "payment": {"status": "canceled"}}).payment_failed


def test_from_response_rejects_non_object():
    with pytest.raises(ValueError):
        Order.from_response(["not", "an", "order"])


def test_normalize_flat_gains_order_key():
    out = normalize_order_response(FLAT)
    assert out["order"]["orderId"] == "ord-2"
    assert out["order"]["phase"] == "quote"
    assert out["orderId"] == "ord-2"
    assert out["somethingNew"] == 42


def test_normalize_flat_defaults_unknown():
    out = normalize_order_response({"orderId": "ord-4"})
    assert out["order"]["phase"] == "unknown"
    assert out["order"]["quote"]["status"] == "unknown"
    assert out["order"]["payment"]["status"] == "unknown"


def test_normalize_nested_mirrors_top_level():
    out = normalize_order_response(NESTED)
    assert out["orderId"] == "ord-1"
    assert out["payment"]["method"] == "base-sepolia"
    assert out["order"] is NESTED["order"]
    assert out["clientSecret"] == "secret-1"


def test_shipping_address_wire_and_validation():
    addr = ShippingAddress("Jane Doe", "1 Main St", "Austin", "TX", "78701", "US")
    assert addr.to_wire() == {
        "name": "Jane Doe", "line1": "1 Main St", "city": "Austin",
        "state": "TX", "postalCode": "78701", "country": "US",
    }
    assert addr.one_line() == "1 Main St, Austin, TX 78701, US"
    with_line2 = ShippingAddress("Jane", "1 Main St", "Austin", "TX", "78701", "US", line2="Apt 2")
    assert with_line2.to_wire()["line2"] == "Apt 2"
    assert "Apt 2" in with_line2.one_line()

    with pytest.raises(ValidationError, match="city"):
        ShippingAddress("Jane", "1 Main St", " ", "TX", "78701", "US").validate()

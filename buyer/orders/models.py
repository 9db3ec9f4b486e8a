"""
Order snapshots as returned by the checkout service.

The service answers in two shapes:
  nested:    {"clientSecret": ..., "order": {"orderId", "phase", "quote", "payment", ...}}
  flattened: {"orderId", "phase", "quote", "payment", ...}
Both are parsed into one canonical Order record by Order.from_response().
Unknown fields are carried along untouched in `extra` / `raw`.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from buyer.errors import ValidationError

UNKNOWN = "unknown"

# Quote statuses
QUOTE_VALID = "valid"
QUOTE_REQUIRES_ADDRESS = "requires-physical-address"

# Payment statuses
PAYMENT_INSUFFICIENT_FUNDS = "crypto-payer-insufficient-funds"
PAYMENT_COMPLETED = "completed"
PAYMENT_TERMINAL_FAILURES = frozenset({"failed", "canceled"})

# Phases
PHASE_COMPLETE = frozenset({"complete", "completed"})

_ORDER_KEYS = ("orderId", "phase", "quote", "payment", "lineItems", "locale")


@dataclass(frozen=True)
class ShippingAddress:
    """Physical delivery address. Immutable once submitted."""
    name: str
    line1: str
    city: str
    state: str
    postal_code: str
    country: str
    line2: str = ""

    REQUIRED = ("name", "line1", "city", "state", "postal_code", "country")

    def validate(self) -> "ShippingAddress":
        missing = [f for f in self.REQUIRED if not str(getattr(self, f) or "").strip()]
        if missing:
            raise ValidationError(
                f"Shipping address is incomplete, missing: {', '.join(missing)}"
            )
        return self

    def to_wire(self) -> dict:
        """physicalAddress object for the checkout API."""
        out = {
            "name": self.name,
            "line1": self.line1,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
        }
        if self.line2:
            out["line2"] = self.line2
        return out

    def one_line(self) -> str:
        line2 = f", {self.line2}" if self.line2 else ""
        return (f"{self.line1}{line2}, {self.city}, {self.state} "
                f"{self.postal_code}, {self.country}")


@dataclass
class Price:
    amount: str
    currency: str

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> Optional["Price"]:
        if not isinstance(d, dict) or "amount" not in d:
            return None
        return cls(amount=str(d.get("amount")), currency=str(d.get("currency") or ""))


@dataclass
class Quote:
    status: str = UNKNOWN
    total_price: Optional[Price] = None
    quoted_at: Optional[str] = None
    expires_at: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "Quote":
        d = d if isinstance(d, dict) else {}
        return cls(
            status=d.get("status") or UNKNOWN,
            total_price=Price.from_dict(d.get("totalPrice")),
            quoted_at=d.get("quotedAt"),
            expires_at=d.get("expiresAt"),
        )


@dataclass
class PaymentPreparation:
    serialized_transaction: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> Optional["PaymentPreparation"]:
        if not isinstance(d, dict):
            return None
        extra = {k: v for k, v in d.items() if k != "serializedTransaction"}
        return cls(serialized_transaction=d.get("serializedTransaction") or "", extra=extra)


@dataclass
class Payment:
    status: str = UNKNOWN
    method: str = UNKNOWN
    currency: str = UNKNOWN
    preparation: Optional[PaymentPreparation] = None

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "Payment":
        d = d if isinstance(d, dict) else {}
        return cls(
            status=d.get("status") or UNKNOWN,
            method=d.get("method") or UNKNOWN,
            currency=d.get("currency") or UNKNOWN,
            preparation=PaymentPreparation.from_dict(d.get("preparation")),
        )


@dataclass
class Order:
    """Point-in-time snapshot of a remotely owned order."""
    order_id: str
    phase: str = UNKNOWN
    quote: Quote = field(default_factory=Quote)
    payment: Payment = field(default_factory=Payment)
    line_items: List[dict] = field(default_factory=list)
    client_secret: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, data: dict) -> "Order":
        """Parse either response shape into one record."""
        if not isinstance(data, dict):
            raise ValueError(f"order response must be an object, got {type(data).__name__}")
        nested = data.get("order")
        body = nested if isinstance(nested, dict) else data
        order_id = body.get("orderId") or data.get("orderId") or ""
        extra = {k: v for k, v in body.items() if k not in _ORDER_KEYS}
        if body is not data:
            extra.update({k: v for k, v in data.items()
                          if k not in ("order", "clientSecret") and k not in _ORDER_KEYS})
        return cls(
            order_id=order_id,
            phase=body.get("phase") or UNKNOWN,
            quote=Quote.from_dict(body.get("quote")),
            payment=Payment.from_dict(body.get("payment")),
            line_items=list(body.get("lineItems") or []),
            client_secret=data.get("clientSecret"),
            extra=extra,
            raw=data,
        )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def serialized_transaction(self) -> str:
        prep = self.payment.preparation
        return prep.serialized_transaction if prep else ""

    @property
    def has_preparation(self) -> bool:
        return bool(self.serialized_transaction)

    @property
    def requires_address(self) -> bool:
        return self.quote.status == QUOTE_REQUIRES_ADDRESS

    @property
    def payment_failed(self) -> bool:
        return self.payment.status in PAYMENT_TERMINAL_FAILURES

    @property
    def is_complete(self) -> bool:
        return self.payment.status == PAYMENT_COMPLETED or self.phase in PHASE_COMPLETE

    def product_name(self) -> Optional[str]:
        for item in self.line_items:
            name = ((item or {}).get("metadata") or {}).get("name")
            if name:
                return name
        return None


def normalize_order_response(data: dict) -> dict:
    """Dict view with order fields reachable both at top level and under "order".

    Flattened payloads gain an "order" key (missing phase/quote/payment become
    "unknown"); nested payloads get their fields mirrored at the top level.
    Every other key is preserved.
    """
    if not isinstance(data, dict):
        raise ValueError(f"order response must be an object, got {type(data).__name__}")

    nested = data.get("order")
    if isinstance(nested, dict):
        out = dict(nested)
        out.update(data)
        return out

    if not data.get("orderId"):
        return dict(data)

    order = {
        "orderId": data["orderId"],
        "phase": data.get("phase") or UNKNOWN,
        "quote": data.get("quote") or {"status": UNKNOWN},
        "payment": data.get("payment") or {
            "status": UNKNOWN, "method": UNKNOWN, "currency": UNKNOWN,
        },
    }
    for key in ("lineItems", "locale"):
        if key in data:
            order[key] = data[key]
    out = {"order": order}
    out.update(data)
    return out

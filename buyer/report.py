"""
Human-readable purchase reports. Missing display fields get placeholders,
never guesses.
"""

from typing import Optional

from buyer.orders.models import Order, ShippingAddress
from buyer.orders.state_machine import OrderState, PurchaseOutcome

NOT_AVAILABLE = "not available"
NAME_NOT_AVAILABLE = "Name not available"
ADDRESS_NOT_AVAILABLE = "Address not available"

RULE = "=" * 40

_HEADLINES = {
    OrderState.CONFIRMED: "✅ Purchase confirmed",
    OrderState.MANUAL_COMPLETION: "⚠️  Requires manual follow-up: complete the payment manually",
    OrderState.TIMEOUT: "⚠️  Requires manual follow-up: order status unknown, check later",
    OrderState.ADDRESS_REQUIRED: "❌ Failed: shipping address required",
    OrderState.INSUFFICIENT_FUNDS: "❌ Failed: insufficient funds",
    OrderState.PAYLOAD_UNAVAILABLE: "❌ Failed: item not available for purchase",
    OrderState.REMOTE_FAILURE: "❌ Failed",
}


def format_order_summary(order: Order, address: Optional[ShippingAddress] = None,
                         email: Optional[str] = None) -> str:
    price = order.quote.total_price
    total = f"{price.amount} {price.currency.upper()}" if price else NOT_AVAILABLE

    lines = [
        RULE,
        "Order Details:",
        f"Order ID: {order.order_id or NOT_AVAILABLE}",
        f"Product: {order.product_name() or NOT_AVAILABLE}",
        f"Total Price: {total}",
        f"Phase: {order.phase}",
        f"Payment Status: {order.payment.status}",
        f"Recipient: {address.name if address and address.name else NAME_NOT_AVAILABLE}",
        f"Email: {email or NOT_AVAILABLE}",
        f"Shipping Address: {address.one_line() if address else ADDRESS_NOT_AVAILABLE}",
        RULE,
    ]
    return "\n".join(lines)


def format_outcome(outcome: PurchaseOutcome, address: Optional[ShippingAddress] = None,
                   email: Optional[str] = None) -> str:
    """Headline + reason + tx + order summary for a finished run."""
    lines = [_HEADLINES.get(outcome.state, outcome.state.name)]
    if outcome.message:
        lines.append(f"  {outcome.message}")
    if outcome.receipt is not None:
        lines.append(f"  Transaction: {outcome.receipt.tx_hash} "
                     f"(block {outcome.receipt.block_number}, {outcome.receipt.chain})")
    lines.append(f"  States: {' -> '.join(s.name for s in outcome.history) or NOT_AVAILABLE}")
    if outcome.order is not None:
        lines.append("")
        lines.append(format_order_summary(outcome.order, address, email))
    elif outcome.order_id:
        lines.append(f"  Order ID: {outcome.order_id}")
    return "\n".join(lines)

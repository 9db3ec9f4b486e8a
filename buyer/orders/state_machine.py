"""
Order Lifecycle: drives one purchase from order creation to on-chain
confirmation.

  CREATED -> [ADDRESS_PENDING] -> VALID -> AWAITING_PREPARATION
          -> READY_TO_SIGN -> SUBMITTED -> CONFIRMED

Absorbing failures: ADDRESS_REQUIRED, INSUFFICIENT_FUNDS, PAYLOAD_UNAVAILABLE,
REMOTE_FAILURE, TIMEOUT. MANUAL_COMPLETION ends a valid order when no
signing key was supplied.

The order itself lives at the checkout service; this class only ever holds
snapshots. Nothing is persisted: after a crash, resume(order_id) re-enters
at the preparation step.

Single-submission rule: a payload is signed at most once per order id per
OrderLifecycle instance. A repeat attempt ends in TIMEOUT (follow-up)
carrying DuplicateSubmission, without polling or signing again.
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from buyer.chains.registry import CHAIN_REGISTRY, ChainRegistry
from buyer.config import DEFAULT_CURRENCY
from buyer.errors import (
    AddressRequired,
    BudgetExhausted,
    BuyerError,
    DuplicateSubmission,
    InsufficientFunds,
    PaymentPayloadMissing,
    PaymentTerminallyFailed,
    PollCancelled,
    RemoteError,
    ValidationError,
)
from buyer.gateway.client import build_recipient
from buyer.orders.models import (
    PAYMENT_INSUFFICIENT_FUNDS,
    QUOTE_VALID,
    Order,
    ShippingAddress,
)
from buyer.sources.registry import SourceRegistry, source_registry
from buyer.wallets.signer import PaymentReceipt, wallet_address_from_key


class OrderState(str, Enum):
    CREATED = "created"
    ADDRESS_PENDING = "address_pending"
    VALID = "valid"
    AWAITING_PREPARATION = "awaiting_preparation"
    READY_TO_SIGN = "ready_to_sign"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    MANUAL_COMPLETION = "manual_completion"
    # failures
    ADDRESS_REQUIRED = "address_required"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PAYLOAD_UNAVAILABLE = "payload_unavailable"
    REMOTE_FAILURE = "remote_failure"
    TIMEOUT = "timeout"


FAILURE_STATES = frozenset({
    OrderState.ADDRESS_REQUIRED,
    OrderState.INSUFFICIENT_FUNDS,
    OrderState.PAYLOAD_UNAVAILABLE,
    OrderState.REMOTE_FAILURE,
})
FOLLOW_UP_STATES = frozenset({OrderState.TIMEOUT, OrderState.MANUAL_COMPLETION})


@dataclass
class PurchaseRequest:
    line_item: str
    payment_method: str
    currency: str = DEFAULT_CURRENCY
    private_key: Optional[str] = field(default=None, repr=False)
    email: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None

    def validate(self, registry: ChainRegistry = CHAIN_REGISTRY,
                 sources: SourceRegistry = source_registry):
        """Raise ValidationError before any network I/O."""
        if not sources.validate_locator(self.line_item):
            raise ValidationError(f"Invalid product locator: {self.line_item!r}")
        if not registry.is_supported(self.payment_method):
            raise ValidationError(
                f"Unsupported chain: {self.payment_method}. "
                f"Supported chains: {', '.join(registry.names())}"
            )
        if not self.currency:
            raise ValidationError("currency is required")
        if self.shipping_address is not None:
            self.shipping_address.validate()
        if self.private_key:
            wallet_address_from_key(self.private_key)


@dataclass
class PurchaseOutcome:
    state: OrderState
    order_id: str = ""
    order: Optional[Order] = None
    receipt: Optional[PaymentReceipt] = None
    error: Optional[Exception] = None
    message: str = ""
    history: List[OrderState] = field(default_factory=list)

    @property
    def confirmed(self) -> bool:
        return self.state == OrderState.CONFIRMED

    @property
    def needs_follow_up(self) -> bool:
        return self.state in FOLLOW_UP_STATES

    @property
    def failed(self) -> bool:
        return self.state in FAILURE_STATES


class OrderLifecycle:
    """Handles order lifecycle: create → address → prepare → sign → confirm."""

    def __init__(self, gateway, signer, poller, monitor,
                 registry: ChainRegistry = CHAIN_REGISTRY):
        self.gateway = gateway
        self.signer = signer
        self.poller = poller
        self.monitor = monitor
        self.registry = registry
        # order_id → tx hash ("" until the chain returns one)
        self._submitted: Dict[str, str] = {}
        self._payload_digests = set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self, request: PurchaseRequest) -> PurchaseOutcome:
        """Create an order and take it as far as the inputs allow."""
        request.validate(self.registry)
        history: List[OrderState] = []

        payer = wallet_address_from_key(request.private_key) if request.private_key else None
        recipient = build_recipient(request.email, request.shipping_address)

        try:
            order = await self.gateway.create(
                request.line_item, request.payment_method, request.currency,
                payer_address=payer, recipient=recipient,
            )
        except RemoteError as e:
            return self._finish(history, OrderState.REMOTE_FAILURE, error=e,
                                message=f"Order creation failed: {e}")

        self._enter(history, OrderState.CREATED, order.order_id)

        if order.requires_address:
            self._enter(history, OrderState.ADDRESS_PENDING, order.order_id)
            if request.shipping_address is None:
                return self._finish(
                    history, OrderState.ADDRESS_REQUIRED, order=order, error=AddressRequired(),
                    message="This order requires a shipping address. "
                            "Update the order with a valid address.",
                )
            try:
                order = await self.gateway.patch_shipping_address(
                    order.order_id, request.shipping_address)
            except RemoteError as e:
                return self._finish(history, OrderState.REMOTE_FAILURE, order=order, error=e,
                                    message=f"Shipping address update failed: {e}")
            if order.quote.status != QUOTE_VALID:
                return self._finish(
                    history, OrderState.ADDRESS_REQUIRED, order=order, error=AddressRequired(),
                    message=f"Quote is still '{order.quote.status}' after the address update",
                )
        elif order.quote.status != QUOTE_VALID:
            return self._finish(
                history, OrderState.REMOTE_FAILURE, order=order,
                message=f"Quote status is '{order.quote.status}', cannot proceed",
            )

        self._enter(history, OrderState.VALID, order.order_id)
        return await self._pay_and_confirm(order, request.private_key, history)

    async def resume(self, order_id: str, private_key: Optional[str] = None) -> PurchaseOutcome:
        """Pick an existing order back up at the preparation step."""
        if not order_id:
            raise ValidationError("order id is required")
        if private_key:
            wallet_address_from_key(private_key)
        history: List[OrderState] = []

        try:
            order = await self.gateway.get_status(order_id)
        except RemoteError as e:
            return self._finish(history, OrderState.REMOTE_FAILURE, order_id=order_id, error=e,
                                message=f"Could not fetch order {order_id}: {e}")

        print(f"[ORDERS] Resuming order {order_id} (phase={order.phase}, "
              f"quote={order.quote.status}, payment={order.payment.status})")

        if order.is_complete:
            return self._finish(history, OrderState.CONFIRMED, order=order,
                                message="Order is already complete")
        if order.requires_address:
            return self._finish(history, OrderState.ADDRESS_REQUIRED, order=order,
                                error=AddressRequired(),
                                message="This order still requires a shipping address")

        self._enter(history, OrderState.VALID, order_id)
        return await self._pay_and_confirm(order, private_key, history)

    # ------------------------------------------------------------------
    # Steps 3-5
    # ------------------------------------------------------------------

    async def _pay_and_confirm(self, order: Order, private_key: Optional[str],
                               history: List[OrderState]) -> PurchaseOutcome:
        order_id = order.order_id

        if self.submitted(order_id):
            return self._already_submitted(order, history, DuplicateSubmission(
                order_id, self._submitted[order_id]))

        if not private_key:
            return self._finish(
                history, OrderState.MANUAL_COMPLETION, order=order,
                message="No private key provided. Follow the checkout instructions "
                        "to complete the purchase manually.",
            )

        if order.payment.status == PAYMENT_INSUFFICIENT_FUNDS:
            return self._finish(history, OrderState.INSUFFICIENT_FUNDS, order=order,
                                error=InsufficientFunds(),
                                message="Payer wallet has insufficient funds")

        self._enter(history, OrderState.AWAITING_PREPARATION, order_id)
        try:
            prepared = await self.poller.poll(order_id)
        except PaymentTerminallyFailed as e:
            return self._finish(history, OrderState.REMOTE_FAILURE, order=order, error=e,
                                message=str(e))
        except (BudgetExhausted, PollCancelled) as e:
            return self._finish(
                history, OrderState.TIMEOUT, order=order, error=e,
                message=f"{e}. The order may still progress; resume it later.",
            )
        except RemoteError as e:
            return self._finish(history, OrderState.REMOTE_FAILURE, order=order, error=e,
                                message=f"Polling for payment preparation failed: {e}")

        self._enter(history, OrderState.READY_TO_SIGN, order_id)
        try:
            digest = self._claim_submission(prepared)
        except DuplicateSubmission as e:
            return self._already_submitted(prepared, history, e)

        try:
            receipt = await self.signer.pay(prepared, private_key)
        except (InsufficientFunds, AddressRequired, PaymentPayloadMissing, ValidationError) as e:
            # nothing reached the chain
            self._release_submission(order_id, digest)
            state = {
                InsufficientFunds: OrderState.INSUFFICIENT_FUNDS,
                AddressRequired: OrderState.ADDRESS_REQUIRED,
                PaymentPayloadMissing: OrderState.PAYLOAD_UNAVAILABLE,
            }.get(type(e), OrderState.REMOTE_FAILURE)
            return self._finish(history, state, order=prepared, error=e, message=str(e))
        except Exception as e:
            self._submitted[order_id] = getattr(e, "tx_hash", "") or ""
            print(f"[ORDERS] Payment for order {order_id} failed: {e}")
            return self._finish(
                history, OrderState.REMOTE_FAILURE, order=prepared, error=e,
                message=f"Error processing payment: {e}. "
                        "You may need to complete the payment manually.",
            )

        self._submitted[order_id] = receipt.tx_hash
        self._enter(history, OrderState.SUBMITTED, order_id)

        try:
            final = await self.monitor.watch(order_id)
        except (BudgetExhausted, PollCancelled, RemoteError) as e:
            return self._finish(
                history, OrderState.TIMEOUT, order=prepared, receipt=receipt, error=e,
                message=f"Payment submitted (tx {receipt.tx_hash}) but the order status is "
                        f"unknown: {e}. Check again later.",
            )

        return self._finish(history, OrderState.CONFIRMED, order=final, receipt=receipt,
                            message="Purchase confirmed")

    # ------------------------------------------------------------------
    # Single-submission guard
    # ------------------------------------------------------------------

    def _claim_submission(self, order: Order) -> str:
        digest = hashlib.sha256(order.serialized_transaction.encode()).hexdigest()
        if order.order_id in self._submitted or digest in self._payload_digests:
            raise DuplicateSubmission(order.order_id, self._submitted.get(order.order_id, ""))
        self._submitted[order.order_id] = ""
        self._payload_digests.add(digest)
        return digest

    def _already_submitted(self, order: Order, history: List[OrderState],
                           error: DuplicateSubmission) -> PurchaseOutcome:
        tx = f" (tx {error.tx_hash})" if error.tx_hash else ""
        return self._finish(
            history, OrderState.TIMEOUT, order=order, error=error,
            message=f"Payment already submitted{tx}; not signing again. "
                    "Check the order status later.",
        )

    def _release_submission(self, order_id: str, digest: str):
        self._submitted.pop(order_id, None)
        self._payload_digests.discard(digest)

    def submitted(self, order_id: str) -> bool:
        return order_id in self._submitted

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _enter(self, history: List[OrderState], state: OrderState, order_id: str):
        prev = history[-1].name if history else "-"
        history.append(state)
        print(f"[ORDERS] Order {order_id}: {prev} -> {state.name}")

    def _finish(self, history: List[OrderState], state: OrderState,
                order: Optional[Order] = None, order_id: str = "",
                receipt: Optional[PaymentReceipt] = None,
                error: Optional[BaseException] = None, message: str = "") -> PurchaseOutcome:
        order_id = order_id or (order.order_id if order else "")
        self._enter(history, state, order_id or "?")
        if isinstance(error, BuyerError) and state in FAILURE_STATES:
            print(f"[ORDERS] Order {order_id or '?'} failed: {error}")
        return PurchaseOutcome(
            state=state, order_id=order_id, order=order, receipt=receipt,
            error=error, message=message, history=list(history),
        )

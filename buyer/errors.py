"""
Error taxonomy for the purchase flow.

  ValidationError          - caller's fault, raised before any remote call
  RemoteError              - checkout service problem (HTTP status or no response)
  BusinessRuleError        - terminal business states, never retried
  BudgetExhausted          - polling budget used up ("incomplete, retry later")
  TransactionSubmissionFailed - chain rejected / never confirmed the payment tx
"""

import json


class BuyerError(Exception):
    """Base class for every error raised by the buyer package."""


class ValidationError(BuyerError):
    """Bad identifier, address, key or chain."""


# ---------------------------------------------------------------------------
# Checkout service
# ---------------------------------------------------------------------------

class RemoteError(BuyerError):
    """Checkout service call failed."""


class RemoteRequestFailed(RemoteError):
    """Service answered with a non-success status."""

    def __init__(self, status: int, body, operation: str = "request"):
        self.status = status
        self.body = body
        self.operation = operation
        if isinstance(body, (dict, list)):
            body_str = json.dumps(body)
        else:
            body_str = str(body)
        super().__init__(f"Failed to {operation}: {status} - {body_str[:500]}")


class RemoteUnreachable(RemoteError):
    """No response at all (connection refused, DNS, timeout)."""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation}: {cause!r}" if cause else f"Failed to {operation}")


# ---------------------------------------------------------------------------
# Business-rule terminal states
# ---------------------------------------------------------------------------

class BusinessRuleError(BuyerError):
    """Order cannot progress without outside intervention."""


class AddressRequired(BusinessRuleError):
    def __init__(self, message: str = "recipient.physicalAddress is required"):
        super().__init__(message)


class InsufficientFunds(BusinessRuleError):
    def __init__(self, message: str = "Insufficient funds"):
        super().__init__(message)


class PaymentPayloadMissing(BusinessRuleError):
    """No serialized transaction - item is probably not purchasable."""

    def __init__(self, order=None):
        self.order = order
        snapshot = ""
        if order is not None:
            raw = getattr(order, "raw", None) or {}
            snapshot = json.dumps(raw, indent=2, default=str)
        super().__init__(
            "No serialized transaction found for order, "
            f"this item may not be available for purchase:\n\n {snapshot}"
        )


class PaymentTerminallyFailed(BusinessRuleError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Order payment status is {status}. Cannot proceed with payment.")


# ---------------------------------------------------------------------------
# Budgets / cancellation
# ---------------------------------------------------------------------------

class BudgetExhausted(BuyerError):
    """Polling stopped without a decision - the order may still progress."""

    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)


class PreparationTimeout(BudgetExhausted):
    def __init__(self, attempts: int, reason: str = ""):
        msg = f"Payment preparation not available after {attempts} attempts"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg, attempts)


class ConfirmationTimeout(BudgetExhausted):
    def __init__(self, attempts: int, reason: str = ""):
        msg = f"Order not confirmed after {attempts} attempts"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg, attempts)


class PollCancelled(BuyerError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Polling cancelled after {attempts} attempts")


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

class TransactionSubmissionFailed(BuyerError):
    """Submission or confirmation failed. Not retried automatically."""

    def __init__(self, message: str, cause: Exception = None, tx_hash: str = ""):
        self.cause = cause
        self.tx_hash = tx_hash
        super().__init__(message)


class DuplicateSubmission(BuyerError):
    """A payment for this order was already submitted in this run."""

    def __init__(self, order_id: str, tx_hash: str = ""):
        self.order_id = order_id
        self.tx_hash = tx_hash
        super().__init__(
            f"Order {order_id}: payment already submitted"
            + (f" (tx {tx_hash})" if tx_hash else "")
            + " - refusing to sign again"
        )

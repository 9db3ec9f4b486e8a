"""
Payment signer: signs the checkout service's prepared transaction and
submits it to the chain named by the order's payment method.

Order of checks (all before any RPC call):
  1. payer has insufficient funds      -> InsufficientFunds
  2. quote still needs a ship address  -> AddressRequired
  3. no serializedTransaction          -> PaymentPayloadMissing

payment.status is otherwise not required to read "awaiting-payment": the
service does not always flip it when the preparation is ready, so the
presence of a serialized transaction is what gates signing.

One AsyncWeb3 per pay() call: acquire, submit, await receipt, release.
Failures after submission are NOT retried here. Re-sending a half-sent
transaction risks a double spend; the caller decides.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from eth_account import Account
from eth_utils import ValidationError as KeyFormatError
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.exceptions import TransactionNotFound

from buyer.chains.registry import CHAIN_REGISTRY, Chain, ChainRegistry
from buyer.config import TX_RECEIPT_TIMEOUT
from buyer.errors import (
    AddressRequired,
    InsufficientFunds,
    PaymentPayloadMissing,
    TransactionSubmissionFailed,
    ValidationError,
)
from buyer.orders.models import PAYMENT_INSUFFICIENT_FUNDS, Order
from buyer.wallets.tx_codec import TYPE_DYNAMIC_FEE, decode_unsigned_transaction

TX_RECEIPT_POLL = 1.0           # poll interval for receipt (seconds)
DEFAULT_PRIORITY_FEE = 1_500_000_000  # 1.5 gwei tip when the payload carries none
GAS_LIMIT_BUFFER_PCT = 20       # headroom over eth_estimateGas


@dataclass
class PaymentReceipt:
    """Confirmed on-chain payment."""
    tx_hash: str
    block_number: int
    status: int
    gas_used: int
    chain: str
    payer: str

    def to_dict(self) -> dict:
        return {
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "status": self.status,
            "gas_used": self.gas_used,
            "chain": self.chain,
            "payer": self.payer,
        }


def _account(private_key: str):
    try:
        return Account.from_key(private_key)
    except (ValueError, TypeError, KeyFormatError) as e:
        raise ValidationError(f"invalid signing key: {type(e).__name__}")


def wallet_address_from_key(private_key: str) -> str:
    """Checksummed payer address for a raw private key."""
    return _account(private_key).address


def default_provider_factory(rpc_url: str) -> AsyncWeb3:
    return AsyncWeb3(AsyncHTTPProvider(rpc_url))


def check_payable(order: Order) -> str:
    """Raise the first failing precondition, else return the serialized tx."""
    if order.payment.status == PAYMENT_INSUFFICIENT_FUNDS:
        raise InsufficientFunds()
    if order.requires_address:
        raise AddressRequired()
    serialized = order.serialized_transaction
    if not serialized:
        raise PaymentPayloadMissing(order)
    return serialized


class PaymentSigner:
    """Signs and submits prepared payment transactions."""

    def __init__(self, registry: ChainRegistry = CHAIN_REGISTRY,
                 provider_factory: Callable[[str], AsyncWeb3] = default_provider_factory,
                 receipt_timeout: float = TX_RECEIPT_TIMEOUT,
                 receipt_poll: float = TX_RECEIPT_POLL):
        self.registry = registry
        self.provider_factory = provider_factory
        self.receipt_timeout = receipt_timeout
        self.receipt_poll = receipt_poll

        # Metrics
        self._tx_count = 0
        self._tx_failures = 0

    async def pay(self, order: Order, private_key: str) -> PaymentReceipt:
        """Sign + submit the order's prepared transaction, wait for the receipt."""
        serialized = check_payable(order)

        print(f"[SIGNER] Payment status: {order.payment.status}")
        print(f"[SIGNER] Payment method: {order.payment.method}")

        chain = self.registry.resolve(order.payment.method)
        account = _account(private_key)
        try:
            tx = decode_unsigned_transaction(serialized)
        except ValidationError as e:
            raise TransactionSubmissionFailed(
                f"Order {order.order_id}: could not decode payment transaction: {e}", cause=e,
            )

        w3 = self.provider_factory(chain.rpc_url)
        try:
            return await self._submit(w3, chain, account, tx, order.order_id)
        finally:
            disconnect = getattr(w3.provider, "disconnect", None)
            if disconnect is not None:
                try:
                    await disconnect()
                except Exception as e:
                    print(f"[SIGNER] Provider disconnect failed (non-fatal): {e}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _submit(self, w3, chain: Chain, account, tx: dict, order_id: str) -> PaymentReceipt:
        try:
            tx = await self._complete_transaction(w3, chain, account.address, tx)
            signed = account.sign_transaction(tx)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        except TransactionSubmissionFailed:
            self._tx_failures += 1
            raise
        except Exception as e:
            self._tx_failures += 1
            print(f"[SIGNER] Error sending transaction: {e}")
            raise TransactionSubmissionFailed(
                f"Order {order_id}: transaction submission failed on {chain.name}: {e}", cause=e,
            )

        self._tx_count += 1
        tx_hex = Web3.to_hex(tx_hash)
        print(f"[SIGNER] Transaction sent! Hash: {tx_hex}")

        try:
            receipt = await self._wait_for_receipt(w3, tx_hash)
        except Exception as e:
            self._tx_failures += 1
            raise TransactionSubmissionFailed(
                f"Order {order_id}: transaction {tx_hex} not confirmed: {e}",
                cause=e, tx_hash=tx_hex,
            )

        if receipt["status"] != 1:
            self._tx_failures += 1
            raise TransactionSubmissionFailed(
                f"Order {order_id}: transaction {tx_hex} reverted in block "
                f"{receipt['blockNumber']}", tx_hash=tx_hex,
            )

        print(f"[SIGNER] Transaction confirmed in block: {receipt['blockNumber']}")
        return PaymentReceipt(
            tx_hash=tx_hex,
            block_number=receipt["blockNumber"],
            status=receipt["status"],
            gas_used=receipt.get("gasUsed", 0),
            chain=chain.name,
            payer=account.address,
        )

    async def _complete_transaction(self, w3, chain: Chain, sender: str, tx: dict) -> dict:
        """Fill the fields a prepared payload may leave empty."""
        tx = dict(tx)
        payload_chain = tx.get("chainId")
        if payload_chain and payload_chain != chain.chain_id:
            raise TransactionSubmissionFailed(
                f"payload targets chain id {payload_chain} but payment method "
                f"resolves to {chain.name} ({chain.chain_id})"
            )
        tx["chainId"] = chain.chain_id

        if not tx.get("nonce"):
            # 0 is also what an unset nonce decodes to; pending count is right either way
            tx["nonce"] = await w3.eth.get_transaction_count(sender, "pending")

        if tx.get("type") == TYPE_DYNAMIC_FEE:
            if not tx.get("maxFeePerGas"):
                latest = await w3.eth.get_block("latest")
                base_fee = latest.get("baseFeePerGas", 0) or 0
                prio = tx.get("maxPriorityFeePerGas") or DEFAULT_PRIORITY_FEE
                tx["maxPriorityFeePerGas"] = prio
                tx["maxFeePerGas"] = base_fee * 2 + prio
        elif not tx.get("gasPrice"):
            tx["gasPrice"] = await w3.eth.gas_price

        if not tx.get("gas"):
            call = {"from": sender, "value": tx["value"], "data": tx["data"]}
            if "to" in tx:
                call["to"] = tx["to"]
            estimate = await w3.eth.estimate_gas(call)
            tx["gas"] = int(estimate * (100 + GAS_LIMIT_BUFFER_PCT) / 100)
        return tx

    async def _wait_for_receipt(self, w3, tx_hash) -> dict:
        """Poll for the receipt until mined or receipt_timeout."""
        start = time.monotonic()
        while True:
            try:
                receipt = await w3.eth.get_transaction_receipt(tx_hash)
                if receipt is not None:
                    return receipt
            except TransactionNotFound:
                pass  # not mined yet

            if time.monotonic() - start > self.receipt_timeout:
                raise TimeoutError(
                    f"Tx {Web3.to_hex(tx_hash)} not mined after {self.receipt_timeout}s"
                )
            await asyncio.sleep(self.receipt_poll)

    def metrics(self) -> dict:
        return {
            "tx_count": self._tx_count,
            "tx_failures": self._tx_failures,
        }

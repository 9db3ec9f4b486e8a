"""
Crypto Physical Buyer: entry point.
Buys a physical product through the Crossmint checkout API and pays for it
with an on-chain stablecoin transfer.

Usage:
    python3 main.py buy --id B01DFKC2SO [--chain base-sepolia] [--address-* ...]
    python3 main.py buy --url https://www.amazon.com/dp/B01DFKC2SO
    python3 main.py status --order-id <id>
    python3 main.py resume --order-id <id> [--private-key 0x...]
    python3 main.py --smoke      # Smoke test only (connect to every chain RPC + exit)

Exit codes: 0 confirmed / manual completion, 2 needs follow-up, 1 failure.
"""

import argparse
import asyncio
import re
import sys

from web3 import AsyncWeb3, AsyncHTTPProvider

from buyer.chains.registry import CHAIN_REGISTRY, SUPPORTED_CHAINS, default_payment_method
from buyer.config import (
    DEFAULT_CURRENCY,
    DEFAULT_EMAIL,
    MONITOR_DELAY_MS,
    MONITOR_MAX_ATTEMPTS,
    PREPARATION_DELAY_MS,
    PREPARATION_MAX_ATTEMPTS,
    PRIVATE_KEY,
    print_config_summary,
    require_api_key,
)
from buyer.errors import BuyerError, RemoteError, ValidationError
from buyer.gateway.client import OrderGateway
from buyer.orders.models import ShippingAddress
from buyer.orders.poller import PreparationPoller, StatusMonitor
from buyer.orders.state_machine import (
    OrderLifecycle,
    OrderState,
    PurchaseOutcome,
    PurchaseRequest,
)
from buyer.report import format_order_summary, format_outcome
from buyer.sources.registry import resolve_line_item, source_registry
from buyer.wallets.signer import PaymentSigner

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FOLLOW_UP = 2

SUPPORTED_COUNTRIES = ("US",)
_EMAIL = re.compile(r"\S+@\S+\.\S+")

_ADDRESS_FLAGS = (
    ("name", "address_name"),
    ("line1", "address_line1"),
    ("city", "address_city"),
    ("state", "address_state"),
    ("postal_code", "address_postal_code"),
    ("country", "address_country"),
)


async def smoke_test():
    """Smoke test: connect to every chain RPC, print status, exit."""
    print("=" * 50)
    print("  Crypto Physical Buyer: Smoke Test")
    print("=" * 50)
    print()
    print_config_summary()
    print()

    failures = 0
    for chain in CHAIN_REGISTRY.all():
        print(f"[RPC] Connecting to {chain.name} ({chain.rpc_url})...")
        w3 = AsyncWeb3(AsyncHTTPProvider(chain.rpc_url))
        try:
            chain_id = await w3.eth.chain_id
            block = await w3.eth.block_number
            if chain_id != chain.chain_id:
                failures += 1
                print(f"[RPC] ⚠️  {chain.name}: expected chain_id {chain.chain_id}, "
                      f"got {chain_id}", file=sys.stderr)
            else:
                print(f"[RPC] ✅ {chain.name} chain_id={chain_id} block_number={block}")
        except Exception as e:
            failures += 1
            print(f"[RPC] ❌ {chain.name}: failed to connect: {e}", file=sys.stderr)
        finally:
            disconnect = getattr(w3.provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()

    print()
    if failures:
        print(f"Smoke test: {failures} chain(s) unreachable", file=sys.stderr)
        sys.exit(1)
    print("Smoke test passed ✅")


# ----------------------------------------------------------------------
# Input helpers
# ----------------------------------------------------------------------

def _interactive(args) -> bool:
    return not args.no_prompt and sys.stdin.isatty()


def _ask(label: str, required: bool = True, default: str = "", allowed=None) -> str:
    while True:
        suffix = f" [{default}]" if default else ""
        value = input(f"{label}{suffix}: ").strip() or default
        if required and not value:
            print(f"  {label} is required")
            continue
        if allowed and value not in allowed:
            print(f"  Currently only {', '.join(allowed)} is supported")
            continue
        return value


def address_from_args(args):
    """ShippingAddress from --address-* flags; all-or-nothing."""
    given = {field: (getattr(args, flag) or "").strip() for field, flag in _ADDRESS_FLAGS}
    if not any(given.values()):
        return None
    if not all(given.values()):
        raise ValidationError("Shipping address is incomplete. Please provide all required fields.")
    return ShippingAddress(line2=(args.address_line2 or "").strip(), **given).validate()


def prompt_address():
    answer = input("Would you like to provide a shipping address now? [Y/n]: ").strip().lower()
    if answer not in ("", "y", "yes"):
        return None
    return ShippingAddress(
        name=_ask("Full name"),
        line1=_ask("Address line 1"),
        line2=_ask("Address line 2 (optional)", required=False),
        city=_ask("City"),
        state=_ask("State (for US addresses)"),
        postal_code=_ask("Postal code"),
        country=_ask("Country (currently only US is supported)", default="US",
                     allowed=SUPPORTED_COUNTRIES),
    ).validate()


def prompt_email() -> str:
    while True:
        email = input("Email address for order confirmation: ").strip()
        if _EMAIL.search(email):
            return email
        print("  Please enter a valid email address")


def exit_code(outcome: PurchaseOutcome) -> int:
    if outcome.confirmed or outcome.state == OrderState.MANUAL_COMPLETION:
        return EXIT_OK
    if outcome.needs_follow_up:
        return EXIT_FOLLOW_UP
    return EXIT_FAILED


def _lifecycle(gateway: OrderGateway, args) -> OrderLifecycle:
    return OrderLifecycle(
        gateway,
        PaymentSigner(),
        PreparationPoller(gateway, max_attempts=args.max_attempts, delay_ms=args.delay_ms),
        StatusMonitor(gateway, max_attempts=args.monitor_attempts,
                      delay_ms=args.monitor_delay_ms),
    )


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

async def run_buy(api_key: str, request: PurchaseRequest, args) -> PurchaseOutcome:
    async with OrderGateway(api_key) as gateway:
        return await _lifecycle(gateway, args).run(request)


async def run_resume(api_key: str, order_id: str, private_key: str, args) -> PurchaseOutcome:
    async with OrderGateway(api_key) as gateway:
        return await _lifecycle(gateway, args).resume(order_id, private_key or None)


async def run_status(api_key: str, order_id: str):
    async with OrderGateway(api_key) as gateway:
        return await gateway.get_status(order_id)


def cmd_buy(args) -> int:
    api_key = require_api_key(args.api_key)
    try:
        if args.url:
            line_item = resolve_line_item(args.source, args.url, True)
        else:
            line_item = resolve_line_item(args.source, args.id, False)

        address = address_from_args(args)
        if address is None and _interactive(args):
            address = prompt_address()

        email = args.email
        if not email and _interactive(args):
            email = prompt_email()
        email = email or DEFAULT_EMAIL

        request = PurchaseRequest(
            line_item=line_item,
            payment_method=default_payment_method(api_key, args.chain),
            currency=args.currency,
            private_key=args.private_key or PRIVATE_KEY or None,
            email=email,
            shipping_address=address,
        )
        request.validate()
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    print(f"[MAIN] Buying {line_item} on {request.payment_method} ({request.currency})")
    try:
        outcome = asyncio.run(run_buy(api_key, request, args))
    except BuyerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    print()
    print(format_outcome(outcome, address, email))
    return exit_code(outcome)


def cmd_status(args) -> int:
    api_key = require_api_key(args.api_key)
    try:
        order = asyncio.run(run_status(api_key, args.order_id))
    except RemoteError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    print()
    print(format_order_summary(order))
    return EXIT_OK


def cmd_resume(args) -> int:
    api_key = require_api_key(args.api_key)
    try:
        outcome = asyncio.run(run_resume(
            api_key, args.order_id, args.private_key or PRIVATE_KEY, args))
    except BuyerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    print()
    print(format_outcome(outcome))
    return exit_code(outcome)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Buy physical products using cryptocurrency via Crossmint")
    parser.add_argument("--smoke", action="store_true",
                        help="Smoke test only (connect to chain RPCs + exit)")
    sub = parser.add_subparsers(dest="command")

    def polling_flags(p):
        p.add_argument("--max-attempts", type=int, default=PREPARATION_MAX_ATTEMPTS,
                       help="Payment preparation poll attempts")
        p.add_argument("--delay-ms", type=int, default=PREPARATION_DELAY_MS,
                       help="Delay between preparation polls (ms)")
        p.add_argument("--monitor-attempts", type=int, default=MONITOR_MAX_ATTEMPTS,
                       help="Post-payment status poll attempts")
        p.add_argument("--monitor-delay-ms", type=int, default=MONITOR_DELAY_MS,
                       help="Delay between status polls (ms)")

    buy = sub.add_parser("buy", help="Buy a physical product using cryptocurrency")
    buy.add_argument("-s", "--source", default="amazon", choices=source_registry.names(),
                     help="Product source")
    ident = buy.add_mutually_exclusive_group(required=True)
    ident.add_argument("-u", "--url", help="Product URL")
    ident.add_argument("-i", "--id", help="Product ID (e.g. ASIN for Amazon)")
    buy.add_argument("-k", "--api-key", default="", help="Crossmint API key")
    buy.add_argument("-e", "--email", default="", help="Buyer email address")
    buy.add_argument("-p", "--private-key", default="",
                     help="Private key for transaction signing")
    buy.add_argument("-c", "--chain", choices=SUPPORTED_CHAINS,
                     help="Blockchain network for the payment")
    buy.add_argument("--currency", default=DEFAULT_CURRENCY, help="Payment currency")
    buy.add_argument("--address-name", help="Shipping address name")
    buy.add_argument("--address-line1", help="Shipping address line 1")
    buy.add_argument("--address-line2", help="Shipping address line 2")
    buy.add_argument("--address-city", help="Shipping address city")
    buy.add_argument("--address-state", help="Shipping address state")
    buy.add_argument("--address-postal-code", help="Shipping address postal code")
    buy.add_argument("--address-country", help="Shipping address country")
    buy.add_argument("--no-prompt", action="store_true",
                     help="Never prompt for missing address/email")
    polling_flags(buy)
    buy.set_defaults(func=cmd_buy)

    status = sub.add_parser("status", help="Check the status of an existing order")
    status.add_argument("-i", "--order-id", required=True, help="Order ID")
    status.add_argument("-k", "--api-key", default="", help="Crossmint API key")
    status.set_defaults(func=cmd_status)

    resume = sub.add_parser("resume", help="Resume payment for an existing order")
    resume.add_argument("-i", "--order-id", required=True, help="Order ID")
    resume.add_argument("-k", "--api-key", default="", help="Crossmint API key")
    resume.add_argument("-p", "--private-key", default="",
                        help="Private key for transaction signing")
    polling_flags(resume)
    resume.set_defaults(func=cmd_resume)
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    try:
        if args.smoke:
            asyncio.run(smoke_test())
            return
        if not getattr(args, "func", None):
            parser.print_help()
            sys.exit(EXIT_FAILED)
        sys.exit(args.func(args))
    except KeyboardInterrupt:
        print("\n[MAIN] Interrupted.")
        sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    main()

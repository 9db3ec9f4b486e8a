"""
Buyer configuration: loads env vars, validates what is present, fails fast
only where the caller actually needs a value (see require_api_key()).

Hardened with:
  - Private key format validation (length, hex)
  - URL validation for RPC overrides
  - Range validation for polling params
  - Startup warnings for dangerous configs
"""

import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env from project root
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)

_WARNINGS: list = []  # collected during load, printed at summary


def _optional(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _validate_private_key(key: str, label: str) -> str:
    """Validate a private key: 64 hex chars (with or without 0x prefix)."""
    raw = key[2:] if key.startswith("0x") else key
    if len(raw) != 64:
        raise ValueError(f"{label} must be 64 hex chars (got {len(raw)})")
    try:
        int(raw, 16)
    except ValueError:
        raise ValueError(f"{label} contains invalid hex")
    return key


def _validate_url(url: str, label: str) -> str:
    """Validate a URL starts with http:// or https://."""
    if not url.startswith(("http://", "https://")):
        print(f"FATAL: {label} must start with http:// or https://: {url}", file=sys.stderr)
        sys.exit(1)
    return url


def _int_range(name: str, raw: str, low: int, high: int) -> int:
    """Parse an int and clamp to [low, high] with a warning."""
    try:
        val = int(raw)
    except ValueError:
        print(f"FATAL: {name} must be an integer, got: {raw}", file=sys.stderr)
        sys.exit(1)
    if val < low or val > high:
        clamped = max(low, min(val, high))
        _WARNINGS.append(f"{name}={val} out of range [{low},{high}], clamped to {clamped}")
        return clamped
    return val


def mask_secret(value: str) -> str:
    """Show only first/last chars of a key."""
    if not value:
        return "(not set)"
    if len(value) <= 12:
        return "***"
    return value[:6] + "..." + value[-4:]


# === Checkout service (Crossmint) ===
CROSSMINT_API_KEY: str = _optional("CROSSMINT_API_KEY")
CROSSMINT_ENV: str = _optional("CROSSMINT_ENV").lower()
if CROSSMINT_ENV and CROSSMINT_ENV not in ("production", "staging"):
    _WARNINGS.append(f"Unknown CROSSMINT_ENV '{CROSSMINT_ENV}', using API key prefix instead")
    CROSSMINT_ENV = ""

PRODUCTION_KEY_PREFIX = "sk_production_"
PRODUCTION_API_BASE = "https://www.crossmint.com/api/2022-06-09"
STAGING_API_BASE = "https://staging.crossmint.com/api/2022-06-09"

DEFAULT_EMAIL: str = _optional("BUYER_EMAIL", "devin-ai@example.com")
DEFAULT_CURRENCY = "usdc"

# === Signing key (optional, without it the flow stops at manual completion) ===
PRIVATE_KEY: str = _optional("PRIVATE_KEY")
if PRIVATE_KEY:
    try:
        _validate_private_key(PRIVATE_KEY, "PRIVATE_KEY")
    except ValueError as e:
        _WARNINGS.append(f"{e} - ignoring PRIVATE_KEY")
        PRIVATE_KEY = ""

# === Per-chain RPC overrides (empty = built-in public endpoint) ===
RPC_URL_OVERRIDES: dict = {}
for _chain, _var in (
    ("polygon", "POLYGON_RPC_URL"),
    ("polygon-amoy", "POLYGON_AMOY_RPC_URL"),
    ("base", "BASE_RPC_URL"),
    ("base-sepolia", "BASE_SEPOLIA_RPC_URL"),
):
    _url = _optional(_var)
    if _url:
        RPC_URL_OVERRIDES[_chain] = _validate_url(_url, _var)

# === Polling (with range validation) ===
PREPARATION_MAX_ATTEMPTS: int = _int_range(
    "PREPARATION_MAX_ATTEMPTS", _optional("PREPARATION_MAX_ATTEMPTS", "15"), 1, 500)
PREPARATION_DELAY_MS: int = _int_range(
    "PREPARATION_DELAY_MS", _optional("PREPARATION_DELAY_MS", "2000"), 0, 600_000)
MONITOR_MAX_ATTEMPTS: int = _int_range(
    "MONITOR_MAX_ATTEMPTS", _optional("MONITOR_MAX_ATTEMPTS", "10"), 1, 500)
MONITOR_DELAY_MS: int = _int_range(
    "MONITOR_DELAY_MS", _optional("MONITOR_DELAY_MS", "5000"), 0, 600_000)
POLL_DEADLINE_SEC: int = _int_range(
    "POLL_DEADLINE_SEC", _optional("POLL_DEADLINE_SEC", "0"), 0, 86_400)

# === Timeouts ===
HTTP_TIMEOUT_SEC: int = _int_range("HTTP_TIMEOUT_SEC", _optional("HTTP_TIMEOUT_SEC", "30"), 1, 300)
TX_RECEIPT_TIMEOUT: int = _int_range("TX_RECEIPT_TIMEOUT", _optional("TX_RECEIPT_TIMEOUT", "120"), 10, 3600)

if PREPARATION_DELAY_MS == 0 or MONITOR_DELAY_MS == 0:
    _WARNINGS.append("Zero polling delay - the checkout service may rate-limit this client")


def is_production_key(api_key: str) -> bool:
    return bool(api_key) and api_key.startswith(PRODUCTION_KEY_PREFIX)


def is_production(api_key: str, env: Optional[str] = None) -> bool:
    """Production vs staging. Explicit env wins over key-prefix classification."""
    env = CROSSMINT_ENV if env is None else env
    if env == "production":
        return True
    if env == "staging":
        return False
    return is_production_key(api_key)


def api_base_url(api_key: str, env: Optional[str] = None) -> str:
    return PRODUCTION_API_BASE if is_production(api_key, env) else STAGING_API_BASE


def require_api_key(explicit: str = "") -> str:
    """API key from the CLI flag or CROSSMINT_API_KEY, or exit with a clear error."""
    key = (explicit or CROSSMINT_API_KEY).strip()
    if not key:
        print("FATAL: API key must be provided via --api-key or the CROSSMINT_API_KEY "
              "environment variable", file=sys.stderr)
        print("  Copy .env.example to .env and fill in the values.", file=sys.stderr)
        sys.exit(1)
    return key


def print_config_summary(api_key: str = "") -> None:
    """Print a non-sensitive config summary for startup verification."""
    api_key = api_key or CROSSMINT_API_KEY
    print("--- Buyer Config ---")
    print(f"  API key:        {mask_secret(api_key)}")
    print(f"  Environment:    {'production' if is_production(api_key) else 'staging'}")
    print(f"  API base:       {api_base_url(api_key)}")
    print(f"  Signing key:    {mask_secret(PRIVATE_KEY)}")
    print(f"  Email:          {DEFAULT_EMAIL}")
    print(f"  Preparation:    {PREPARATION_MAX_ATTEMPTS} x {PREPARATION_DELAY_MS}ms")
    print(f"  Monitor:        {MONITOR_MAX_ATTEMPTS} x {MONITOR_DELAY_MS}ms")
    print(f"  Poll deadline:  {POLL_DEADLINE_SEC or 'none'}")
    print(f"  RPC overrides:  {', '.join(sorted(RPC_URL_OVERRIDES)) or 'none'}")
    if _WARNINGS:
        print(f"  ⚠️  {len(_WARNINGS)} config warning(s):")
        for w in _WARNINGS:
            print(f"    - {w}")
    print("-" * 20)

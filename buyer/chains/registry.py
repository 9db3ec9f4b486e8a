"""
Chain registry: payment method (chain identifier) -> RPC endpoint + network class.
Read-only after import; safe to share between concurrent purchase flows.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from buyer.config import RPC_URL_OVERRIDES, is_production

POLYGON = "polygon"
POLYGON_AMOY = "polygon-amoy"
BASE = "base"
BASE_SEPOLIA = "base-sepolia"

SUPPORTED_CHAINS: Tuple[str, ...] = (POLYGON, POLYGON_AMOY, BASE, BASE_SEPOLIA)

# Unknown payment methods settle on the polygon testnet. Safe default:
# a misrouted payload can only ever hit a test network.
DEFAULT_CHAIN = POLYGON_AMOY


@dataclass(frozen=True)
class Chain:
    """One settlement network."""
    name: str
    chain_id: int
    rpc_url: str
    mainnet: bool
    native_symbol: str = "ETH"

    @property
    def network(self) -> str:
        return "mainnet" if self.mainnet else "testnet"

    def __repr__(self) -> str:
        return f"Chain({self.name}:{self.chain_id} {self.network})"


_BUILTIN = (
    Chain(POLYGON, 137, "https://polygon-rpc.com/", True, "POL"),
    Chain(POLYGON_AMOY, 80002, "https://rpc-amoy.polygon.technology/", False, "POL"),
    Chain(BASE, 8453, "https://mainnet.base.org", True),
    Chain(BASE_SEPOLIA, 84532, "https://sepolia.base.org", False),
)


class ChainRegistry:
    """Fixed table of supported chains with env-level RPC overrides."""

    def __init__(self, overrides: Optional[Dict[str, str]] = None):
        overrides = overrides or {}
        self._chains: Dict[str, Chain] = {}
        for c in _BUILTIN:
            url = overrides.get(c.name)
            if url:
                c = Chain(c.name, c.chain_id, url, c.mainnet, c.native_symbol)
            self._chains[c.name] = c

    def get(self, name: str) -> Optional[Chain]:
        return self._chains.get((name or "").strip().lower())

    def is_supported(self, name: str) -> bool:
        return self.get(name) is not None

    def resolve(self, method: str) -> Chain:
        """Chain for a payment method. Unknown methods fall back to DEFAULT_CHAIN."""
        chain = self.get(method)
        if chain is None:
            print(f"[CHAINS] Unknown payment method '{method}' - "
                  f"defaulting to {DEFAULT_CHAIN} (testnet)")
            return self._chains[DEFAULT_CHAIN]
        return chain

    def rpc_url(self, method: str) -> str:
        return self.resolve(method).rpc_url

    def names(self) -> Tuple[str, ...]:
        return tuple(self._chains)

    def all(self):
        return list(self._chains.values())


CHAIN_REGISTRY = ChainRegistry(RPC_URL_OVERRIDES)


def default_payment_method(api_key: str, chain: Optional[str] = None) -> str:
    """Explicit chain wins; otherwise polygon for production keys, amoy for staging."""
    if chain:
        return chain
    return POLYGON if is_production(api_key) else POLYGON_AMOY

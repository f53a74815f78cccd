"""Supported EVM chains and address validation.

Each chain is identified by a short alias (``eth``, ``base``...) which is
also the value carried in deep links and watch entries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum

from octaneshift_monitor.errors import EntryValidationError

EVM_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


class Chain(StrEnum):
    """Chain aliases accepted by the monitor."""

    ETH = "eth"
    BASE = "base"
    ARB = "arb"
    OP = "op"
    POL = "pol"
    AVAX = "avax"


@dataclass(frozen=True)
class NativeCurrency:
    """Native gas currency of a chain."""

    name: str
    symbol: str
    decimals: int = 18


@dataclass(frozen=True)
class ChainConfig:
    """Static metadata for a supported chain."""

    alias: Chain
    name: str
    chain_id: int
    native_currency: NativeCurrency
    rpc_url: str
    explorer_url: str

    def address_url(self, address: str) -> str:
        """Return the block explorer URL for an address."""
        return f"{self.explorer_url}/address/{address}"


_ETHER = NativeCurrency(name="Ether", symbol="ETH")

NETWORK_MAP: dict[Chain, ChainConfig] = {
    Chain.ETH: ChainConfig(
        alias=Chain.ETH,
        name="Ethereum",
        chain_id=1,
        native_currency=_ETHER,
        rpc_url="https://eth.llamarpc.com",
        explorer_url="https://etherscan.io",
    ),
    Chain.BASE: ChainConfig(
        alias=Chain.BASE,
        name="Base",
        chain_id=8453,
        native_currency=_ETHER,
        rpc_url="https://mainnet.base.org",
        explorer_url="https://basescan.org",
    ),
    Chain.ARB: ChainConfig(
        alias=Chain.ARB,
        name="Arbitrum One",
        chain_id=42161,
        native_currency=_ETHER,
        rpc_url="https://arb1.arbitrum.io/rpc",
        explorer_url="https://arbiscan.io",
    ),
    Chain.OP: ChainConfig(
        alias=Chain.OP,
        name="Optimism",
        chain_id=10,
        native_currency=_ETHER,
        rpc_url="https://mainnet.optimism.io",
        explorer_url="https://optimistic.etherscan.io",
    ),
    Chain.POL: ChainConfig(
        alias=Chain.POL,
        name="Polygon",
        chain_id=137,
        native_currency=NativeCurrency(name="POL", symbol="POL"),
        rpc_url="https://polygon-rpc.com",
        explorer_url="https://polygonscan.com",
    ),
    Chain.AVAX: ChainConfig(
        alias=Chain.AVAX,
        name="Avalanche C-Chain",
        chain_id=43114,
        native_currency=NativeCurrency(name="Avalanche", symbol="AVAX"),
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        explorer_url="https://snowtrace.io",
    ),
}


def parse_chain(value: str | Chain) -> Chain:
    """Resolve a chain alias, raising EntryValidationError if unsupported."""
    if isinstance(value, Chain):
        return value
    try:
        return Chain(str(value).strip().lower())
    except ValueError:
        raise EntryValidationError(f"Unsupported chain: {value!r}") from None


def get_chain_config(chain: str | Chain) -> ChainConfig:
    """Get static configuration for a chain."""
    return NETWORK_MAP[parse_chain(chain)]


def supported_chains() -> list[Chain]:
    """Return all supported chain aliases."""
    return list(NETWORK_MAP)


def is_valid_evm_address(address: str) -> bool:
    """Check for 0x followed by 40 hex characters."""
    return bool(EVM_ADDRESS_PATTERN.match(address.strip()))


def validate_address(address: str, chain: str | Chain) -> str:
    """Validate an address for a chain and return it stripped.

    All supported chains are EVM chains, so the same format applies.

    Raises:
        EntryValidationError: If the address is empty or malformed.
    """
    parse_chain(chain)
    if not address or not address.strip():
        raise EntryValidationError("Address cannot be empty")
    cleaned = address.strip()
    if not is_valid_evm_address(cleaned):
        raise EntryValidationError(
            "Invalid EVM address format, expected 0x followed by 40 hex characters"
        )
    return cleaned


def format_balance(balance: int | Decimal, decimals: int = 18) -> Decimal:
    """Convert a balance in smallest units (wei) to native units."""
    return Decimal(balance) / (Decimal(10) ** decimals)

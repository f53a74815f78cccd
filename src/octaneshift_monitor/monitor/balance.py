"""Native balance reads over EVM JSON-RPC.

This module provides the chain balance reader for the watchlist with:
- One web3 provider per chain, with optional failover RPC
- Retry logic with exponential backoff
- Token bucket rate limiting
- A hard per-read timeout; a timeout is transient, never a zero balance
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

from octaneshift_monitor.chains import Chain, format_balance, get_chain_config, parse_chain
from octaneshift_monitor.errors import BalanceNotFoundError, TransientBalanceError
from octaneshift_monitor.redaction import mask_address

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_READ_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY_SECONDS = 0.5

RPC_ERRORS = (Web3Exception, aiohttp.ClientError, OSError, ValueError)


class BalanceSource(Protocol):
    """Protocol for anything the scheduler can read balances from."""

    async def read_balance(self, address: str, chain: str) -> Decimal:
        """Return the native balance of an address in native units."""
        ...


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class ChainBalanceReader:
    """Reads native balances for watched wallets on supported chains.

    Example:
        ```python
        reader = ChainBalanceReader(
            {"base": "https://mainnet.base.org"},
            timeout=10.0,
        )
        balance = await reader.read_balance("0x...", "base")
        ```
    """

    def __init__(
        self,
        rpc_urls: Mapping[str, str] | None = None,
        *,
        fallback_rpc_urls: Mapping[str, str] | None = None,
        use_public_defaults: bool = True,
        timeout: float = DEFAULT_READ_TIMEOUT_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize the reader.

        Args:
            rpc_urls: Chain alias to RPC URL overrides.
            fallback_rpc_urls: Chain alias to fallback RPC URL.
            use_public_defaults: Use public RPC endpoints for chains without
                an override.
            timeout: Upper bound for one ``read_balance`` call, retries included.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Attempts per endpoint.
            retry_delay_seconds: Initial delay between retries.
        """
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        urls: dict[Chain, str] = {}
        if use_public_defaults:
            urls = {chain: get_chain_config(chain).rpc_url for chain in Chain}
        for alias, url in (rpc_urls or {}).items():
            urls[parse_chain(alias)] = url
        if not rpc_urls and use_public_defaults:
            logger.warning("No custom RPC URLs configured, using public RPC endpoints")

        self._providers: dict[Chain, AsyncWeb3[Any]] = {
            chain: self._make_web3(url) for chain, url in urls.items()
        }
        self._fallbacks: dict[Chain, AsyncWeb3[Any]] = {
            parse_chain(alias): self._make_web3(url)
            for alias, url in (fallback_rpc_urls or {}).items()
        }

    def _make_web3(self, url: str) -> AsyncWeb3[Any]:
        return AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={"timeout": self._timeout}))

    @property
    def chains(self) -> list[Chain]:
        """Return chains with a configured balance source."""
        return list(self._providers)

    @property
    def timeout(self) -> float:
        """Per-read timeout in seconds."""
        return self._timeout

    async def _get_balance_wei(self, w3: AsyncWeb3[Any], address: str) -> int:
        await self._rate_limiter.acquire()
        balance = await w3.eth.get_balance(AsyncWeb3.to_checksum_address(address))
        return int(balance)

    async def _read_with_retry(self, chain: Chain, address: str) -> int:
        last_error: Exception | None = None
        endpoints = [("primary", self._providers[chain])]
        if chain in self._fallbacks:
            endpoints.append(("fallback", self._fallbacks[chain]))

        for name, w3 in endpoints:
            delay = self._retry_delay
            for attempt in range(self._max_retries):
                try:
                    return await self._get_balance_wei(w3, address)
                except RPC_ERRORS as e:
                    last_error = e
                    logger.warning(
                        "%s RPC for %s failed (attempt %d/%d): %s",
                        name.capitalize(),
                        chain,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2  # Exponential backoff

        raise TransientBalanceError(f"Balance read on {chain} failed: {last_error}")

    async def read_balance(self, address: str, chain: str) -> Decimal:
        """Read the native balance of an address.

        Args:
            address: Wallet address.
            chain: Chain alias.

        Returns:
            Balance in native units (e.g. ETH, not wei).

        Raises:
            BalanceNotFoundError: If no RPC is configured for the chain.
            TransientBalanceError: On RPC failure or timeout.
        """
        chain_alias = parse_chain(chain)
        if chain_alias not in self._providers:
            raise BalanceNotFoundError(f"No balance source configured for chain {chain_alias}")

        try:
            wei = await asyncio.wait_for(
                self._read_with_retry(chain_alias, address),
                timeout=self._timeout,
            )
        except TimeoutError:
            raise TransientBalanceError(
                f"Balance read on {chain_alias} timed out after {self._timeout}s"
            ) from None

        decimals = get_chain_config(chain_alias).native_currency.decimals
        balance = format_balance(wei, decimals)
        logger.debug(
            "Fetched native balance for %s on %s: %s",
            mask_address(address),
            chain_alias,
            balance,
        )
        return balance

    async def health_check(self, chain: str) -> bool:
        """Check that the chain's RPC answers."""
        chain_alias = parse_chain(chain)
        w3 = self._providers.get(chain_alias)
        if w3 is None:
            return False
        try:
            await asyncio.wait_for(w3.eth.block_number, timeout=self._timeout)
            return True
        except (TimeoutError, *RPC_ERRORS):
            return False

    async def health_check_all(self) -> dict[str, bool]:
        """Check every chain's RPC concurrently."""
        chains = self.chains
        results = await asyncio.gather(*(self.health_check(chain) for chain in chains))
        return {chain.value: ok for chain, ok in zip(chains, results, strict=True)}


class StaticBalanceReader:
    """Balance source returning fixed balances.

    Used by the synthetic test alert and in tests. Balances are keyed by
    ``(address, chain)``; missing keys raise ``BalanceNotFoundError``.
    """

    def __init__(self, balances: Mapping[tuple[str, str], Decimal]) -> None:
        self._balances = {
            (address.lower(), str(chain).lower()): amount
            for (address, chain), amount in balances.items()
        }

    def set_balance(self, address: str, chain: str, amount: Decimal) -> None:
        """Set or replace a balance."""
        self._balances[(address.lower(), str(chain).lower())] = amount

    async def read_balance(self, address: str, chain: str) -> Decimal:
        try:
            return self._balances[(address.lower(), str(chain).lower())]
        except KeyError:
            raise BalanceNotFoundError(
                f"No balance for {mask_address(address)} on {chain}"
            ) from None

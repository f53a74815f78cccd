"""Tests for chain balance readers."""

import asyncio
from collections.abc import Iterator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from octaneshift_monitor.chains import Chain
from octaneshift_monitor.errors import (
    BalanceNotFoundError,
    EntryValidationError,
    TransientBalanceError,
)
from octaneshift_monitor.monitor.balance import (
    ChainBalanceReader,
    RateLimiter,
    StaticBalanceReader,
)

WALLET = "0x7e5F4552091A69125d5DfCb7b8C2659029395Bdf"
PRIMARY = "https://primary.example"
FALLBACK = "https://fallback.example"


@pytest.fixture
def web3_mocks() -> Iterator[dict[str, MagicMock]]:
    """Patch web3 construction with one mock per RPC URL."""
    mocks: dict[str, MagicMock] = {}

    def make(url: str) -> MagicMock:
        w3 = MagicMock()
        w3.eth.get_balance = AsyncMock(return_value=0)
        mocks[url] = w3
        return w3

    with patch.object(ChainBalanceReader, "_make_web3", side_effect=make):
        yield mocks


def _reader(**kwargs: object) -> ChainBalanceReader:
    options: dict = {
        "use_public_defaults": False,
        "retry_delay_seconds": 0,
        "timeout": 1.0,
    }
    options.update(kwargs)
    return ChainBalanceReader({"base": PRIMARY}, **options)


class TestChainBalanceReader:
    """Tests for the web3-backed reader."""

    @pytest.mark.asyncio
    async def test_converts_wei_to_native_units(self, web3_mocks: dict[str, MagicMock]) -> None:
        reader = _reader()
        web3_mocks[PRIMARY].eth.get_balance.return_value = 10**15

        balance = await reader.read_balance(WALLET, "base")

        assert balance == Decimal("0.001")
        web3_mocks[PRIMARY].eth.get_balance.assert_awaited_once_with(WALLET)

    @pytest.mark.asyncio
    async def test_lowercase_address_is_checksummed(
        self, web3_mocks: dict[str, MagicMock]
    ) -> None:
        reader = _reader()
        await reader.read_balance(WALLET.lower(), "base")
        web3_mocks[PRIMARY].eth.get_balance.assert_awaited_once_with(WALLET)

    @pytest.mark.asyncio
    async def test_unconfigured_chain_not_found(self, web3_mocks: dict[str, MagicMock]) -> None:
        reader = _reader()
        with pytest.raises(BalanceNotFoundError, match="eth"):
            await reader.read_balance(WALLET, "eth")

    @pytest.mark.asyncio
    async def test_unknown_chain_rejected(self, web3_mocks: dict[str, MagicMock]) -> None:
        reader = _reader()
        with pytest.raises(EntryValidationError):
            await reader.read_balance(WALLET, "solana")

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, web3_mocks: dict[str, MagicMock]) -> None:
        reader = _reader(max_retries=2)
        web3_mocks[PRIMARY].eth.get_balance.side_effect = [ValueError("bad response"), 10**18]

        assert await reader.read_balance(WALLET, "base") == Decimal("1")
        assert web3_mocks[PRIMARY].eth.get_balance.await_count == 2

    @pytest.mark.asyncio
    async def test_falls_back_to_secondary_rpc(self, web3_mocks: dict[str, MagicMock]) -> None:
        reader = _reader(fallback_rpc_urls={"base": FALLBACK}, max_retries=2)
        web3_mocks[PRIMARY].eth.get_balance.side_effect = aiohttp.ClientError("refused")
        web3_mocks[FALLBACK].eth.get_balance.return_value = 2 * 10**18

        assert await reader.read_balance(WALLET, "base") == Decimal("2")
        assert web3_mocks[PRIMARY].eth.get_balance.await_count == 2

    @pytest.mark.asyncio
    async def test_all_endpoints_failing_is_transient(
        self, web3_mocks: dict[str, MagicMock]
    ) -> None:
        reader = _reader(fallback_rpc_urls={"base": FALLBACK})
        web3_mocks[PRIMARY].eth.get_balance.side_effect = OSError("unreachable")
        web3_mocks[FALLBACK].eth.get_balance.side_effect = OSError("unreachable")

        with pytest.raises(TransientBalanceError, match="failed"):
            await reader.read_balance(WALLET, "base")

    @pytest.mark.asyncio
    async def test_timeout_is_transient_not_zero(self, web3_mocks: dict[str, MagicMock]) -> None:
        reader = _reader(timeout=0.05)

        async def slow(_address: str) -> int:
            await asyncio.sleep(1)
            return 0

        web3_mocks[PRIMARY].eth.get_balance.side_effect = slow

        with pytest.raises(TransientBalanceError, match="timed out"):
            await reader.read_balance(WALLET, "base")

    def test_public_defaults_cover_all_chains(self, web3_mocks: dict[str, MagicMock]) -> None:
        reader = ChainBalanceReader()
        assert set(reader.chains) == set(Chain)
        assert "https://mainnet.base.org" in web3_mocks

    def test_override_replaces_public_default(self, web3_mocks: dict[str, MagicMock]) -> None:
        ChainBalanceReader({"base": PRIMARY})
        assert PRIMARY in web3_mocks
        assert "https://mainnet.base.org" not in web3_mocks

    @pytest.mark.asyncio
    async def test_health_check_all(self, web3_mocks: dict[str, MagicMock]) -> None:
        reader = ChainBalanceReader(
            {"base": PRIMARY, "arb": FALLBACK}, use_public_defaults=False, timeout=1.0
        )

        async def block_number() -> int:
            return 123

        async def unreachable() -> int:
            raise OSError("unreachable")

        web3_mocks[PRIMARY].eth.block_number = block_number()
        web3_mocks[FALLBACK].eth.block_number = unreachable()

        assert await reader.health_check_all() == {"base": True, "arb": False}

    @pytest.mark.asyncio
    async def test_health_check_unconfigured_chain(
        self, web3_mocks: dict[str, MagicMock]
    ) -> None:
        assert await _reader().health_check("eth") is False


class TestStaticBalanceReader:
    """Tests for the fixed-balance reader."""

    @pytest.mark.asyncio
    async def test_returns_configured_balance(self) -> None:
        reader = StaticBalanceReader({(WALLET, "base"): Decimal("0.0001")})
        assert await reader.read_balance(WALLET.lower(), "BASE") == Decimal("0.0001")

    @pytest.mark.asyncio
    async def test_set_balance(self) -> None:
        reader = StaticBalanceReader({})
        reader.set_balance(WALLET, "arb", Decimal("3"))
        assert await reader.read_balance(WALLET, "arb") == Decimal("3")

    @pytest.mark.asyncio
    async def test_missing_balance_not_found(self) -> None:
        reader = StaticBalanceReader({})
        with pytest.raises(BalanceNotFoundError):
            await reader.read_balance(WALLET, "base")


class TestRateLimiter:
    """Tests for the token bucket."""

    @pytest.mark.asyncio
    async def test_acquire_within_budget(self) -> None:
        limiter = RateLimiter.create(10)
        for _ in range(10):
            await limiter.acquire()
        assert limiter.tokens < 1

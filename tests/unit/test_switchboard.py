"""Unit tests for the Switchboard oracle: feed data, crossbar simulation, broken feeds."""
from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lendrisk.config import SwitchboardConfig
from lendrisk.exceptions import OracleFetchError
from lendrisk.models import Bank, OracleSetup, SwitchboardFeedData
from lendrisk.oracles.pricing import to_decimal
from lendrisk.oracles.switchboard import SwitchboardOracle, is_broken_feed

SCALE = 10**18


def _response(status: int, data: Any = None) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.json = AsyncMock(return_value=data)
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)
    return mock_response


def _mock_session(routes: dict[str, AsyncMock]) -> AsyncMock:
    """Session whose ``get`` answers with the first route whose key prefixes the URL."""

    def _get(url: str, **kwargs: Any) -> AsyncMock:
        for prefix, response in routes.items():
            if url.startswith(prefix):
                return response
        raise AssertionError(f"unexpected request {url}")

    mock_session = AsyncMock()
    mock_session.get = MagicMock(side_effect=_get)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


def _feed(feed_hash: str, price: str, stdev: str = "0") -> dict:
    return {
        "queue": "queue1",
        "feedHash": feed_hash,
        "maxVariance": "1000000000",
        "minResponses": 1,
        "rawPrice": str(int(Decimal(price) * SCALE)),
        "stdev": str(int(Decimal(stdev) * SCALE)),
    }


@pytest.fixture()
def swb_bank(sol_bank: Bank) -> Bank:
    return replace(
        sol_bank, config=replace(sol_bank.config, oracle_setup=OracleSetup.SWITCHBOARD_PULL)
    )


@pytest.fixture()
def oracle(sample_switchboard_config: SwitchboardConfig) -> SwitchboardOracle:
    return SwitchboardOracle(sample_switchboard_config)


class TestHelpers:
    def test_to_decimal(self) -> None:
        assert to_decimal("1.5") == Decimal("1.5")
        assert to_decimal(2) == Decimal(2)
        assert to_decimal("NaN") is None
        assert to_decimal("Infinity") is None
        assert to_decimal("abc") is None
        assert to_decimal(None) is None
        assert to_decimal(True) is None

    @pytest.mark.parametrize("raw", ["0", "1000000000000", "10000000000", "garbage"])
    def test_broken_feed_values(self, raw: str) -> None:
        assert is_broken_feed(raw)

    def test_live_feed_is_not_broken(self) -> None:
        assert not is_broken_feed(str(150 * SCALE))


class TestParseFeedPrice:
    def test_median_of_samples(self, oracle: SwitchboardOracle) -> None:
        feed = SwitchboardFeedData("q", "h", "0", 1, str(150 * SCALE), str(SCALE))
        price = oracle.parse_feed_price(
            feed, [Decimal(152), Decimal(149), Decimal(150)], timestamp=Decimal(7)
        )
        assert price.price_realtime.price == Decimal(150)
        # stdev of 1 at 1.96 intervals
        assert price.price_realtime.confidence == Decimal("1.96")
        assert price.price_weighted == price.price_realtime
        assert price.switchboard_data is feed
        assert price.timestamp == Decimal(7)

    def test_even_sample_count(self, oracle: SwitchboardOracle) -> None:
        feed = SwitchboardFeedData("q", "h", "0", 1, "0", "0")
        price = oracle.parse_feed_price(feed, [Decimal(1), Decimal(2), Decimal(4), Decimal(10)])
        assert price.price_realtime.price == Decimal(3)

    def test_raw_price_without_samples(self, oracle: SwitchboardOracle) -> None:
        feed = SwitchboardFeedData("q", "h", "0", 1, str(42 * SCALE), "0")
        price = oracle.parse_feed_price(feed)
        assert price.price_realtime.price == Decimal(42)
        assert price.timestamp > 0


class TestFetchBankPrices:
    @pytest.mark.asyncio
    async def test_healthy_feed_priced_from_crossbar(
        self, oracle: SwitchboardOracle, swb_bank: Bank
    ) -> None:
        mock_session = _mock_session(
            {
                "https://feeds.example.com/swb": _response(
                    200, {"data": {swb_bank.oracle_key: _feed("hash1", "150", "1")}}
                ),
                "https://crossbar.example.com/simulate/hash1": _response(
                    200, [{"feedHash": "hash1", "results": [149, "150", 152]}]
                ),
            }
        )

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                prices = await oracle.fetch_bank_prices([swb_bank])

        price = prices[swb_bank.address]
        assert price.price_realtime.price == Decimal(150)
        assert price.price_realtime.lowest_price == Decimal("148.04")
        assert price.switchboard_data.feed_hash == "hash1"

    @pytest.mark.asyncio
    async def test_broken_feed_uses_fallback_price(
        self, sample_switchboard_config: SwitchboardConfig, swb_bank: Bank
    ) -> None:
        fallback = MagicMock()
        fallback.fetch_prices_by_feed_id = AsyncMock(return_value={"hash1": Decimal("151.2")})
        oracle = SwitchboardOracle(sample_switchboard_config, fallback=fallback)
        mock_session = _mock_session(
            {
                "https://feeds.example.com/swb": _response(
                    200, {"data": {swb_bank.oracle_key: _feed("hash1", "0")}}
                ),
            }
        )

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                prices = await oracle.fetch_bank_prices([swb_bank])

        assert prices[swb_bank.address].price_realtime.price == Decimal("151.2")
        fallback.fetch_prices_by_feed_id.assert_awaited_once_with({"hash1": swb_bank.mint})

    @pytest.mark.asyncio
    async def test_broken_feed_without_fallback_unresolved(
        self, oracle: SwitchboardOracle, swb_bank: Bank, caplog: pytest.LogCaptureFixture
    ) -> None:
        mock_session = _mock_session(
            {
                "https://feeds.example.com/swb": _response(
                    200, {"data": {swb_bank.oracle_key: _feed("hash1", "0")}}
                ),
            }
        )

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                with caplog.at_level(logging.WARNING):
                    prices = await oracle.fetch_bank_prices([swb_bank])

        assert prices == {}
        assert "broken switchboard feeds" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_simulation_falls_back_to_raw_price(
        self, oracle: SwitchboardOracle, swb_bank: Bank
    ) -> None:
        mock_session = _mock_session(
            {
                "https://feeds.example.com/swb": _response(
                    200, {"data": {swb_bank.oracle_key: _feed("hash1", "148")}}
                ),
                "https://crossbar.example.com/simulate/hash1": _response(
                    200, [{"feedHash": "hash1", "results": ["NaN"]}]
                ),
            }
        )

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                prices = await oracle.fetch_bank_prices([swb_bank])

        assert prices[swb_bank.address].price_realtime.price == Decimal(148)

    @pytest.mark.asyncio
    async def test_feed_data_failure_returns_empty(
        self, oracle: SwitchboardOracle, swb_bank: Bank, caplog: pytest.LogCaptureFixture
    ) -> None:
        mock_session = _mock_session({"https://feeds.example.com/swb": _response(502)})

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                with caplog.at_level(logging.ERROR):
                    prices = await oracle.fetch_bank_prices([swb_bank])

        assert prices == {}
        assert "Error fetching switchboard feed data" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_feed_data_skips_bank(
        self, oracle: SwitchboardOracle, swb_bank: Bank, caplog: pytest.LogCaptureFixture
    ) -> None:
        mock_session = _mock_session(
            {"https://feeds.example.com/swb": _response(200, {"data": {}})}
        )

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                with caplog.at_level(logging.WARNING):
                    prices = await oracle.fetch_bank_prices([swb_bank])

        assert prices == {}
        assert "No oracle feed found" in caplog.text

    @pytest.mark.asyncio
    async def test_pyth_banks_ignored(self, oracle: SwitchboardOracle, sol_bank: Bank) -> None:
        assert await oracle.fetch_bank_prices([sol_bank]) == {}


class TestFetchCrossbarPrices:
    @pytest.mark.asyncio
    async def test_failed_chunk_left_out(
        self, oracle: SwitchboardOracle, caplog: pytest.LogCaptureFixture
    ) -> None:
        mock_session = _mock_session(
            {
                "https://crossbar.example.com/simulate/h1,h2": _response(
                    200,
                    [
                        {"feedHash": "h1", "results": [1, 2]},
                        {"feedHash": "h2", "results": [3]},
                    ],
                ),
                "https://crossbar.example.com/simulate/h3": _response(500),
            }
        )

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                with caplog.at_level(logging.ERROR):
                    samples = await oracle.fetch_crossbar_prices(["h1", "h2", "h3"])

        assert samples == {"h1": [Decimal(1), Decimal(2)], "h2": [Decimal(3)]}
        assert "Crossbar chunk request failed" in caplog.text

    @pytest.mark.asyncio
    async def test_fallback_crossbar_used(self) -> None:
        oracle = SwitchboardOracle(
            SwitchboardConfig(
                crossbar_url="https://primary.example.com",
                crossbar_fallback_url="https://backup.example.com",
            )
        )
        mock_session = _mock_session(
            {
                "https://primary.example.com": _response(500),
                "https://backup.example.com/simulate/h1": _response(
                    200, [{"feedHash": "h1", "results": ["2.5"]}]
                ),
            }
        )

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                samples = await oracle.fetch_crossbar_prices(["h1"])

        assert samples == {"h1": [Decimal("2.5")]}

    @pytest.mark.asyncio
    async def test_empty_hashes_make_no_request(self, oracle: SwitchboardOracle) -> None:
        assert await oracle.fetch_crossbar_prices([]) == {}


class TestFetchFeedData:
    @pytest.mark.asyncio
    async def test_raises_on_http_error(self, oracle: SwitchboardOracle) -> None:
        mock_session = _mock_session({"https://feeds.example.com/swb": _response(404)})

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                with pytest.raises(OracleFetchError):
                    await oracle.fetch_feed_data(["OracleKey1"])

    @pytest.mark.asyncio
    async def test_query_lists_unique_keys(self, oracle: SwitchboardOracle) -> None:
        mock_session = _mock_session(
            {"https://feeds.example.com/swb": _response(200, {"data": {}})}
        )

        with patch(
            "lendrisk.oracles.switchboard.aiohttp.ClientSession", return_value=mock_session
        ):
            with patch("lendrisk.oracles.switchboard.aiohttp.TCPConnector"):
                await oracle.fetch_feed_data(["K1", "K2", "K1"])

        url = mock_session.get.call_args[0][0]
        assert url == "https://feeds.example.com/swb?feedKeys=K1,K2"

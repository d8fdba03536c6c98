import asyncio
import unittest
from unittest.mock import AsyncMock, patch

import httpx

from schemas.etf import ErrorKind, EtfProfile
from services.alphavantage.client import AlphaVantageClient
from services.alphavantage.etf_profile_service import (
    EtfProfileService,
    ProfileFetchError,
    match_best_name,
)
from services.cache.cache_backend import CacheStore, LocalCacheBackend, profile_cache_key

SPY_PROFILE = {
    "net_assets": "600000000000",
    "net_expense_ratio": "0.0009",
    "portfolio_turnover": "0.03",
    "dividend_yield": "0.012",
    "sectors": [
        {"sector": "INFORMATION TECHNOLOGY", "weight": "0.31"},
        {"sector": "FINANCIALS", "weight": "0.13"},
    ],
    "holdings": [
        {"symbol": "AAPL", "description": "APPLE INC", "weight": "0.07", "assets": "Equity"},
        {"symbol": "n/a", "description": "USD CASH", "weight": "0.001"},
        "garbage row",
    ],
}

SPY_SEARCH = {
    "bestMatches": [
        {"1. symbol": "SPYG", "2. name": "SPDR Portfolio S&P 500 Growth ETF"},
        {"1. symbol": "SPY", "2. name": "SPDR S&P 500 ETF Trust"},
    ]
}


class _Provider:
    """Scripted Alpha Vantage: one response per function, call log kept."""

    def __init__(self, profile=None, search=None, profile_status=200, search_error=None):
        self.profile = SPY_PROFILE if profile is None else profile
        self.search = SPY_SEARCH if search is None else search
        self.profile_status = profile_status
        self.search_error = search_error
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        fn = request.url.params.get("function")
        self.calls.append((fn, dict(request.url.params)))
        if fn == "ETF_PROFILE":
            if isinstance(self.profile, str):
                return httpx.Response(self.profile_status, text=self.profile)
            return httpx.Response(self.profile_status, json=self.profile)
        if fn == "SYMBOL_SEARCH":
            if self.search_error is not None:
                raise self.search_error
            return httpx.Response(200, json=self.search)
        return httpx.Response(400, json={})

    def count(self, fn):
        return sum(1 for f, _ in self.calls if f == fn)


class _SuspendingProvider(_Provider):
    """Yields to the event loop before answering, like a real network round trip."""

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0)
        return super().__call__(request)


def _service(provider, cache=None, **kwargs):
    http = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    client = AlphaVantageClient(base_url="https://av.test/query", client=http)
    return EtfProfileService(client=client, cache=cache or CacheStore(LocalCacheBackend()), name_lookup_delay=0, **kwargs)


def _fetch(svc, ticker="spy", key="demo"):
    return asyncio.run(svc.fetch(ticker, key))


class TestEtfProfileFetch(unittest.TestCase):
    def test_success_builds_profile_with_name(self):
        provider = _Provider()
        svc = _service(provider)

        profile = _fetch(svc)

        self.assertEqual(profile.symbol, "SPY")
        self.assertEqual(profile.name, "SPDR S&P 500 ETF Trust")
        self.assertEqual(profile.net_expense_ratio, "0.0009")
        self.assertEqual(len(profile.holdings), 2)  # non-object row dropped
        self.assertEqual(profile.holdings[0].asset_class, "Equity")
        self.assertEqual(profile.sectors[1].sector, "FINANCIALS")

        _, params = provider.calls[0]
        self.assertEqual(params["symbol"], "SPY")
        self.assertEqual(params["apikey"], "demo")
        self.assertEqual(provider.calls[1][1]["keywords"], "SPY")

    def test_cache_hit_skips_network(self):
        provider = _Provider()
        cache = CacheStore(LocalCacheBackend())
        svc = _service(provider, cache=cache)

        first = _fetch(svc)
        calls_after_first = len(provider.calls)
        second = _fetch(svc, ticker="Spy")

        self.assertEqual(len(provider.calls), calls_after_first)
        self.assertEqual(first, second)
        self.assertIsNotNone(cache.get(profile_cache_key("SPY")))

    def test_error_message_is_not_found(self):
        svc = _service(_Provider(profile={"Error Message": "Invalid API call."}))
        with self.assertRaises(ProfileFetchError) as ctx:
            _fetch(svc, "ZZZZ")
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)

    def test_note_is_rate_limited(self):
        svc = _service(_Provider(profile={"Note": "Thank you for using Alpha Vantage!"}))
        with self.assertRaises(ProfileFetchError) as ctx:
            _fetch(svc)
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(ctx.exception.message, "API Limit Reached (25/day)")

    def test_information_is_daily_limit(self):
        svc = _service(_Provider(profile={"Information": "daily rate limit is 25 requests"}))
        with self.assertRaises(ProfileFetchError) as ctx:
            _fetch(svc)
        self.assertEqual(ctx.exception.kind, ErrorKind.DAILY_LIMIT_EXCEEDED)

    def test_signal_order_error_before_note(self):
        svc = _service(_Provider(profile={"Note": "x", "Error Message": "y", "Information": "z"}))
        with self.assertRaises(ProfileFetchError) as ctx:
            _fetch(svc)
        self.assertEqual(ctx.exception.kind, ErrorKind.NOT_FOUND)

    def test_missing_holdings(self):
        for body in ({}, {"holdings": "none"}, {"holdings": None, "sectors": []}):
            with self.subTest(body=body):
                svc = _service(_Provider(profile=body))
                with self.assertRaises(ProfileFetchError) as ctx:
                    _fetch(svc)
                self.assertEqual(ctx.exception.kind, ErrorKind.NO_HOLDING_DATA)

    def test_http_error_is_transport(self):
        provider = _Provider(profile={"oops": True}, profile_status=503)
        svc = _service(provider)
        with self.assertRaises(ProfileFetchError) as ctx:
            _fetch(svc)
        self.assertEqual(ctx.exception.kind, ErrorKind.TRANSPORT)
        self.assertIn("503", ctx.exception.message)
        self.assertEqual(provider.count("SYMBOL_SEARCH"), 0)

    def test_non_json_body_is_transport(self):
        svc = _service(_Provider(profile="<html>busy</html>"))
        with self.assertRaises(ProfileFetchError) as ctx:
            _fetch(svc)
        self.assertEqual(ctx.exception.kind, ErrorKind.TRANSPORT)

    def test_failures_are_not_cached(self):
        cache = CacheStore(LocalCacheBackend())
        svc = _service(_Provider(profile={"Note": "slow down"}), cache=cache)
        with self.assertRaises(ProfileFetchError):
            _fetch(svc)
        self.assertIsNone(cache.get(profile_cache_key("SPY")))

    def test_rejected_body_skips_symbol_search(self):
        provider = _Provider()
        svc = _service(provider)
        with patch(
            "services.alphavantage.etf_profile_service.build_profile",
            side_effect=lambda *args: EtfProfile.model_validate({}),
        ):
            with self.assertRaises(ProfileFetchError) as ctx:
                _fetch(svc)
        self.assertEqual(ctx.exception.kind, ErrorKind.NO_HOLDING_DATA)
        self.assertEqual(provider.count("ETF_PROFILE"), 1)
        self.assertEqual(provider.count("SYMBOL_SEARCH"), 0)


class TestNameEnrichment(unittest.TestCase):
    def test_search_network_failure_falls_back_to_ticker(self):
        provider = _Provider(search_error=httpx.ConnectError("boom"))
        svc = _service(provider)

        with self.assertLogs("services.alphavantage.etf_profile_service", level="WARNING"):
            profile = _fetch(svc)

        self.assertEqual(profile.name, "SPY")
        self.assertEqual(len(profile.holdings), 2)

    def test_no_exact_match_uses_ticker(self):
        svc = _service(_Provider(search={"bestMatches": [{"1. symbol": "SPYG", "2. name": "Growth"}]}))
        self.assertEqual(_fetch(svc).name, "SPY")

    def test_malformed_search_body_uses_ticker(self):
        svc = _service(_Provider(search={"bestMatches": "nope"}))
        self.assertEqual(_fetch(svc).name, "SPY")

    def test_resolve_display_name_returns_result(self):
        svc = _service(_Provider(search_error=httpx.ReadTimeout("slow")))
        lookup = asyncio.run(svc.resolve_display_name("SPY", "demo"))
        self.assertFalse(lookup.ok)
        self.assertIsNone(lookup.name)
        self.assertIn("ReadTimeout", lookup.error)

    def test_name_lookup_waits_configured_delay(self):
        provider = _Provider()
        svc = _service(provider)
        svc.name_lookup_delay = 0.25
        with patch("services.alphavantage.etf_profile_service.asyncio.sleep", new_callable=AsyncMock) as sleep:
            profile = _fetch(svc)
        sleep.assert_awaited_once_with(0.25)
        self.assertEqual(profile.name, "SPDR S&P 500 ETF Trust")

    def test_match_best_name_is_exact(self):
        self.assertEqual(match_best_name(SPY_SEARCH, "SPY"), "SPDR S&P 500 ETF Trust")
        self.assertIsNone(match_best_name(SPY_SEARCH, "SP"))
        self.assertIsNone(match_best_name({}, "SPY"))


class TestConcurrentFetches(unittest.TestCase):
    def test_default_issues_duplicate_provider_calls(self):
        provider = _SuspendingProvider()
        svc = _service(provider)

        async def run():
            return await asyncio.gather(svc.fetch("SPY", "k"), svc.fetch("SPY", "k"))

        a, b = asyncio.run(run())
        self.assertEqual(a, b)
        self.assertEqual(provider.count("ETF_PROFILE"), 2)

    def test_single_flight_shares_one_call(self):
        provider = _Provider()
        svc = _service(provider, single_flight=True)

        async def run():
            return await asyncio.gather(*(svc.fetch("spy", "k") for _ in range(3)))

        results = asyncio.run(run())
        self.assertEqual(len({r.name for r in results}), 1)
        self.assertEqual(provider.count("ETF_PROFILE"), 1)
        self.assertEqual(svc._inflight, {})


if __name__ == "__main__":
    unittest.main()

# services/alphavantage/etf_profile_service.py
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from schemas.etf import ErrorKind, EtfProfile
from services.alphavantage.client import AlphaVantageClient, AlphaVantageTransportError
from services.cache.cache_backend import CacheStore, profile_cache_key
from utils.common_helpers import normalize_ticker

logger = logging.getLogger(__name__)

NAME_LOOKUP_DELAY_SEC = float(os.getenv("ALPHAVANTAGE_NAME_LOOKUP_DELAY_SEC", "0.25"))

ERROR_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NOT_FOUND: "Ticker not found or invalid",
    ErrorKind.RATE_LIMITED: "API Limit Reached (25/day)",
    ErrorKind.DAILY_LIMIT_EXCEEDED: "Daily Limit Exceeded",
    ErrorKind.NO_HOLDING_DATA: "No holding data available",
    ErrorKind.TRANSPORT: "Failed to fetch",
}

# Checked in this order; the first field present wins.
_PROVIDER_SIGNALS = (
    ("Error Message", ErrorKind.NOT_FOUND),
    ("Note", ErrorKind.RATE_LIMITED),
    ("Information", ErrorKind.DAILY_LIMIT_EXCEEDED),
)


class ProfileFetchError(Exception):
    """Terminal failure resolving one ETF profile."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or ERROR_MESSAGES[kind]
        super().__init__(self.message)


@dataclass(frozen=True)
class NameLookup:
    name: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.name is not None


def classify_profile_body(data: Dict[str, Any]) -> Optional[ErrorKind]:
    for field, kind in _PROVIDER_SIGNALS:
        if data.get(field):
            return kind
    holdings = data.get("holdings")
    if not isinstance(holdings, list):
        return ErrorKind.NO_HOLDING_DATA
    return None


def match_best_name(data: Dict[str, Any], ticker: str) -> Optional[str]:
    matches = data.get("bestMatches")
    if not isinstance(matches, list):
        return None
    for m in matches:
        if not isinstance(m, dict):
            continue
        if normalize_ticker(m.get("1. symbol")) == ticker:
            name = m.get("2. name")
            if isinstance(name, str) and name.strip():
                return name.strip()
    return None


class EtfProfileService:
    """
    Resolves a ticker to an EtfProfile: cache first, then ETF_PROFILE, then a
    best-effort SYMBOL_SEARCH for the display name.

    No retries. Concurrent calls for the same ticker each hit the provider
    unless single_flight is enabled, in which case they share one task.
    """

    def __init__(
        self,
        client: Optional[AlphaVantageClient] = None,
        cache: Optional[CacheStore] = None,
        *,
        name_lookup_delay: float = NAME_LOOKUP_DELAY_SEC,
        single_flight: bool = False,
    ):
        self.client = client or AlphaVantageClient()
        self.cache = cache or CacheStore()
        self.name_lookup_delay = max(0.0, float(name_lookup_delay))
        self.single_flight = single_flight
        self._inflight: Dict[str, "asyncio.Task[EtfProfile]"] = {}

    # -----------------------
    # Cache
    # -----------------------

    def get_cached(self, ticker: str) -> Optional[EtfProfile]:
        entry = self.cache.get(profile_cache_key(ticker))
        if entry is None:
            return None
        try:
            return EtfProfile.model_validate(entry.data)
        except ValidationError:
            logger.debug("cached profile for %s no longer validates", ticker)
            return None

    # -----------------------
    # Fetch
    # -----------------------

    async def fetch(self, ticker: str, api_key: str) -> EtfProfile:
        sym = normalize_ticker(ticker)
        if not sym:
            raise ProfileFetchError(ErrorKind.NOT_FOUND)

        cached = self.get_cached(sym)
        if cached is not None:
            logger.debug("profile cache hit: %s", sym)
            return cached

        if not self.single_flight:
            return await self._fetch_remote(sym, api_key)

        task = self._inflight.get(sym)
        if task is None:
            task = asyncio.ensure_future(self._fetch_remote(sym, api_key))
            self._inflight[sym] = task
            task.add_done_callback(lambda t, key=sym: self._forget(key, t))
        return await asyncio.shield(task)

    def _forget(self, sym: str, task: "asyncio.Task[EtfProfile]") -> None:
        if self._inflight.get(sym) is task:
            del self._inflight[sym]

    async def _fetch_remote(self, sym: str, api_key: str) -> EtfProfile:
        try:
            data = await self.client.etf_profile(sym, api_key)
        except AlphaVantageTransportError as e:
            logger.warning("ETF_PROFILE transport failure for %s: %s", sym, e)
            raise ProfileFetchError(ErrorKind.TRANSPORT, str(e)) from e

        kind = classify_profile_body(data)
        if kind is not None:
            logger.info("ETF_PROFILE %s for %s", kind.value, sym)
            raise ProfileFetchError(kind)

        # Validated before SYMBOL_SEARCH; a rejected body never triggers the name lookup.
        try:
            profile = build_profile(sym, data, None)
        except ValidationError as e:
            logger.warning("ETF_PROFILE body for %s did not validate: %s", sym, e.error_count())
            raise ProfileFetchError(ErrorKind.NO_HOLDING_DATA) from e

        lookup = await self.resolve_display_name(sym, api_key)
        if lookup.ok:
            profile = profile.model_copy(update={"name": lookup.name})
        else:
            logger.warning("Failed to fetch ETF name for %s: %s", sym, lookup.error)

        self.cache.put(profile_cache_key(sym), profile.to_cache())
        return profile

    async def resolve_display_name(self, sym: str, api_key: str) -> NameLookup:
        """Never raises; the caller decides what to do with a failed lookup."""
        try:
            if self.name_lookup_delay:
                await asyncio.sleep(self.name_lookup_delay)
            data = await self.client.symbol_search(sym, api_key)
            name = match_best_name(data, sym)
        except Exception as e:
            return NameLookup(error=f"{type(e).__name__}: {e}")
        if name is None:
            return NameLookup(error="no exact symbol match")
        return NameLookup(name=name)


def build_profile(sym: str, data: Dict[str, Any], name: Optional[str]) -> EtfProfile:
    payload = {k: v for k, v in data.items() if k not in ("symbol", "name")}
    return EtfProfile.model_validate({**payload, "symbol": sym, "name": name or sym})

#services/alphavantage/client.py
from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from dotenv import load_dotenv

from utils.common_helpers import safe_json

load_dotenv()

ALPHAVANTAGE_BASE_URL = os.getenv("ALPHAVANTAGE_BASE_URL", "https://www.alphavantage.co/query")
ALPHAVANTAGE_TIMEOUT_SEC = float(os.getenv("ALPHAVANTAGE_TIMEOUT_SEC", "10"))


class AlphaVantageTransportError(Exception):
    """Non-success HTTP status, network failure, or a body that is not a JSON object."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AlphaVantageClient:
    """
    Thin request/response layer over the Alpha Vantage query endpoint.
    Knows nothing about ETF semantics; callers inspect the decoded body.
    """

    def __init__(
        self,
        base_url: str = ALPHAVANTAGE_BASE_URL,
        timeout: float = ALPHAVANTAGE_TIMEOUT_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._shared = client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._shared is not None:
            yield self._shared
            return
        async with httpx.AsyncClient(timeout=self.timeout) as c:
            yield c

    async def query(self, function: str, api_key: str, **params: Any) -> Dict[str, Any]:
        async with self._client() as c:
            try:
                r = await c.get(self.base_url, params={"function": function, **params, "apikey": api_key})
                r.raise_for_status()
            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                raise AlphaVantageTransportError(f"HTTP error! status: {code}", status_code=code) from e
            except httpx.HTTPError as e:
                # Exception text can echo the URL, which carries the apikey.
                raise AlphaVantageTransportError(f"Network error: {type(e).__name__}") from e

        data = safe_json(r)
        if data is None:
            raise AlphaVantageTransportError("Malformed response body", status_code=r.status_code)
        return data

    async def etf_profile(self, symbol: str, api_key: str) -> Dict[str, Any]:
        return await self.query("ETF_PROFILE", api_key, symbol=symbol)

    async def symbol_search(self, keywords: str, api_key: str) -> Dict[str, Any]:
        return await self.query("SYMBOL_SEARCH", api_key, keywords=keywords)

# routers/etf_routes.py
from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from middleware.rate_limit import API_KEY_HEADER
from schemas.etf import ErrorKind, EtfProfile
from services.alphavantage.etf_profile_service import EtfProfileService, ProfileFetchError
from services.cache.cache_backend import build_cache_store

router = APIRouter()

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.DAILY_LIMIT_EXCEEDED: 429,
    ErrorKind.NO_HOLDING_DATA: 422,
    ErrorKind.TRANSPORT: 502,
}


# ---- Dependencies ----
@lru_cache(maxsize=1)
def get_profile_service() -> EtfProfileService:
    # One instance per process so the cache outlives a single request.
    return EtfProfileService(cache=build_cache_store())


def get_api_key(
    header_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER),
) -> str:
    key = (header_key or os.getenv("ALPHAVANTAGE_API_KEY") or "").strip()
    if not key:
        raise HTTPException(status_code=400, detail="Missing Alpha Vantage API key")
    return key


def fetch_error_to_http(e: ProfileFetchError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(e.kind, 502),
        detail={"error": e.kind.value, "message": e.message},
    )


# ---------- Routes ----------
@router.get("/{ticker}/profile", response_model=EtfProfile)
async def get_etf_profile(
    ticker: str,
    api_key: str = Depends(get_api_key),
    svc: EtfProfileService = Depends(get_profile_service),
):
    try:
        return await svc.fetch(ticker, api_key)
    except ProfileFetchError as e:
        raise fetch_error_to_http(e)

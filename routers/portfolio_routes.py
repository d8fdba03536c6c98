# routers/portfolio_routes.py
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from middleware.rate_limit import ADD_POSITION_RATE_LIMIT, limiter
from routers.etf_routes import get_api_key, get_profile_service
from schemas.portfolio import (
    AggregatedHolding,
    AggregatedSector,
    HoldingsPage,
    PortfolioStats,
    PortfolioSummary,
    Position,
    PositionCreate,
)
from services.portfolio.aggregation import aggregate_holdings, aggregate_sectors, build_summary, compute_stats
from services.portfolio.holdings_view import (
    HOLDINGS_PER_PAGE,
    TOP_HOLDINGS_LIMIT,
    paginate,
    search_holdings,
    top_holdings,
)
from services.portfolio.portfolio_service import PortfolioService

router = APIRouter()

MAX_POSITIONS = 50


@lru_cache(maxsize=1)
def get_portfolio_service() -> PortfolioService:
    return PortfolioService(get_profile_service())


# ---------- Positions ----------
@router.get("/positions", response_model=List[Position])
def list_positions(svc: PortfolioService = Depends(get_portfolio_service)):
    return svc.list_positions()


@router.post("/positions", response_model=Position, status_code=status.HTTP_201_CREATED)
@limiter.limit(ADD_POSITION_RATE_LIMIT)
async def add_position(
    request: Request,
    payload: PositionCreate,
    wait: bool = Query(False, description="Block until the profile fetch settles"),
    api_key: str = Depends(get_api_key),
    svc: PortfolioService = Depends(get_portfolio_service),
):
    if len(svc) >= MAX_POSITIONS:
        raise HTTPException(status_code=409, detail=f"Maximum {MAX_POSITIONS} ETFs allowed.")
    position = await svc.add_position(payload.ticker, payload.equity, api_key)
    if wait:
        return await svc.wait_for(position.id) or position
    return position


@router.get("/positions/{position_id}", response_model=Position)
def get_position(position_id: str, svc: PortfolioService = Depends(get_portfolio_service)):
    position = svc.get_position(position_id)
    if not position:
        raise HTTPException(status_code=404, detail="Position not found")
    return position


@router.delete("/positions/{position_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_position(position_id: str, svc: PortfolioService = Depends(get_portfolio_service)):
    if not svc.remove_position(position_id):
        raise HTTPException(status_code=404, detail="Position not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Aggregates (recomputed on every call) ----------
@router.get("/stats", response_model=PortfolioStats)
def get_stats(svc: PortfolioService = Depends(get_portfolio_service)):
    return compute_stats(svc.list_positions())


@router.get("/summary", response_model=PortfolioSummary)
def get_summary(svc: PortfolioService = Depends(get_portfolio_service)):
    return build_summary(svc.list_positions())


@router.get("/sectors", response_model=List[AggregatedSector])
def get_sectors(svc: PortfolioService = Depends(get_portfolio_service)):
    return aggregate_sectors(svc.list_positions())


@router.get("/holdings", response_model=HoldingsPage)
def get_holdings(
    q: Optional[str] = Query(None, max_length=64),
    page: int = Query(1, ge=1),
    per_page: int = Query(HOLDINGS_PER_PAGE, ge=1, le=200),
    svc: PortfolioService = Depends(get_portfolio_service),
):
    rows = search_holdings(aggregate_holdings(svc.list_positions()), q)
    return paginate(rows, page=page, per_page=per_page)


@router.get("/holdings/top", response_model=List[AggregatedHolding])
def get_top_holdings(
    limit: int = Query(TOP_HOLDINGS_LIMIT, ge=1, le=100),
    svc: PortfolioService = Depends(get_portfolio_service),
):
    return top_holdings(aggregate_holdings(svc.list_positions()), limit)

# services/portfolio/aggregation.py
"""
Weighted aggregation of ETF holdings and sectors across portfolio positions.

Everything here is pure and synchronous: the caller recomputes from scratch on
every change to the position set. Positions without a profile, or with an
error, do not contribute to anything.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from schemas.portfolio import (
    AggregatedHolding,
    AggregatedSector,
    PortfolioStats,
    PortfolioSummary,
    Position,
)
from utils.common_helpers import safe_div, to_fraction

CASH_TICKER = "CASH"
CASH_DESCRIPTION = "Cash / Other Assets"

# Compared exactly; "n/a" is an ordinary symbol.
_PLACEHOLDER_SYMBOLS = {"", "N/A", "-"}


@dataclass(frozen=True)
class HoldingKey:
    """Either a known symbol or the cash/other bucket (symbol is None)."""

    symbol: Optional[str] = None

    @staticmethod
    def is_placeholder(raw: Optional[str]) -> bool:
        return (raw or "").strip() in _PLACEHOLDER_SYMBOLS

    @classmethod
    def from_symbol(cls, raw: Optional[str]) -> "HoldingKey":
        """A literal CASH symbol shares the cash/other key with placeholders."""
        s = (raw or "").strip()
        if s in _PLACEHOLDER_SYMBOLS or s == CASH_TICKER:
            return CASH_OR_OTHER
        return cls(symbol=s)

    @property
    def is_cash(self) -> bool:
        return self.symbol is None

    @property
    def ticker(self) -> str:
        return CASH_TICKER if self.symbol is None else self.symbol


CASH_OR_OTHER = HoldingKey()


@dataclass
class _HoldingBucket:
    value: float
    description: str
    asset_class: str


def contributing(positions: Iterable[Position]) -> List[Position]:
    return [p for p in positions if p.contributes]


def _total_equity(positions: List[Position]) -> float:
    return sum(float(p.equity) for p in positions)


def _pct(value: float, total_equity: float) -> float:
    return safe_div(value, total_equity) * 100.0


def compute_stats(positions: Iterable[Position]) -> PortfolioStats:
    live = contributing(positions)

    total_equity = 0.0
    weighted_expense = 0.0  # ratio * equity == annual dollar cost
    weighted_yield = 0.0  # yield * equity == annual dollar income

    for p in live:
        equity = float(p.equity)
        total_equity += equity
        weighted_expense += to_fraction(p.profile.net_expense_ratio) * equity
        weighted_yield += to_fraction(p.profile.dividend_yield) * equity

    return PortfolioStats(
        total_equity=total_equity,
        average_expense_ratio=safe_div(weighted_expense, total_equity),
        average_dividend_yield=safe_div(weighted_yield, total_equity),
        total_annual_expense_cost=weighted_expense,
        total_annual_dividend_income=weighted_yield,
        has_usable_data=len(live) > 0,
    )


def aggregate_holdings(positions: Iterable[Position]) -> List[AggregatedHolding]:
    live = contributing(positions)
    total_equity = _total_equity(live)

    # dict preserves first-seen order, which is the tie-break for the sort below
    buckets: Dict[HoldingKey, _HoldingBucket] = {}

    for p in live:
        equity = float(p.equity)
        for h in p.profile.holdings:
            key = HoldingKey.from_symbol(h.symbol)
            description = CASH_DESCRIPTION if HoldingKey.is_placeholder(h.symbol) else (h.description or "")
            asset_class = h.asset_class or ""
            value = equity * to_fraction(h.weight)

            cur = buckets.get(key)
            if cur is None:
                buckets[key] = _HoldingBucket(value=value, description=description, asset_class=asset_class)
                continue
            cur.value += value
            if description:
                cur.description = description
            if asset_class:
                cur.asset_class = asset_class

    rows = [
        AggregatedHolding(
            ticker=key.ticker,
            display_name=b.description or key.ticker,
            asset_class=b.asset_class or None,
            total_value=b.value,
            percentage_of_portfolio=_pct(b.value, total_equity),
        )
        for key, b in buckets.items()
    ]
    rows.sort(key=lambda r: r.total_value, reverse=True)
    return rows


def aggregate_sectors(positions: Iterable[Position]) -> List[AggregatedSector]:
    live = contributing(positions)
    total_equity = _total_equity(live)

    # Raw sector names, including None / "", are kept as their own keys.
    totals: Dict[Optional[str], float] = {}
    for p in live:
        equity = float(p.equity)
        for s in p.profile.sectors:
            totals[s.sector] = totals.get(s.sector, 0.0) + equity * to_fraction(s.weight)

    rows = [
        AggregatedSector(name=name, total_value=value, percentage_of_portfolio=_pct(value, total_equity))
        for name, value in totals.items()
    ]
    rows.sort(key=lambda r: r.total_value, reverse=True)
    return rows


def build_summary(positions: Iterable[Position]) -> PortfolioSummary:
    snapshot = list(positions)
    return PortfolioSummary(
        stats=compute_stats(snapshot),
        holdings=aggregate_holdings(snapshot),
        sectors=aggregate_sectors(snapshot),
    )

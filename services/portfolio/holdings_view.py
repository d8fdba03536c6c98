from __future__ import annotations

import math
from typing import List, Optional, Sequence

from schemas.portfolio import AggregatedHolding, HoldingsPage

TOP_HOLDINGS_LIMIT = 15
HOLDINGS_PER_PAGE = 10


def top_holdings(holdings: Sequence[AggregatedHolding], limit: int = TOP_HOLDINGS_LIMIT) -> List[AggregatedHolding]:
    return list(holdings[: max(0, int(limit))])


def search_holdings(holdings: Sequence[AggregatedHolding], query: Optional[str]) -> List[AggregatedHolding]:
    q = (query or "").strip().lower()
    if not q:
        return list(holdings)
    return [h for h in holdings if q in h.ticker.lower() or q in h.display_name.lower()]


def paginate(
    holdings: Sequence[AggregatedHolding],
    page: int = 1,
    per_page: int = HOLDINGS_PER_PAGE,
) -> HoldingsPage:
    per_page = max(1, int(per_page))
    page = max(1, int(page))
    total = len(holdings)
    start = (page - 1) * per_page
    return HoldingsPage(
        page=page,
        per_page=per_page,
        total=total,
        total_pages=math.ceil(total / per_page),
        items=list(holdings[start : start + per_page]),
    )

import math
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx


def to_fraction(x: Any) -> float:
    """
    Parse a provider numeric field ("0.0712", 0.07, None, "n/a") into a float.
    Anything that does not parse to a finite number counts as 0.
    """
    if x is None or isinstance(x, bool):
        return 0.0
    if isinstance(x, Decimal):
        x = float(x)
    try:
        val = float(x.strip()) if isinstance(x, str) else float(x)
    except (TypeError, ValueError):
        return 0.0
    return val if math.isfinite(val) else 0.0


def safe_div(n: float, d: float) -> float:
    return n / d if d else 0.0


def safe_json(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def normalize_ticker(symbol: Optional[str]) -> str:
    return (symbol or "").strip().upper()

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Provider sends numbers as strings ("0.0712"); tolerate floats and junk here,
# parsing happens at aggregation time.
RawNumber = Union[str, float, None]


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _raw_number_or_none(value: Any) -> RawNumber:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    return value


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    NO_HOLDING_DATA = "no_holding_data"
    TRANSPORT = "transport"


class EtfHolding(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbol: Optional[str] = None
    description: Optional[str] = None
    weight: RawNumber = None
    asset_class: Optional[str] = Field(default=None, alias="assets")

    @field_validator("symbol", "description", "asset_class", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> Optional[str]:
        return _text_or_none(v)

    @field_validator("weight", mode="before")
    @classmethod
    def _coerce_weight(cls, v: Any) -> RawNumber:
        return _raw_number_or_none(v)


class SectorWeight(BaseModel):
    model_config = ConfigDict(frozen=True)

    sector: Optional[str] = None
    weight: RawNumber = None

    @field_validator("sector", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> Optional[str]:
        return _text_or_none(v)

    @field_validator("weight", mode="before")
    @classmethod
    def _coerce_weight(cls, v: Any) -> RawNumber:
        return _raw_number_or_none(v)


class EtfProfile(BaseModel):
    """Normalized ETF_PROFILE payload plus the resolved display name."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbol: str
    name: Optional[str] = None
    net_assets: RawNumber = None
    portfolio_turnover: RawNumber = None
    net_expense_ratio: RawNumber = None
    dividend_yield: RawNumber = None
    inception_date: Optional[str] = None
    leveraged: Optional[str] = None
    holdings: List[EtfHolding] = Field(default_factory=list)
    sectors: List[SectorWeight] = Field(default_factory=list)

    @field_validator("inception_date", "leveraged", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> Optional[str]:
        return _text_or_none(v)

    @field_validator("net_assets", "portfolio_turnover", "net_expense_ratio", "dividend_yield", mode="before")
    @classmethod
    def _coerce_numbers(cls, v: Any) -> RawNumber:
        return _raw_number_or_none(v)

    @field_validator("holdings", "sectors", mode="before")
    @classmethod
    def _drop_malformed_rows(cls, v: Any) -> List[Any]:
        if not isinstance(v, list):
            return []
        return [row for row in v if isinstance(row, (dict, BaseModel))]

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name"):
            data = {**data, "name": data.get("symbol")}
        return data

    def to_cache(self) -> dict:
        return self.model_dump(by_alias=True)


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: Any
    timestamp: int  # epoch millis

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from schemas.etf import ErrorKind, EtfProfile


def _normalize_ticker(value: str) -> str:
    ticker = (value or "").strip().upper()
    if not ticker or len(ticker) > 20:
        raise ValueError("ticker must be 1-20 characters")
    return ticker


class PositionCreate(BaseModel):
    ticker: str
    equity: float = Field(ge=0)

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, value: str) -> str:
        return _normalize_ticker(value)


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    ticker: str
    equity: float = Field(ge=0)
    profile: Optional[EtfProfile] = None
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_loading(self) -> bool:
        return self.profile is None and self.error is None

    @property
    def contributes(self) -> bool:
        return self.profile is not None and self.error is None


class AggregatedHolding(BaseModel):
    ticker: str
    display_name: str
    asset_class: Optional[str] = None
    total_value: float
    percentage_of_portfolio: float


class AggregatedSector(BaseModel):
    name: Optional[str]
    total_value: float
    percentage_of_portfolio: float


class PortfolioStats(BaseModel):
    total_equity: float = 0.0
    average_expense_ratio: float = 0.0
    average_dividend_yield: float = 0.0
    total_annual_expense_cost: float = 0.0
    total_annual_dividend_income: float = 0.0
    has_usable_data: bool = False


class PortfolioSummary(BaseModel):
    stats: PortfolioStats
    holdings: List[AggregatedHolding] = Field(default_factory=list)
    sectors: List[AggregatedSector] = Field(default_factory=list)


class HoldingsPage(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int
    items: List[AggregatedHolding] = Field(default_factory=list)

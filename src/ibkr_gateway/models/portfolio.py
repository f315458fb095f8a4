"""Portfolio and account domain models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PositionSummary(BaseModel):
    symbol: str | None = None
    quantity: float | None = None
    market_value: float = 0.0
    unrealized_pnl: float = 0.0
    pnl_percent: float = 0.0


class SecTypeBucket(BaseModel):
    count: int = 0
    value: float = 0.0


class PortfolioSummary(BaseModel):
    account_id: str | None = None
    total_value: float = 0.0
    total_pnl: float = 0.0
    daily_pnl: float = 0.0
    position_count: int = 0
    by_sec_type: dict[str, SecTypeBucket] = Field(default_factory=dict)
    top_positions: list[PositionSummary] = Field(default_factory=list)

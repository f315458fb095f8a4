"""Contract and option-chain domain models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class SecType(str, Enum):
    STK = "STK"
    OPT = "OPT"
    FUT = "FUT"
    CASH = "CASH"
    BOND = "BOND"


class Right(str, Enum):
    CALL = "C"
    PUT = "P"


class Contract(BaseModel):
    conid: int
    symbol: str
    sec_type: SecType | None = None
    description: str | None = None
    currency: str | None = None
    exchange: str | None = None


class Expiration(BaseModel):
    month: str
    call_strikes: list[float] = Field(default_factory=list)
    put_strikes: list[float] = Field(default_factory=list)

    def strikes(self, right: Right) -> list[float]:
        return self.call_strikes if right is Right.CALL else self.put_strikes


class OptionChain(BaseModel):
    symbol: str
    underlying_conid: int
    expirations: list[Expiration] = Field(default_factory=list)


class OptionContract(BaseModel):
    """Approximate option selection; strike is the listed strike nearest the request."""

    symbol: str
    expiration: str
    strike: float
    right: Right
    underlying_conid: int
    approximate: bool = True
    delta_ignored: bool = False

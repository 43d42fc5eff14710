"""Inbound alert payload validation and control request bodies."""

from __future__ import annotations

import re
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from apps.lifecycle.models import AlertEvent, Direction

SYMBOL_PATTERN = re.compile(r"^[A-Z][A-Z0-9.\-/:!]{0,19}$")


def normalize_symbol(raw: Any) -> str:
    """Trim and uppercase a raw symbol, rejecting anything that is not a ticker."""
    if not isinstance(raw, str):
        raise ValueError("symbol must be a string")
    symbol = raw.strip().upper()
    if not SYMBOL_PATTERN.fullmatch(symbol):
        raise ValueError(f"invalid symbol: {raw!r}")
    return symbol


class TickerPayload(BaseModel):
    """
    Body of `POST /notify`.

    Browser extensions and bridges send `{"ticker": "...", "highPriority": true}`;
    `symbol` is accepted as an alias for `ticker`.
    """

    model_config = ConfigDict(populate_by_name=True)

    symbol: str = Field(validation_alias=AliasChoices("ticker", "symbol"))
    high_priority: bool = Field(
        False, validation_alias=AliasChoices("highPriority", "high_priority")
    )

    @field_validator("symbol", mode="before")
    @classmethod
    def validate_symbol(cls, v: Any) -> str:
        return normalize_symbol(v)

    @field_validator("high_priority", mode="before")
    @classmethod
    def default_missing_priority(cls, v: Any) -> Any:
        return False if v is None else v

    def to_event(self) -> AlertEvent:
        return AlertEvent(symbol=self.symbol, is_high_priority=self.high_priority)


class SymbolRequest(BaseModel):
    symbol: str

    @field_validator("symbol", mode="before")
    @classmethod
    def validate_symbol(cls, v: Any) -> str:
        return normalize_symbol(v)


class DirectionRequest(BaseModel):
    direction: Direction


class ForegroundRequest(BaseModel):
    is_foreground: bool


__all__ = [
    "DirectionRequest",
    "ForegroundRequest",
    "SYMBOL_PATTERN",
    "SymbolRequest",
    "TickerPayload",
    "normalize_symbol",
]

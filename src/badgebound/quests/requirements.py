"""Quest requirement payloads as a closed, discriminated union.

Requirements are stored as JSON on the quest row. parse_requirement() turns
that JSON into one of the models below and never raises: anything it cannot
read becomes an UnknownRequirement, which always evaluates to not-met.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class TransferDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"
    BOTH = "BOTH"


class _Requirement(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SwapVolume(_Requirement):
    type: Literal["SWAP_VOLUME"] = "SWAP_VOLUME"
    protocol: str
    min_volume: float = Field(alias="minVolume", ge=0)
    token: str | None = None


class SwapCount(_Requirement):
    type: Literal["SWAP_COUNT"] = "SWAP_COUNT"
    protocol: str
    min_count: int = Field(alias="minCount", ge=0)


class LpHoldDays(_Requirement):
    type: Literal["LP_HOLD_DAYS"] = "LP_HOLD_DAYS"
    protocol: str
    min_amount: float = Field(alias="minAmount", ge=0)
    days: int = Field(ge=0)


class HbarTransferCount(_Requirement):
    type: Literal["HBAR_TRANSFER_COUNT"] = "HBAR_TRANSFER_COUNT"
    min_count: int = Field(alias="minCount", ge=0)
    direction: TransferDirection = TransferDirection.BOTH


class StakeMinAmount(_Requirement):
    type: Literal["STAKE_MIN_AMOUNT"] = "STAKE_MIN_AMOUNT"
    min_amount: float = Field(alias="minAmount", ge=0)
    protocol: str | None = None


class SeasonLevelAtLeast(_Requirement):
    type: Literal["SEASON_LEVEL_AT_LEAST"] = "SEASON_LEVEL_AT_LEAST"
    min_level: int = Field(alias="minLevel", ge=1)


class UnknownRequirement(_Requirement):
    """Fallback for unsupported types and malformed payloads."""

    type: str = "UNKNOWN"
    raw: dict[str, Any] = Field(default_factory=dict)


KnownRequirement = Annotated[
    Union[
        SwapVolume,
        SwapCount,
        LpHoldDays,
        HbarTransferCount,
        StakeMinAmount,
        SeasonLevelAtLeast,
    ],
    Field(discriminator="type"),
]

Requirement = Union[
    SwapVolume,
    SwapCount,
    LpHoldDays,
    HbarTransferCount,
    StakeMinAmount,
    SeasonLevelAtLeast,
    UnknownRequirement,
]

KNOWN_REQUIREMENT_TYPES: tuple[type[_Requirement], ...] = (
    SwapVolume,
    SwapCount,
    LpHoldDays,
    HbarTransferCount,
    StakeMinAmount,
    SeasonLevelAtLeast,
)

_adapter: TypeAdapter[Any] = TypeAdapter(KnownRequirement)


def parse_requirement(raw: Any) -> Requirement:
    """Parse a stored requirement payload. Never raises."""
    if not isinstance(raw, dict):
        return UnknownRequirement(type="INVALID", raw={"value": raw})
    try:
        return _adapter.validate_python(raw)
    except ValidationError as exc:
        req_type = str(raw.get("type") or "UNKNOWN")
        logger.debug("Unreadable requirement %s: %s", req_type, exc.errors())
        return UnknownRequirement(type=req_type, raw=dict(raw))

"""Pydantic models for optimistic row mutations."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class _Missing:
    """Marker for a row field that did not exist before a mutation."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<MISSING>"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Missing":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_Missing":
        return self


MISSING = _Missing()


class MutationStatus(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class AggregateDelta(BaseModel):
    """Adjustment of a cross-entity count, e.g. a wishlist's item count."""

    key: str = Field(..., description="Counter name, e.g. a wishlist id")
    delta: int = Field(..., description="Requested change; the applied change may be clamped")


class MutationIntent(BaseModel):
    """Everything needed to reverse one optimistic field change exactly."""

    target: str = Field(..., description="Row key the mutation applies to")
    field: str
    next_value: Any = None
    previous_value: Any = None

    model_config = {"frozen": True}


class MutationOutcome(BaseModel):
    """Final result of an optimistic mutation once the server has answered."""

    intents: List[MutationIntent] = Field(default_factory=list)
    status: MutationStatus = MutationStatus.PENDING
    error: Optional[str] = None
    authoritative: Dict[str, Any] = Field(
        default_factory=dict,
        description="Fields the server returned and that overwrote the optimistic guess",
    )

    @property
    def committed(self) -> bool:
        return self.status == MutationStatus.COMMITTED

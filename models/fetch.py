"""Pydantic models for paginated list fetches."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from utils.helpers import page_count


class FetchRequest(BaseModel):
    """Immutable snapshot of a FilterState tagged with its sequence number."""

    seq: int = Field(..., ge=1)
    state: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class FetchResult(BaseModel):
    """One page of a filtered collection as returned by the list endpoint."""

    items: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=25, ge=1, alias="pageSize")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def page_count(self) -> int:
        return page_count(self.total, self.page_size)


class FetchSnapshot(BaseModel):
    """What a list view renders: the last good page plus loading / error flags."""

    items: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 25
    is_loading: bool = False
    error: Optional[str] = None

    @property
    def page_count(self) -> int:
        return page_count(self.total, self.page_size)

"""Search request/response shapes."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

SearchType = Literal["deals", "contacts", "proposals"]
SearchDateRange = Literal["all", "7d", "30d", "90d"]

SEARCH_TYPES: tuple[SearchType, ...] = ("deals", "contacts", "proposals")
DATE_RANGE_DAYS: dict[str, int] = {"7d": 7, "30d": 30, "90d": 90}


class SearchFiltersInput(BaseModel):
    """Raw filters as sent by clients; anything may be missing or malformed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    types: Any = None
    stages: Any = None
    statuses: Any = None
    date_range: Any = Field(default=None, alias="dateRange")


class NormalizedSearchFilters(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    types: tuple[SearchType, ...]
    stages: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    date_range: SearchDateRange = Field(default="all", alias="dateRange")


class DealContact(BaseModel):
    full_name: str | None = None
    company: str | None = None


class ProposalContact(BaseModel):
    full_name: str | None = None


class DealResult(BaseModel):
    id: str
    title: str
    value: float = 0
    currency: str = "TRY"
    stage: str
    updated_at: datetime
    contact: DealContact | None = None


class ContactResult(BaseModel):
    id: str
    full_name: str
    email: str | None = None
    company: str | None = None
    updated_at: datetime


class ProposalResult(BaseModel):
    id: str
    title: str
    status: str
    updated_at: datetime
    contact: ProposalContact | None = None


class SearchResults(BaseModel):
    deals: list[DealResult] = Field(default_factory=list)
    contacts: list[ContactResult] = Field(default_factory=list)
    proposals: list[ProposalResult] = Field(default_factory=list)


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: str | None = ""
    filters: SearchFiltersInput | None = None
    track: bool = False


class SearchResponse(BaseModel):
    query: str
    results: SearchResults = Field(default_factory=SearchResults)


class SavedSearchCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    query: str
    filters: SearchFiltersInput | None = None

    @field_validator("name", "query")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class SavedSearch(BaseModel):
    id: UUID
    name: str
    query: str
    filters: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime


class SearchHistoryEntry(BaseModel):
    id: UUID
    query: str
    filters: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SearchMeta(BaseModel):
    """Shortcuts shown before the user types: latest saved searches and recent distinct queries."""

    saved: list[SavedSearch] = Field(default_factory=list)
    history: list[SearchHistoryEntry] = Field(default_factory=list)

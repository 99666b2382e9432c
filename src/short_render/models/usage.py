"""Usage ledger models for short-render.

A UsageEntry is one billed call against an external service. Entries for
a calendar day are kept together in a DailyUsageLog alongside running
per-service totals. The JSON shape matches what the dashboard reads from
the usage-log store, hence the camelCase aliases.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Service(str, Enum):
    """External services whose calls are metered."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    ELEVENLABS = "elevenlabs"
    HEYGEN = "heygen"
    GOOGLE_CLOUD = "googleCloud"
    SHOTSTACK = "shotstack"  # Render submissions
    COBALT = "cobalt"  # Locator attempts


class UsageEntry(BaseModel):
    """One billed operation against an external service. Immutable."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    service: Service
    operation: str  # e.g. "script-generation", "voice-synthesis"
    requests: int = Field(default=1, ge=1)
    cost: float = Field(default=0.0, ge=0)
    tokens: int | None = Field(default=None, ge=0)
    characters: int | None = Field(default=None, ge=0)
    model: str | None = None


class ServiceCounters(BaseModel):
    """Aggregated counters for one service.

    tokens and characters stay None until an entry carrying them arrives,
    so services that never report them keep them absent in the JSON.
    """

    requests: int = 0
    cost: float = 0.0
    tokens: int | None = None
    characters: int | None = None

    def add(
        self,
        requests: int = 0,
        cost: float = 0.0,
        tokens: int | None = None,
        characters: int | None = None,
    ) -> None:
        """Fold one set of quantities into these counters."""
        self.requests += requests
        self.cost += cost
        if tokens is not None:
            self.tokens = (self.tokens or 0) + tokens
        if characters is not None:
            self.characters = (self.characters or 0) + characters

    def add_entry(self, entry: UsageEntry) -> None:
        """Fold a usage entry into these counters."""
        self.add(entry.requests, entry.cost, entry.tokens, entry.characters)

    @property
    def is_zero(self) -> bool:
        """True if nothing has been counted."""
        return (
            self.requests == 0
            and self.cost == 0
            and not self.tokens
            and not self.characters
        )


def empty_totals() -> dict[Service, ServiceCounters]:
    """Zeroed counters for every metered service."""
    return {service: ServiceCounters() for service in Service}


class DailyUsageLog(BaseModel):
    """All usage entries recorded for one calendar day.

    Lifecycle: absent -> created empty on first read or write -> appended
    to any number of times. Logs are never closed or deleted here.
    """

    model_config = ConfigDict(populate_by_name=True)

    day: date = Field(alias="date")
    entries: list[UsageEntry] = Field(default_factory=list)
    totals: dict[Service, ServiceCounters] = Field(default_factory=empty_totals)
    last_updated: datetime = Field(default_factory=utc_now, alias="lastUpdated")

    @classmethod
    def empty(cls, day: date) -> "DailyUsageLog":
        """Create an empty log for the given day."""
        return cls(day=day)

    def append(self, entry: UsageEntry) -> None:
        """Append an entry and fold it into the totals."""
        self.entries.append(entry)
        self.totals.setdefault(entry.service, ServiceCounters()).add_entry(entry)
        self.last_updated = utc_now()

    def to_json_dict(self) -> dict:
        """Serialize to the store's JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

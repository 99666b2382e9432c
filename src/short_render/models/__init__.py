"""Data models for short-render.

Pydantic models for the usage ledger's persisted records.
"""

from __future__ import annotations

from short_render.models.usage import (
    DailyUsageLog,
    Service,
    ServiceCounters,
    UsageEntry,
    empty_totals,
)

__all__ = [
    "DailyUsageLog",
    "Service",
    "ServiceCounters",
    "UsageEntry",
    "empty_totals",
]

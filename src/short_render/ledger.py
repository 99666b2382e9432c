"""Usage ledger: per-day records of every billed third-party call.

Each day's entries live in one JSON object in the usage-log store, keyed
``usage-logs/daily/<YYYY-MM-DD>.json``, alongside running per-service
totals. Monthly figures are always derived by re-reading the month's
daily logs, never stored, so they cannot drift from the daily data.

Recording is best-effort: a store that cannot be read or written is
logged and otherwise ignored, because billing visibility must never stop
a video from being produced.

Known race: record() is a read-modify-write of the whole daily object
and the store offers no conditional writes. Writers in one process are
serialized per date, but two processes recording on the same date can
still lose an entry (last write wins).
"""

from __future__ import annotations

import asyncio
import calendar
import math
import re
import weakref
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Iterable

from pydantic import ValidationError as PydanticValidationError

from short_render.config import ServiceLimit, default_service_limits
from short_render.errors import ConfigurationError, StorageError, ValidationError
from short_render.logging import get_logger
from short_render.models.usage import (
    DailyUsageLog,
    Service,
    ServiceCounters,
    UsageEntry,
    empty_totals,
    utc_now,
)
from short_render.storage import ObjectStore, daily_log_key

logger = get_logger(__name__)

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


class ServiceStatus(str, Enum):
    """Health of a service relative to its quota."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class CapacityReport:
    """What is left of the bottleneck service's quota this month."""

    service: Service
    units_remaining: float
    estimated_items_remaining: int
    days_until_reset: int

    def to_dict(self) -> dict:
        return {
            "service": self.service.value,
            "units_remaining": self.units_remaining,
            "estimated_items_remaining": self.estimated_items_remaining,
            "days_until_reset": self.days_until_reset,
        }


@dataclass
class UsageReport:
    """Daily and month-to-date usage with per-service status."""

    day: date
    daily: dict[Service, ServiceCounters]
    monthly: dict[Service, ServiceCounters]
    statuses: dict[Service, ServiceStatus] = field(default_factory=dict)
    capacity: CapacityReport | None = None

    @property
    def daily_cost(self) -> float:
        return sum(c.cost for c in self.daily.values())

    @property
    def monthly_cost(self) -> float:
        return sum(c.cost for c in self.monthly.values())


def parse_month(year_month: str) -> tuple[int, int]:
    """Parse "YYYY-MM" into (year, month).

    Raises:
        ValidationError: If the string is not a valid month
    """
    match = _MONTH_PATTERN.match(year_month)
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValidationError(f"Invalid month: {year_month!r}, expected YYYY-MM")
    return int(match.group(1)), int(match.group(2))


def days_until_month_end(day: date) -> int:
    """Whole days from day to the last day of its month."""
    return calendar.monthrange(day.year, day.month)[1] - day.day


class UsageLedger:
    """Records and aggregates usage entries against a key-object store.

    Example:
        ledger = UsageLedger(store, settings.limits)
        await ledger.record_usage(Service.OPENAI, "script-generation",
                                  cost=0.045, tokens=1500)
        totals = await ledger.monthly_totals("2024-02")
        ledger.status(Service.HEYGEN, 7)  # ServiceStatus.WARNING
    """

    def __init__(
        self,
        store: ObjectStore,
        limits: Iterable[ServiceLimit] | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the ledger.

        Args:
            store: Where daily logs are kept
            limits: Quota table; the free-plan defaults when omitted
            clock: Returns the current time (UTC) for default dates
        """
        self.store = store
        self.limits: dict[Service, ServiceLimit] = {
            limit.service: limit
            for limit in (default_service_limits() if limits is None else limits)
        }
        self._clock = clock
        # Entries vanish once no writer holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[date, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def _lock_for(self, day: date) -> asyncio.Lock:
        lock = self._locks.get(day)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[day] = lock
        return lock

    async def _load(self, day: date) -> DailyUsageLog:
        """Read a day's log, or an empty one if none exists yet.

        Raises:
            StorageError: If the store fails or holds an invalid log
        """
        data = await self.store.get(daily_log_key(day))
        if data is None:
            return DailyUsageLog.empty(day)
        try:
            return DailyUsageLog.model_validate(data)
        except PydanticValidationError as e:
            raise StorageError(
                f"Corrupt usage log for {day.isoformat()}",
                context={"errors": e.error_count()},
            ) from e

    async def record(self, entry: UsageEntry, day: date | None = None) -> bool:
        """Append an entry to a day's log and update its totals.

        Args:
            entry: Usage entry to record
            day: Log to append to; the entry's UTC date when omitted

        Returns:
            True if the log was written, False if the store failed
        """
        day = day or entry.timestamp.astimezone(timezone.utc).date()

        async with self._lock_for(day):
            try:
                log = await self._load(day)
                log.append(entry)
                await self.store.put(daily_log_key(day), log.to_json_dict())
            except StorageError as e:
                logger.error(
                    f"Failed to record {entry.service.value} usage for {day.isoformat()}",
                    extra={"error": str(e), "operation": entry.operation},
                )
                return False

        logger.info(
            f"Recorded {entry.service.value} usage: ${entry.cost:.4f}",
            extra={"operation": entry.operation, "date": day.isoformat()},
        )
        return True

    async def record_usage(
        self,
        service: Service,
        operation: str,
        *,
        cost: float,
        requests: int = 1,
        tokens: int | None = None,
        characters: int | None = None,
        model: str | None = None,
    ) -> bool:
        """Build a UsageEntry timestamped now and record it."""
        entry = UsageEntry(
            timestamp=self._clock(),
            service=service,
            operation=operation,
            requests=requests,
            cost=cost,
            tokens=tokens,
            characters=characters,
            model=model,
        )
        return await self.record(entry)

    async def daily_log(self, day: date) -> DailyUsageLog:
        """Full log for a day; empty if missing or unreadable."""
        try:
            return await self._load(day)
        except StorageError as e:
            logger.warning(
                f"Could not read usage log for {day.isoformat()}",
                extra={"error": str(e)},
            )
            return DailyUsageLog.empty(day)

    async def daily_totals(self, day: date) -> dict[Service, ServiceCounters]:
        """Per-service totals for a day, zero-filled for every service."""
        log = await self.daily_log(day)
        totals = empty_totals()
        totals.update({service: counters.model_copy() for service, counters in log.totals.items()})
        return totals

    async def monthly_totals(self, year_month: str) -> dict[Service, ServiceCounters]:
        """Sum every day's totals for a month.

        Days without a log contribute nothing. Each counter is summed
        independently, so tokens and characters are always present.

        Args:
            year_month: Month as "YYYY-MM"

        Raises:
            ValidationError: If year_month is malformed
        """
        year, month = parse_month(year_month)
        days_in_month = calendar.monthrange(year, month)[1]
        daily = await asyncio.gather(
            *(self.daily_totals(date(year, month, d)) for d in range(1, days_in_month + 1))
        )

        monthly = {service: ServiceCounters(tokens=0, characters=0) for service in Service}
        for totals in daily:
            for service, counters in totals.items():
                monthly[service].add(
                    requests=counters.requests,
                    cost=counters.cost,
                    tokens=counters.tokens or 0,
                    characters=counters.characters or 0,
                )
        return monthly

    def limit_for(self, service: Service) -> ServiceLimit:
        """Quota configuration of a service.

        Raises:
            ConfigurationError: If the service has no configured limit
        """
        try:
            return self.limits[service]
        except KeyError:
            raise ConfigurationError(
                f"No usage limit configured for {service.value}"
            ) from None

    def usage_percentage(self, service: Service, current_usage: float) -> float:
        return current_usage / self.limit_for(service).quota * 100

    def status(self, service: Service, current_usage: float) -> ServiceStatus:
        """Classify usage against the service's thresholds.

        Args:
            service: Service to check
            current_usage: Usage in the service's quota units

        Returns:
            CRITICAL at or above the critical threshold (90% of quota by
            default), WARNING at or above the warning threshold (75%),
            OK otherwise
        """
        limit = self.limit_for(service)
        if current_usage >= limit.critical_threshold:
            return ServiceStatus.CRITICAL
        if current_usage >= limit.warning_threshold:
            return ServiceStatus.WARNING
        return ServiceStatus.OK

    @property
    def bottleneck(self) -> ServiceLimit:
        """The service whose quota caps total throughput.

        Raises:
            ConfigurationError: If no service is flagged as the bottleneck
        """
        for limit in self.limits.values():
            if limit.is_bottleneck:
                return limit
        raise ConfigurationError("No bottleneck service configured")

    def remaining_capacity(
        self,
        used: float | None = None,
        today: date | None = None,
    ) -> CapacityReport:
        """Estimate how many more items the bottleneck quota allows.

        Args:
            used: Quota units spent so far; the configured current_used
                when omitted
            today: Reference date for the reset countdown

        Returns:
            CapacityReport for the bottleneck service
        """
        limit = self.bottleneck
        used = limit.current_used if used is None else used
        units_remaining = max(0.0, limit.quota - used)
        if limit.cost_per_unit > 0:
            items = math.floor(units_remaining / limit.cost_per_unit)
        else:
            items = 0
        return CapacityReport(
            service=limit.service,
            units_remaining=units_remaining,
            estimated_items_remaining=items,
            days_until_reset=days_until_month_end(today or self.today()),
        )

    async def usage_report(self, today: date | None = None) -> UsageReport:
        """Today's and month-to-date usage with quota status per service."""
        today = today or self.today()
        daily = await self.daily_totals(today)
        monthly = await self.monthly_totals(f"{today.year:04d}-{today.month:02d}")

        statuses = {}
        for service, limit in self.limits.items():
            used = limit.current_used + limit.usage_units(monthly[service])
            statuses[service] = self.status(service, used)

        capacity = None
        if any(limit.is_bottleneck for limit in self.limits.values()):
            limit = self.bottleneck
            capacity = self.remaining_capacity(
                used=limit.current_used + limit.usage_units(monthly[limit.service]),
                today=today,
            )

        return UsageReport(
            day=today,
            daily=daily,
            monthly=monthly,
            statuses=statuses,
            capacity=capacity,
        )

"""Tests for the usage ledger."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from short_render.config import ServiceLimit, default_service_limits
from short_render.errors import ConfigurationError, StorageError, ValidationError
from short_render.ledger import (
    ServiceStatus,
    UsageLedger,
    days_until_month_end,
    parse_month,
)
from short_render.models.usage import DailyUsageLog, Service, UsageEntry
from short_render.storage import (
    LocalObjectStore,
    MemoryObjectStore,
    ObjectStore,
    daily_log_key,
)

NOW = datetime(2024, 2, 5, 14, 30, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


class FailingStore(ObjectStore):
    """Store whose every call fails."""

    def __init__(self):
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise StorageError("bucket unreachable")

    async def put(self, key, data):
        self.calls += 1
        raise StorageError("bucket unreachable")


@pytest.fixture
def store():
    return MemoryObjectStore()


@pytest.fixture
def ledger(store):
    return UsageLedger(store, clock=fixed_clock)


class TestParseMonth:
    """Tests for month string parsing."""

    def test_valid(self):
        assert parse_month("2024-02") == (2024, 2)

    @pytest.mark.parametrize("value", ["2024-13", "2024-00", "2024-2", "24-02", "February", ""])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_month(value)

    def test_days_until_month_end(self):
        assert days_until_month_end(date(2024, 2, 5)) == 24
        assert days_until_month_end(date(2024, 1, 31)) == 0


class TestRecord:
    """Tests for recording usage."""

    @pytest.mark.asyncio
    async def test_record_creates_daily_log(self, ledger, store):
        written = await ledger.record_usage(
            Service.OPENAI, "script-generation", cost=0.045, tokens=1500, model="gpt-4o"
        )

        assert written is True
        assert daily_log_key(date(2024, 2, 5)) in store

        log = await ledger.daily_log(date(2024, 2, 5))
        assert len(log.entries) == 1
        assert log.entries[0].model == "gpt-4o"
        assert log.totals[Service.OPENAI].requests == 1
        assert log.totals[Service.OPENAI].tokens == 1500

    @pytest.mark.asyncio
    async def test_record_accumulates(self, ledger):
        await ledger.record_usage(Service.OPENAI, "script-generation", cost=0.25, tokens=100)
        await ledger.record_usage(Service.OPENAI, "script-generation", cost=0.25, requests=2)

        totals = await ledger.daily_totals(date(2024, 2, 5))

        assert totals[Service.OPENAI].requests == 3
        assert totals[Service.OPENAI].cost == pytest.approx(0.50)
        assert totals[Service.OPENAI].tokens == 100

    @pytest.mark.asyncio
    async def test_optional_counters_are_lazy(self, ledger, store):
        """Test tokens/characters appear only once a service reports them."""
        await ledger.record_usage(Service.HEYGEN, "avatar-video", cost=0.0)
        await ledger.record_usage(Service.ELEVENLABS, "voice-synthesis", cost=0.0, characters=420)

        stored = await store.get(daily_log_key(date(2024, 2, 5)))

        assert "tokens" not in stored["totals"]["heygen"]
        assert "characters" not in stored["totals"]["heygen"]
        assert stored["totals"]["elevenlabs"]["characters"] == 420
        assert stored["date"] == "2024-02-05"
        assert "lastUpdated" in stored

    @pytest.mark.asyncio
    async def test_record_uses_entry_utc_date(self, ledger):
        entry = UsageEntry(
            timestamp=datetime(2024, 3, 1, 0, 30, tzinfo=timezone.utc),
            service=Service.GOOGLE_CLOUD,
            operation="tts",
            cost=0.01,
        )

        await ledger.record(entry)

        totals = await ledger.daily_totals(date(2024, 3, 1))
        assert totals[Service.GOOGLE_CLOUD].requests == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self):
        failing = FailingStore()
        ledger = UsageLedger(failing, clock=fixed_clock)

        written = await ledger.record_usage(Service.OPENAI, "script-generation", cost=0.1)

        assert written is False
        assert failing.calls == 1

    @pytest.mark.asyncio
    async def test_corrupt_log_is_not_overwritten(self, ledger, store):
        key = daily_log_key(date(2024, 2, 5))
        await store.put(key, {"date": "not a date"})

        written = await ledger.record_usage(Service.OPENAI, "script-generation", cost=0.1)

        assert written is False
        assert await store.get(key) == {"date": "not a date"}

    @pytest.mark.asyncio
    async def test_undecodable_log_is_not_overwritten(self, tmp_path):
        path = tmp_path / daily_log_key(date(2024, 2, 5))
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\xff\xfe")
        ledger = UsageLedger(LocalObjectStore(tmp_path), clock=fixed_clock)

        written = await ledger.record_usage(Service.OPENAI, "script-generation", cost=0.1)
        totals = await ledger.daily_totals(date(2024, 2, 5))

        assert written is False
        assert all(counters.is_zero for counters in totals.values())
        assert path.read_bytes() == b"\xff\xfe"

    @pytest.mark.asyncio
    async def test_concurrent_records_are_all_kept(self, tmp_path):
        """Test writers racing on one date do not lose entries."""
        ledger = UsageLedger(LocalObjectStore(tmp_path), clock=fixed_clock)
        entry = UsageEntry(
            timestamp=NOW,
            service=Service.OPENAI,
            operation="script-generation",
            cost=0.01,
            tokens=10,
        )

        results = await asyncio.gather(*(ledger.record(entry) for _ in range(20)))

        assert all(results)
        log = DailyUsageLog.model_validate(
            await ledger.store.get(daily_log_key(date(2024, 2, 5)))
        )
        assert len(log.entries) == 20
        totals = await ledger.daily_totals(date(2024, 2, 5))
        assert totals[Service.OPENAI].requests == 20
        assert totals[Service.OPENAI].cost == pytest.approx(0.20)
        assert totals[Service.OPENAI].tokens == 200

    @pytest.mark.asyncio
    async def test_date_locks_are_released(self, ledger):
        await asyncio.gather(
            ledger.record_usage(Service.OPENAI, "script-generation", cost=0.1),
            ledger.record(
                UsageEntry(
                    timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc),
                    service=Service.HEYGEN,
                    operation="avatar-video",
                )
            ),
        )

        assert len(ledger._locks) == 0

    def test_entry_validation(self):
        with pytest.raises(ValueError):
            UsageEntry(service=Service.OPENAI, operation="x", requests=0)
        with pytest.raises(ValueError):
            UsageEntry(service=Service.OPENAI, operation="x", cost=-1)


class TestTotals:
    """Tests for daily and monthly aggregation."""

    @pytest.mark.asyncio
    async def test_daily_totals_missing_day(self, ledger):
        totals = await ledger.daily_totals(date(2024, 2, 6))

        assert set(totals) == set(Service)
        assert all(counters.is_zero for counters in totals.values())

    @pytest.mark.asyncio
    async def test_daily_totals_store_failure(self):
        ledger = UsageLedger(FailingStore(), clock=fixed_clock)

        totals = await ledger.daily_totals(date(2024, 2, 5))

        assert all(counters.is_zero for counters in totals.values())

    @pytest.mark.asyncio
    async def test_daily_totals_idempotent(self, ledger):
        await ledger.record_usage(Service.OPENAI, "script-generation", cost=0.3, tokens=50)

        first = await ledger.daily_totals(date(2024, 2, 5))
        second = await ledger.daily_totals(date(2024, 2, 5))

        assert first == second

    @pytest.mark.asyncio
    async def test_daily_totals_returns_copies(self, ledger):
        await ledger.record_usage(Service.OPENAI, "script-generation", cost=0.3)

        totals = await ledger.daily_totals(date(2024, 2, 5))
        totals[Service.OPENAI].add(requests=10)

        again = await ledger.daily_totals(date(2024, 2, 5))
        assert again[Service.OPENAI].requests == 1

    @pytest.mark.asyncio
    async def test_monthly_totals_single_day(self, ledger, store):
        """Test missing days in a month contribute zero."""
        log = DailyUsageLog.empty(date(2024, 2, 5))
        log.totals[Service.OPENAI].add(requests=2, cost=0.50)
        await store.put(daily_log_key(date(2024, 2, 5)), log.to_json_dict())

        monthly = await ledger.monthly_totals("2024-02")

        assert monthly[Service.OPENAI].requests == 2
        assert monthly[Service.OPENAI].cost == pytest.approx(0.50)
        for service in Service:
            if service is not Service.OPENAI:
                assert monthly[service].requests == 0
                assert monthly[service].cost == 0

    @pytest.mark.asyncio
    async def test_monthly_totals_sums_days(self, ledger):
        for day in (1, 15, 29):
            entry = UsageEntry(
                timestamp=datetime(2024, 2, day, 12, tzinfo=timezone.utc),
                service=Service.ELEVENLABS,
                operation="voice-synthesis",
                characters=100,
            )
            await ledger.record(entry)

        monthly = await ledger.monthly_totals("2024-02")

        assert monthly[Service.ELEVENLABS].requests == 3
        assert monthly[Service.ELEVENLABS].characters == 300
        assert monthly[Service.ELEVENLABS].tokens == 0

    @pytest.mark.asyncio
    async def test_monthly_totals_ignores_other_months(self, ledger):
        entry = UsageEntry(
            timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc),
            service=Service.OPENAI,
            operation="script-generation",
            cost=1.0,
        )
        await ledger.record(entry)

        monthly = await ledger.monthly_totals("2024-02")

        assert monthly[Service.OPENAI].is_zero

    @pytest.mark.asyncio
    async def test_monthly_totals_invalid_month(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.monthly_totals("2024-2")


class TestStatus:
    """Tests for quota status classification."""

    @pytest.mark.parametrize(
        "used, expected",
        [
            (9, ServiceStatus.CRITICAL),
            (10, ServiceStatus.CRITICAL),
            (7, ServiceStatus.WARNING),
            (8.5, ServiceStatus.WARNING),
            (1, ServiceStatus.OK),
            (6.5, ServiceStatus.OK),
        ],
    )
    def test_heygen_thresholds(self, ledger, used, expected):
        assert ledger.status(Service.HEYGEN, used) == expected

    def test_default_thresholds_are_fractions_of_quota(self):
        limit = ServiceLimit(service=Service.OPENAI, monthly_budget=100)
        ledger = UsageLedger(MemoryObjectStore(), [limit])

        assert ledger.status(Service.OPENAI, 74) == ServiceStatus.OK
        assert ledger.status(Service.OPENAI, 75) == ServiceStatus.WARNING
        assert ledger.status(Service.OPENAI, 90) == ServiceStatus.CRITICAL

    def test_usage_percentage(self, ledger):
        assert ledger.usage_percentage(Service.HEYGEN, 5) == pytest.approx(50.0)

    def test_unlimited_service(self, ledger):
        with pytest.raises(ConfigurationError):
            ledger.status(Service.SHOTSTACK, 1)

    def test_limits_are_per_instance(self):
        """Test two ledgers with different quota tables do not interfere."""
        tight = ServiceLimit(service=Service.HEYGEN, monthly_credits=2, is_bottleneck=True)
        tight_ledger = UsageLedger(MemoryObjectStore(), [tight])
        default_ledger = UsageLedger(MemoryObjectStore())

        assert tight_ledger.status(Service.HEYGEN, 2) == ServiceStatus.CRITICAL
        assert default_ledger.status(Service.HEYGEN, 2) == ServiceStatus.OK


class TestRemainingCapacity:
    """Tests for bottleneck capacity estimation."""

    def test_bottleneck_is_heygen(self, ledger):
        assert ledger.bottleneck.service == Service.HEYGEN

    def test_remaining_capacity(self, ledger):
        report = ledger.remaining_capacity(used=3, today=date(2024, 2, 5))

        assert report.service == Service.HEYGEN
        assert report.units_remaining == 7
        assert report.estimated_items_remaining == 14
        assert report.days_until_reset == 24

    def test_remaining_capacity_uses_configured_usage(self):
        limits = [
            limit.model_copy(update={"current_used": 9.5}) if limit.is_bottleneck else limit
            for limit in default_service_limits()
        ]
        ledger = UsageLedger(MemoryObjectStore(), limits, clock=fixed_clock)

        report = ledger.remaining_capacity()

        assert report.units_remaining == pytest.approx(0.5)
        assert report.estimated_items_remaining == 1
        assert report.days_until_reset == 24

    def test_overspent_quota_clamps_to_zero(self, ledger):
        report = ledger.remaining_capacity(used=12, today=date(2024, 2, 5))

        assert report.units_remaining == 0
        assert report.estimated_items_remaining == 0

    def test_no_bottleneck(self):
        ledger = UsageLedger(MemoryObjectStore(), [ServiceLimit(service=Service.OPENAI, monthly_budget=5)])

        with pytest.raises(ConfigurationError):
            ledger.remaining_capacity()


class TestUsageReport:
    """Tests for the combined daily/monthly report."""

    @pytest.mark.asyncio
    async def test_usage_report(self, ledger):
        for _ in range(14):
            await ledger.record_usage(Service.HEYGEN, "avatar-video", cost=0.0)
        await ledger.record_usage(Service.OPENAI, "script-generation", cost=1.25)

        report = await ledger.usage_report()

        assert report.day == date(2024, 2, 5)
        assert report.daily[Service.HEYGEN].requests == 14
        assert report.monthly_cost == pytest.approx(1.25)
        assert report.daily_cost == pytest.approx(1.25)
        # 14 clips at 0.5 credits each
        assert report.statuses[Service.HEYGEN] == ServiceStatus.WARNING
        assert report.statuses[Service.OPENAI] == ServiceStatus.OK
        assert Service.SHOTSTACK not in report.statuses
        assert report.capacity.units_remaining == pytest.approx(3.0)
        assert report.capacity.estimated_items_remaining == 6

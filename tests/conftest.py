"""
Shared test fixtures and in-memory stores.

``FakeStore`` implements the reading, tariff and meter store interfaces
over plain lists so that services and routes can be exercised without a
database. Setting ``fail_readings`` / ``fail_tariffs`` makes the matching
calls raise ``StoreError``.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from collections.abc import Sequence
from datetime import date, datetime

import pytest

from meter_recon.schemas import (
    DateRange,
    Meter,
    MeterConnection,
    Reading,
    Site,
    TariffBlock,
    TariffCharge,
    TariffPeriod,
    TariffStructure,
    TariffTimePeriod,
)
from meter_recon.services.data_fetching import StoreError


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure required env vars are set for every test."""
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@localhost/db")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def block_tariff(
    tariff_id: str = "t-block",
    name: str = "Domestic Block",
    basic_monthly: float | None = None,
) -> TariffStructure:
    """Two-block tariff: 0-600 kWh at 150c, above 600 kWh at 200c."""
    charges = []
    if basic_monthly is not None:
        charges.append(TariffCharge(charge_type="basic_monthly", charge_amount=basic_monthly))
    return TariffStructure(
        id=tariff_id,
        name=name,
        blocks=[
            TariffBlock(block_number=2, kwh_from=600, kwh_to=None, energy_charge_cents=200),
            TariffBlock(block_number=1, kwh_from=0, kwh_to=600, energy_charge_cents=150),
        ],
        charges=charges,
    )


def flat_tariff(
    tariff_id: str,
    cents_per_kwh: float,
    name: str = "Commercial Flat",
    effective_from: date | None = None,
    effective_to: date | None = None,
) -> TariffStructure:
    """Tariff with a single energy_both_seasons rate."""
    return TariffStructure(
        id=tariff_id,
        name=name,
        effective_from=effective_from,
        effective_to=effective_to,
        charges=[TariffCharge(charge_type="energy_both_seasons", charge_amount=cents_per_kwh)],
    )


def tou_tariff(tariff_id: str = "t-tou") -> TariffStructure:
    """Weekday peak/off-peak tariff with no weekend periods."""
    return TariffStructure(
        id=tariff_id,
        name="Commercial TOU",
        uses_tou=True,
        time_periods=[
            TariffTimePeriod(
                season="all_year", day_type="weekday",
                start_hour=7, end_hour=10, energy_charge_cents=300,
            ),
            TariffTimePeriod(
                season="all_year", day_type="weekday",
                start_hour=0, end_hour=24, energy_charge_cents=100,
            ),
        ],
    )


def reading(
    meter_id: str,
    ts: datetime,
    kwh: float = 0.0,
    kva: float | None = None,
    **imported: float,
) -> Reading:
    """Reading with optional imported columns given as keyword arguments."""
    metadata = {"imported_fields": dict(imported)} if imported else {}
    return Reading(meter_id=meter_id, timestamp=ts, kwh_value=kwh, kva_value=kva, metadata=metadata)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class FakeStore:
    """In-memory reading, tariff and meter store."""

    def __init__(self) -> None:
        self.sites: dict[str, Site] = {}
        self.meters: list[Meter] = []
        self.connections: list[MeterConnection] = []
        self.readings: list[Reading] = []
        self.tariffs: dict[str, TariffStructure] = {}
        self.tariff_periods: list[tuple[str, TariffPeriod]] = []
        self.fail_readings: set[str] = set()
        self.fail_tariffs = False
        self.reading_calls: list[tuple[str, datetime, datetime]] = []

    def add_tariff(self, tariff: TariffStructure, supply_authority_id: str | None = None) -> None:
        self.tariffs[tariff.id] = tariff
        if supply_authority_id is not None:
            self.tariff_periods.append(
                (
                    supply_authority_id,
                    TariffPeriod(
                        tariff_id=tariff.id,
                        tariff_name=tariff.name,
                        effective_from=tariff.effective_from,
                        effective_to=tariff.effective_to,
                    ),
                ),
            )

    async def fetch_readings(
        self, meter_id: str, from_ts: datetime, to_ts: datetime,
    ) -> list[Reading]:
        self.reading_calls.append((meter_id, from_ts, to_ts))
        if meter_id in self.fail_readings:
            raise StoreError(f"connection lost reading {meter_id}")
        return sorted(
            (
                r for r in self.readings
                if r.meter_id == meter_id and from_ts <= r.timestamp <= to_ts
            ),
            key=lambda r: r.timestamp,
        )

    async def fetch_date_range(self, meter_ids: Sequence[str]) -> DateRange:
        stamps = [r.timestamp for r in self.readings if r.meter_id in meter_ids]
        if not stamps:
            return DateRange()
        return DateRange(earliest=min(stamps), latest=max(stamps))

    async def fetch_tariff_structure(self, tariff_id: str) -> TariffStructure | None:
        if self.fail_tariffs:
            raise StoreError("tariff store unavailable")
        return self.tariffs.get(tariff_id)

    async def fetch_applicable_tariff_periods(
        self,
        supply_authority_id: str,
        tariff_name: str,
        date_from: date,
        date_to: date,
    ) -> list[TariffPeriod]:
        if self.fail_tariffs:
            raise StoreError("tariff store unavailable")
        periods = [
            p for authority, p in self.tariff_periods
            if authority == supply_authority_id
            and p.tariff_name == tariff_name
            and p.effective_from <= date_to
            and (p.effective_to is None or p.effective_to >= date_from)
        ]
        return sorted(periods, key=lambda p: p.effective_from)

    async def fetch_site(self, site_id: str) -> Site | None:
        return self.sites.get(site_id)

    async def fetch_site_meters(self, site_id: str) -> list[Meter]:
        return sorted(
            (m for m in self.meters if m.site_id == site_id), key=lambda m: m.meter_number,
        )

    async def fetch_connections(self, meter_ids: Sequence[str]) -> list[MeterConnection]:
        ids = set(meter_ids)
        return [
            c for c in self.connections
            if c.parent_meter_id in ids or c.child_meter_id in ids
        ]


@pytest.fixture()
def store() -> FakeStore:
    """Empty in-memory store."""
    return FakeStore()

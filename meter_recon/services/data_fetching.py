"""
Read-only access to readings, tariffs, meters and connections.

The calculation services depend on the three ``Protocol`` interfaces
below, never on SQLAlchemy. ``SqlDataStore`` implements all three over an
``AsyncSession`` and converts every ``SQLAlchemyError`` to ``StoreError``
so that callers only have one collaborator failure to handle.

CHANGELOG:
- 2026-10-18: Page readings out of the store READINGS_PAGE_SIZE rows at a time
- 2026-10-18: Initial creation

TODO:
- None
"""

from collections.abc import Sequence
from datetime import date, datetime
from typing import Protocol

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meter_recon.db import models as orm
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


class StoreError(Exception):
    """A read from the metering or tariff store failed."""


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class ReadingStore(Protocol):
    async def fetch_readings(
        self, meter_id: str, from_ts: datetime, to_ts: datetime,
    ) -> list[Reading]:
        """Readings of one meter in ``[from_ts, to_ts]``, ordered by timestamp."""
        ...

    async def fetch_date_range(self, meter_ids: Sequence[str]) -> DateRange:
        """Earliest and latest reading timestamp over *meter_ids*."""
        ...


class TariffStore(Protocol):
    async def fetch_tariff_structure(self, tariff_id: str) -> TariffStructure | None:
        """Tariff with its blocks, charges and time periods, or None."""
        ...

    async def fetch_applicable_tariff_periods(
        self,
        supply_authority_id: str,
        tariff_name: str,
        date_from: date,
        date_to: date,
    ) -> list[TariffPeriod]:
        """Active versions of a named tariff overlapping the range."""
        ...


class MeterStore(Protocol):
    async def fetch_site(self, site_id: str) -> Site | None: ...

    async def fetch_site_meters(self, site_id: str) -> list[Meter]: ...

    async def fetch_connections(self, meter_ids: Sequence[str]) -> list[MeterConnection]: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


def _reading_from_row(row: orm.MeterReading) -> Reading:
    return Reading(
        meter_id=row.meter_id,
        timestamp=row.reading_timestamp,
        kwh_value=row.kwh_value or 0.0,
        kva_value=row.kva_value,
        metadata=row.metadata_ or {},
    )


class SqlDataStore:
    """Reading, tariff and meter store over one async session.

    Args:
        session: Session used for every query; the caller owns its lifetime.
        page_size: Rows fetched per round trip when paging readings.
    """

    def __init__(self, session: AsyncSession, page_size: int = 1000) -> None:
        self._session = session
        self._page_size = page_size

    async def _scalars(self, stmt: Select, what: str) -> list:
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to fetch {what}: {exc}") from exc
        return list(result.scalars().all())

    # -- readings ----------------------------------------------------------

    async def fetch_readings(
        self, meter_id: str, from_ts: datetime, to_ts: datetime,
    ) -> list[Reading]:
        """Fetch all readings of a meter in ``[from_ts, to_ts]``.

        Pages through the table with LIMIT/OFFSET until a short page is
        returned. Ordering on (timestamp, id) keeps pages stable when
        timestamps repeat.

        Raises:
            StoreError: If any page query fails.
        """
        base = (
            select(orm.MeterReading)
            .where(
                orm.MeterReading.meter_id == meter_id,
                orm.MeterReading.reading_timestamp >= from_ts,
                orm.MeterReading.reading_timestamp <= to_ts,
            )
            .order_by(orm.MeterReading.reading_timestamp, orm.MeterReading.id)
        )

        readings: list[Reading] = []
        offset = 0
        while True:
            stmt = base.offset(offset).limit(self._page_size)
            rows = await self._scalars(stmt, f"readings for meter {meter_id}")
            readings.extend(_reading_from_row(row) for row in rows)
            if len(rows) < self._page_size:
                break
            offset += self._page_size
        return readings

    async def fetch_date_range(self, meter_ids: Sequence[str]) -> DateRange:
        """Return the earliest and latest reading timestamps over *meter_ids*."""
        if not meter_ids:
            return DateRange()

        stmt = select(
            func.min(orm.MeterReading.reading_timestamp),
            func.max(orm.MeterReading.reading_timestamp),
        ).where(orm.MeterReading.meter_id.in_(list(meter_ids)))
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to fetch reading date range: {exc}") from exc

        row = result.one_or_none()
        if row is None:
            return DateRange()
        return DateRange(earliest=row[0], latest=row[1])

    # -- tariffs -----------------------------------------------------------

    async def fetch_tariff_structure(self, tariff_id: str) -> TariffStructure | None:
        """Load a tariff with its blocks, charges and time periods.

        Time periods are ordered by (start_hour, end_hour, id) so that the
        first-match rule of time-of-use pricing sees the same order on
        every call.
        """
        rows = await self._scalars(
            select(orm.TariffStructure).where(orm.TariffStructure.id == tariff_id),
            f"tariff structure {tariff_id}",
        )
        if not rows:
            return None
        tariff = rows[0]

        blocks = await self._scalars(
            select(orm.TariffBlock)
            .where(orm.TariffBlock.tariff_structure_id == tariff_id)
            .order_by(orm.TariffBlock.block_number),
            f"blocks of tariff {tariff_id}",
        )
        charges = await self._scalars(
            select(orm.TariffCharge)
            .where(orm.TariffCharge.tariff_structure_id == tariff_id)
            .order_by(orm.TariffCharge.id),
            f"charges of tariff {tariff_id}",
        )
        periods = await self._scalars(
            select(orm.TariffTimePeriod)
            .where(orm.TariffTimePeriod.tariff_structure_id == tariff_id)
            .order_by(
                orm.TariffTimePeriod.start_hour,
                orm.TariffTimePeriod.end_hour,
                orm.TariffTimePeriod.id,
            ),
            f"time periods of tariff {tariff_id}",
        )

        return TariffStructure(
            id=tariff.id,
            name=tariff.name,
            tariff_type=tariff.tariff_type,
            uses_tou=bool(tariff.uses_tou),
            effective_from=tariff.effective_from,
            effective_to=tariff.effective_to,
            blocks=[
                TariffBlock(
                    block_number=b.block_number,
                    kwh_from=b.kwh_from or 0.0,
                    kwh_to=b.kwh_to,
                    energy_charge_cents=b.energy_charge_cents,
                )
                for b in blocks
            ],
            charges=[
                TariffCharge(
                    charge_type=c.charge_type,
                    charge_amount=c.charge_amount,
                    unit=c.unit,
                )
                for c in charges
            ],
            time_periods=[
                TariffTimePeriod(
                    season=p.season,
                    day_type=p.day_type,
                    start_hour=p.start_hour,
                    end_hour=p.end_hour,
                    energy_charge_cents=p.energy_charge_cents,
                )
                for p in periods
            ],
        )

    async def fetch_applicable_tariff_periods(
        self,
        supply_authority_id: str,
        tariff_name: str,
        date_from: date,
        date_to: date,
    ) -> list[TariffPeriod]:
        """Return active versions of *tariff_name* overlapping the range.

        A version overlaps when ``effective_from <= date_to`` and its
        ``effective_to`` is open or ``>= date_from``. Results are ordered by
        ``effective_from``.
        """
        stmt = (
            select(orm.TariffStructure)
            .where(
                orm.TariffStructure.supply_authority_id == supply_authority_id,
                orm.TariffStructure.name == tariff_name,
                orm.TariffStructure.active.is_(True),
                orm.TariffStructure.effective_from <= date_to,
                or_(
                    orm.TariffStructure.effective_to.is_(None),
                    orm.TariffStructure.effective_to >= date_from,
                ),
            )
            .order_by(orm.TariffStructure.effective_from)
        )
        rows = await self._scalars(stmt, f"tariff periods for {tariff_name!r}")
        return [
            TariffPeriod(
                tariff_id=row.id,
                tariff_name=row.name,
                effective_from=row.effective_from,
                effective_to=row.effective_to,
            )
            for row in rows
        ]

    # -- meters ------------------------------------------------------------

    async def fetch_site(self, site_id: str) -> Site | None:
        """Return the site, or None when it does not exist."""
        rows = await self._scalars(
            select(orm.Site).where(orm.Site.id == site_id), f"site {site_id}",
        )
        if not rows:
            return None
        return Site.model_validate(rows[0], from_attributes=True)

    async def fetch_site_meters(self, site_id: str) -> list[Meter]:
        """Return the meters of a site ordered by meter number."""
        rows = await self._scalars(
            select(orm.Meter)
            .where(orm.Meter.site_id == site_id)
            .order_by(orm.Meter.meter_number),
            f"meters of site {site_id}",
        )
        return [Meter.model_validate(row, from_attributes=True) for row in rows]

    async def fetch_connections(self, meter_ids: Sequence[str]) -> list[MeterConnection]:
        """Return edges touching any of *meter_ids* as parent or child."""
        if not meter_ids:
            return []

        ids = list(meter_ids)
        rows = await self._scalars(
            select(orm.MeterConnection)
            .where(
                or_(
                    orm.MeterConnection.parent_meter_id.in_(ids),
                    orm.MeterConnection.child_meter_id.in_(ids),
                ),
            )
            .order_by(orm.MeterConnection.id),
            "meter connections",
        )
        return [
            MeterConnection(
                parent_meter_id=row.parent_meter_id,
                child_meter_id=row.child_meter_id,
            )
            for row in rows
        ]

"""
Tariff cost calculation.

Computes energy, fixed and demand cost for a meter from a tariff structure
and its readings (or a pre-computed kWh total) over a date range. Energy
pricing follows a fixed precedence: time-of-use periods, then consumption
blocks, then flat or seasonal energy charges. Basic charges are prorated by
calendar-month overlap; demand charges apply the seasonal kVA rate to the
peak kVA of the range.

Amounts on blocks, time periods and energy charges are in cents per kWh;
basic and demand charges are in currency units.

CHANGELOG:
- 2026-10-18: Price parent meters from their source meters' readings
- 2026-10-18: Unify block/TOU/seasonal paths with prorated fixed and demand charges
- 2026-10-18: Initial creation

TODO:
- None
"""

import calendar
import logging
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta

from meter_recon.schemas import (
    CostCalculationResult,
    CostErrorKind,
    DayType,
    Reading,
    Season,
    TariffBlock,
    TariffCharge,
    TariffStructure,
    TariffTimePeriod,
)
from meter_recon.services.data_fetching import ReadingStore, StoreError, TariffStore

logger = logging.getLogger(__name__)

# Southern-hemisphere convention: June to August is the high-demand season.
HIGH_SEASON_MONTHS = frozenset({6, 7, 8})

BASIC_CHARGE_TYPES = frozenset({"basic_monthly", "basic_charge"})
ENERGY_BOTH_SEASONS = "energy_both_seasons"
ENERGY_LOW_SEASON = "energy_low_season"
ENERGY_HIGH_SEASON = "energy_high_season"
DEMAND_LOW_SEASON = "demand_low_season"
DEMAND_HIGH_SEASON = "demand_high_season"

NO_PRICING_MESSAGE = (
    "Tariff has no pricing structure defined "
    "(no blocks, TOU periods, or seasonal charges)"
)


def as_date(value: date | datetime) -> date:
    """Return the calendar date of *value*."""
    return value.date() if isinstance(value, datetime) else value


def reading_window(
    date_from: date | datetime,
    date_to: date | datetime,
) -> tuple[datetime, datetime]:
    """Timestamp bounds for fetching readings; plain dates cover whole days."""
    start = date_from if isinstance(date_from, datetime) else datetime.combine(date_from, time.min)
    end = date_to if isinstance(date_to, datetime) else datetime.combine(date_to, time.max)
    return start, end


def is_high_season_month(month: int) -> bool:
    """Return True for June, July and August."""
    return month in HIGH_SEASON_MONTHS


def season_for(ts: datetime) -> Season:
    """Classify a timestamp into the high- or low-demand season."""
    return Season.HIGH_DEMAND if is_high_season_month(ts.month) else Season.LOW_DEMAND


def day_type_for(ts: datetime) -> DayType:
    """Classify a timestamp as weekday, saturday or sunday."""
    weekday = ts.weekday()
    if weekday == 6:
        return DayType.SUNDAY
    if weekday == 5:
        return DayType.SATURDAY
    return DayType.WEEKDAY


def find_time_period(
    periods: Sequence[TariffTimePeriod],
    ts: datetime,
) -> TariffTimePeriod | None:
    """Return the first time period in list order that covers *ts*.

    A period matches when its season is ``all_year`` or the timestamp's
    season, its day type is ``all_days``, the timestamp's day type, or
    ``weekend`` on a Saturday/Sunday, and ``start_hour <= hour < end_hour``.
    """
    season = season_for(ts)
    day_type = day_type_for(ts)
    is_weekend = day_type in (DayType.SATURDAY, DayType.SUNDAY)
    hour = ts.hour

    for period in periods:
        season_match = period.season in (Season.ALL_YEAR, season)
        day_match = (
            period.day_type in (DayType.ALL_DAYS, day_type)
            or (period.day_type == DayType.WEEKEND and is_weekend)
        )
        if season_match and day_match and period.start_hour <= hour < period.end_hour:
            return period
    return None


def calculate_tou_energy_cost(
    periods: Sequence[TariffTimePeriod],
    readings: Sequence[Reading],
) -> tuple[float, float]:
    """Price each reading at the rate of its matching time period.

    Readings that match no period contribute no cost; their energy is
    returned separately so callers can report it.

    Returns:
        Tuple of (energy cost, unmatched kWh).
    """
    energy_cost = 0.0
    unmatched_kwh = 0.0
    for reading in readings:
        period = find_time_period(periods, reading.timestamp)
        if period is None:
            unmatched_kwh += reading.kwh_value
            continue
        energy_cost += reading.kwh_value * period.energy_charge_cents / 100

    if unmatched_kwh:
        logger.debug("%.3f kWh matched no TOU period and was not priced", unmatched_kwh)
    return energy_cost, unmatched_kwh


def calculate_block_energy_cost(blocks: Sequence[TariffBlock], total_kwh: float) -> float:
    """Walk *total_kwh* through the blocks in block-number order."""
    energy_cost = 0.0
    remaining = total_kwh
    for block in sorted(blocks, key=lambda b: b.block_number):
        if block.kwh_to is None:
            kwh_in_block = remaining
        else:
            kwh_in_block = min(remaining, block.kwh_to - block.kwh_from)

        if kwh_in_block > 0:
            energy_cost += kwh_in_block * block.energy_charge_cents / 100
            remaining -= kwh_in_block

        if remaining <= 0:
            break
    return energy_cost


def _find_charge(charges: Sequence[TariffCharge], charge_type: str) -> TariffCharge | None:
    return next((c for c in charges if c.charge_type == charge_type), None)


def select_energy_charge(
    charges: Sequence[TariffCharge],
    date_from: date | datetime,
    date_to: date | datetime,
) -> TariffCharge | None:
    """Pick the flat or seasonal energy charge that applies to the range.

    ``energy_both_seasons`` wins outright. Otherwise the high-season charge
    is used only when both the start and end month fall in the high season;
    any other range uses the low-season charge, or the high-season one when
    no low-season charge exists. The classification is per range, not per day.
    """
    both = _find_charge(charges, ENERGY_BOTH_SEASONS)
    if both is not None:
        return both

    low = _find_charge(charges, ENERGY_LOW_SEASON)
    high = _find_charge(charges, ENERGY_HIGH_SEASON)
    entirely_high = (
        is_high_season_month(as_date(date_from).month)
        and is_high_season_month(as_date(date_to).month)
    )
    if entirely_high and high is not None:
        return high
    return low or high


def calculate_prorated_basic_charges(
    date_from: date | datetime,
    date_to: date | datetime,
    monthly_charge: float,
) -> float:
    """Prorate a monthly charge over the calendar months the range touches.

    For each month intersecting ``[date_from, date_to]`` (both inclusive)
    the charge is ``monthly_charge * days_in_range / days_in_month``.

    Args:
        date_from: First billed day.
        date_to: Last billed day.
        monthly_charge: Charge for one full calendar month.

    Returns:
        The summed prorated charge; 0 when the range is empty.
    """
    start = as_date(date_from)
    end = as_date(date_to)
    total = 0.0
    current = start

    while current <= end:
        days_in_month = calendar.monthrange(current.year, current.month)[1]
        month_end = date(current.year, current.month, days_in_month)
        days_in_period = (min(end, month_end) - current).days + 1
        total += monthly_charge * days_in_period / days_in_month
        current = month_end + timedelta(days=1)

    return total


def calculate_demand_charges(
    charges: Sequence[TariffCharge],
    max_kva: float,
    date_from: date | datetime,
    date_to: date | datetime,
) -> float:
    """Apply the seasonal demand rate (currency per kVA) to *max_kva*.

    The high-season rate applies when either end of the range falls in the
    high season.
    """
    if max_kva <= 0:
        return 0.0

    high = (
        is_high_season_month(as_date(date_from).month)
        or is_high_season_month(as_date(date_to).month)
    )
    charge = _find_charge(charges, DEMAND_HIGH_SEASON if high else DEMAND_LOW_SEASON)
    if charge is None:
        return 0.0
    return max_kva * charge.charge_amount


def uses_tou_pricing(tariff: TariffStructure) -> bool:
    """Return True when the time-of-use path prices this tariff."""
    return tariff.uses_tou and bool(tariff.time_periods)


def calculate_cost(
    tariff: TariffStructure,
    date_from: date | datetime,
    date_to: date | datetime,
    readings: Sequence[Reading] | None = None,
    total_kwh: float | None = None,
    max_kva: float | None = None,
) -> CostCalculationResult:
    """Calculate the cost of a meter's consumption under *tariff*.

    Args:
        tariff: Fully loaded tariff structure.
        date_from: Start of the billed range.
        date_to: End of the billed range (inclusive).
        readings: Individual readings; required for TOU pricing and used
            for the kWh total and peak kVA when those are not given.
        total_kwh: Pre-computed consumption; defaults to the readings' sum.
        max_kva: Peak apparent power; defaults to the readings' maximum.

    Returns:
        CostCalculationResult; ``has_error`` is set when the tariff has no
        pricing structure.
    """
    readings = readings or []
    if total_kwh is None:
        total_kwh = sum(r.kwh_value for r in readings)
    if max_kva is None:
        max_kva = max((r.kva_value for r in readings if r.kva_value is not None), default=0.0)

    unmatched_kwh = 0.0
    if uses_tou_pricing(tariff):
        energy_cost, unmatched_kwh = calculate_tou_energy_cost(tariff.time_periods, readings)
    elif tariff.blocks:
        energy_cost = calculate_block_energy_cost(tariff.blocks, total_kwh)
    else:
        charge = select_energy_charge(tariff.charges, date_from, date_to)
        if charge is None:
            return CostCalculationResult.failure(
                CostErrorKind.NO_PRICING_STRUCTURE, NO_PRICING_MESSAGE, tariff.name,
            )
        energy_cost = total_kwh * charge.charge_amount / 100

    monthly_charge = sum(
        c.charge_amount for c in tariff.charges if c.charge_type in BASIC_CHARGE_TYPES
    )
    fixed_charges = calculate_prorated_basic_charges(date_from, date_to, monthly_charge)
    demand_charges = calculate_demand_charges(tariff.charges, max_kva, date_from, date_to)

    total_cost = energy_cost + fixed_charges + demand_charges
    return CostCalculationResult(
        energy_cost=energy_cost,
        fixed_charges=fixed_charges,
        demand_charges=demand_charges,
        total_cost=total_cost,
        avg_cost_per_kwh=total_cost / total_kwh if total_kwh > 0 else 0.0,
        total_kwh=total_kwh,
        unmatched_kwh=unmatched_kwh,
        tariff_name=tariff.name,
    )


async def fetch_source_readings(
    reading_store: ReadingStore,
    meter_ids: Sequence[str],
    from_ts: datetime,
    to_ts: datetime,
) -> list[Reading]:
    """Fetch the readings of every meter in *meter_ids*, ordered by timestamp."""
    readings: list[Reading] = []
    for meter_id in meter_ids:
        readings.extend(await reading_store.fetch_readings(meter_id, from_ts, to_ts))
    readings.sort(key=lambda r: r.timestamp)
    return readings


async def calculate_meter_cost(
    tariff_store: TariffStore,
    reading_store: ReadingStore,
    meter_id: str,
    tariff_id: str,
    date_from: date | datetime,
    date_to: date | datetime,
    total_kwh: float | None = None,
    max_kva: float | None = None,
    source_meter_ids: Sequence[str] | None = None,
) -> CostCalculationResult:
    """Load the tariff (and readings when needed) and calculate the cost.

    Readings are fetched when the tariff is priced by time of use, or when
    the kWh total or the peak kVA has to be derived from them. They come
    from *source_meter_ids* when given (the children whose consumption a
    parent meter is billed for), otherwise from *meter_id*. Store failures
    and a missing tariff come back as error results.
    """
    try:
        tariff = await tariff_store.fetch_tariff_structure(tariff_id)
    except StoreError as exc:
        return CostCalculationResult.failure(
            CostErrorKind.FETCH_FAILURE, f"Failed to fetch tariff structure: {exc}",
        )
    if tariff is None:
        return CostCalculationResult.failure(
            CostErrorKind.NOT_FOUND, "Tariff structure not found",
        )

    readings = None
    if uses_tou_pricing(tariff) or total_kwh is None or max_kva is None:
        from_ts, to_ts = reading_window(date_from, date_to)
        try:
            readings = await fetch_source_readings(
                reading_store,
                [meter_id] if source_meter_ids is None else source_meter_ids,
                from_ts,
                to_ts,
            )
        except StoreError as exc:
            return CostCalculationResult.failure(
                CostErrorKind.FETCH_FAILURE, f"Failed to fetch readings: {exc}", tariff.name,
            )

    return calculate_cost(
        tariff,
        date_from,
        date_to,
        readings=readings,
        total_kwh=total_kwh,
        max_kva=max_kva,
    )

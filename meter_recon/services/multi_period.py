"""
Cost calculation across several versions of one named tariff.

A tariff name (e.g. "Commercial Bulk") resolves to one or more tariff
structure versions by effective date. When a billing range crosses a
version boundary the range is split into segments, each segment is costed
with its own version and the results are summed.

CHANGELOG:
- 2026-10-18: Split a supplied kWh total across segments by reading share
- 2026-10-18: Warn when one peak kVA is billed in several segments
- 2026-10-18: Initial creation

TODO:
- None
"""

import logging
from collections.abc import Sequence
from datetime import date, datetime

from meter_recon.schemas import (
    CostCalculationResult,
    CostErrorKind,
    Reading,
    TariffPeriod,
    TariffPeriodBreakdown,
    TariffStructure,
)
from meter_recon.services.data_fetching import ReadingStore, StoreError, TariffStore
from meter_recon.services.tariff_cost import (
    as_date,
    calculate_cost,
    calculate_meter_cost,
    fetch_source_readings,
    reading_window,
)

logger = logging.getLogger(__name__)


def tariff_segment(
    period: TariffPeriod,
    date_from: date,
    date_to: date,
) -> tuple[date, date] | None:
    """Intersect a tariff version's validity with ``[date_from, date_to]``.

    An open ``effective_to`` runs to the end of the requested range.

    Returns:
        (segment_start, segment_end), or None when they do not overlap.
    """
    start = max(date_from, period.effective_from)
    end = min(date_to, period.effective_to or date_to)
    if start > end:
        return None
    return start, end


def _breakdown(
    period: TariffPeriod,
    segment_start: date,
    segment_end: date,
    result: CostCalculationResult,
) -> TariffPeriodBreakdown:
    return TariffPeriodBreakdown(
        tariff_id=period.tariff_id,
        tariff_name=period.tariff_name,
        effective_from=period.effective_from,
        effective_to=period.effective_to,
        segment_start=segment_start,
        segment_end=segment_end,
        total_kwh=result.total_kwh,
        total_cost=result.total_cost,
    )


async def calculate_cost_across_periods(
    tariff_store: TariffStore,
    reading_store: ReadingStore,
    meter_id: str,
    supply_authority_id: str,
    tariff_name: str,
    date_from: date | datetime,
    date_to: date | datetime,
    total_kwh: float | None = None,
    max_kva: float | None = None,
    source_meter_ids: Sequence[str] | None = None,
) -> CostCalculationResult:
    """Cost a meter over every tariff version that applies to the range.

    With one applicable version the call is delegated to
    :func:`calculate_meter_cost` unchanged. With several, each segment's
    kWh is the sum of the readings inside that segment; when ``total_kwh``
    is given it is split across the segments in proportion to those sums
    instead. The same ``max_kva`` is passed to every segment, so a demand
    charge is billed once per segment.

    Args:
        tariff_store: Source of tariff versions and structures.
        reading_store: Source of readings.
        meter_id: Meter being costed.
        supply_authority_id: Authority publishing the tariff.
        tariff_name: Logical tariff name shared by the versions.
        date_from: Start of the billed range.
        date_to: End of the billed range (inclusive).
        total_kwh: Pre-computed consumption for the whole range.
        max_kva: Peak apparent power for the whole range.
        source_meter_ids: Meters whose readings stand for this meter's
            consumption; defaults to the meter itself.

    Returns:
        CostCalculationResult with ``tariff_periods_used`` populated, or an
        error result when no version applies, any segment fails, or a
        non-zero ``total_kwh`` has no readings to be split by.
    """
    start = as_date(date_from)
    end = as_date(date_to)
    sources = [meter_id] if source_meter_ids is None else list(source_meter_ids)

    try:
        periods = await tariff_store.fetch_applicable_tariff_periods(
            supply_authority_id, tariff_name, start, end,
        )
    except StoreError as exc:
        return CostCalculationResult.failure(
            CostErrorKind.FETCH_FAILURE,
            f"Failed to fetch tariff periods: {exc}",
            tariff_name,
        )

    if not periods:
        return CostCalculationResult.failure(
            CostErrorKind.NOT_FOUND,
            f"No applicable tariff periods found for {tariff_name!r} "
            f"between {start.isoformat()} and {end.isoformat()}",
            tariff_name,
        )

    if len(periods) == 1:
        period = periods[0]
        result = await calculate_meter_cost(
            tariff_store, reading_store, meter_id, period.tariff_id,
            date_from, date_to, total_kwh=total_kwh, max_kva=max_kva,
            source_meter_ids=source_meter_ids,
        )
        if result.has_error:
            return result
        return result.model_copy(
            update={"tariff_periods_used": [_breakdown(period, start, end, result)]},
        )

    if max_kva:
        logger.warning(
            "Meter %s: peak of %.2f kVA applied to each of %d tariff periods "
            "of %r; demand charges may be counted more than once",
            meter_id, max_kva, len(periods), tariff_name,
        )

    loaded: list[tuple[TariffPeriod, date, date, TariffStructure, list[Reading]]] = []
    for period in periods:
        bounds = tariff_segment(period, start, end)
        if bounds is None:
            continue
        segment_start, segment_end = bounds

        try:
            tariff = await tariff_store.fetch_tariff_structure(period.tariff_id)
            from_ts, to_ts = reading_window(segment_start, segment_end)
            readings = await fetch_source_readings(reading_store, sources, from_ts, to_ts)
        except StoreError as exc:
            return CostCalculationResult.failure(
                CostErrorKind.FETCH_FAILURE,
                f"Failed to fetch data for tariff period "
                f"{segment_start.isoformat()}..{segment_end.isoformat()}: {exc}",
                tariff_name,
            )
        if tariff is None:
            return CostCalculationResult.failure(
                CostErrorKind.NOT_FOUND,
                f"Tariff structure {period.tariff_id} not found",
                tariff_name,
            )
        loaded.append((period, segment_start, segment_end, tariff, readings))

    readings_kwh = [sum(r.kwh_value for r in readings) for *_, readings in loaded]
    readings_total = sum(readings_kwh)
    if total_kwh is None:
        segment_kwh = readings_kwh
    elif readings_total:
        segment_kwh = [total_kwh * kwh / readings_total for kwh in readings_kwh]
    elif total_kwh:
        return CostCalculationResult.failure(
            CostErrorKind.NO_SOURCE_READINGS,
            f"Cannot split {total_kwh:.2f} kWh across tariff periods of "
            f"{tariff_name!r}: no readings between {start.isoformat()} and "
            f"{end.isoformat()}",
            tariff_name,
        )
    else:
        segment_kwh = [0.0] * len(loaded)

    segments: list[TariffPeriodBreakdown] = []
    energy_cost = fixed_charges = demand_charges = 0.0
    segment_kwh_total = unmatched_kwh = 0.0

    for (period, segment_start, segment_end, tariff, readings), kwh in zip(loaded, segment_kwh):
        result = calculate_cost(
            tariff,
            segment_start,
            segment_end,
            readings=readings,
            total_kwh=kwh,
            max_kva=max_kva,
        )
        if result.has_error:
            return result.model_copy(
                update={
                    "error_message": (
                        f"{result.error_message} "
                        f"(segment {segment_start.isoformat()}..{segment_end.isoformat()})"
                    ),
                },
            )

        energy_cost += result.energy_cost
        fixed_charges += result.fixed_charges
        demand_charges += result.demand_charges
        segment_kwh_total += result.total_kwh
        unmatched_kwh += result.unmatched_kwh
        segments.append(_breakdown(period, segment_start, segment_end, result))

    total_cost = energy_cost + fixed_charges + demand_charges
    return CostCalculationResult(
        energy_cost=energy_cost,
        fixed_charges=fixed_charges,
        demand_charges=demand_charges,
        total_cost=total_cost,
        avg_cost_per_kwh=total_cost / segment_kwh_total if segment_kwh_total > 0 else 0.0,
        total_kwh=segment_kwh_total,
        unmatched_kwh=unmatched_kwh,
        tariff_name=tariff_name,
        tariff_periods_used=segments,
    )

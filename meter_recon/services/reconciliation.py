"""
Site reconciliation: supply versus tenant consumption.

``calculate_reconciliation_totals`` is the pure summary over categorised
meter totals. ``run_reconciliation`` drives a full run for one site: it
summarises every meter's readings, applies the column settings, rolls the
results up the meter hierarchy leaves-first and, optionally, costs every
meter. A failure on one meter is recorded on that meter and the run
carries on.

CHANGELOG:
- 2026-10-18: Cost parent meters from the readings behind their rollup
- 2026-10-18: Add revenue totals and per-meter cost isolation
- 2026-10-18: Initial creation

TODO:
- None
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime

from meter_recon.schemas import (
    ColumnSettings,
    ColumnTotalsResult,
    CorrectedReading,
    CorruptionThresholds,
    CostCalculationResult,
    Meter,
    MeterCategory,
    MeterConnection,
    MeterResult,
    MeterTotals,
    RawColumnAggregate,
    ReconciliationReport,
    ReconciliationTotals,
    RevenueTotals,
    Site,
)
from meter_recon.services.column_aggregation import (
    aggregate_column_max_values,
    aggregate_column_totals,
    apply_column_settings,
    get_max_kva_from_columns,
    summarize_readings,
)
from meter_recon.services.data_fetching import (
    MeterStore,
    ReadingStore,
    StoreError,
    TariffStore,
)
from meter_recon.services.hierarchy import (
    ConnectionsMap,
    build_connections_map,
    derive_connections_from_indents,
    find_cycles,
    get_hierarchy_depth,
    normalize_meter_type,
    sort_meters_by_depth,
)
from meter_recon.services.multi_period import calculate_cost_across_periods
from meter_recon.services.tariff_cost import calculate_meter_cost, reading_window
from meter_recon.services.validation import DEFAULT_THRESHOLDS, is_kva_field

logger = logging.getLogger(__name__)

# Explicit assignment values accepted from callers, including the legacy
# spellings still stored by older site configurations.
ASSIGNMENT_CATEGORIES = {
    "grid_supply": MeterCategory.GRID_SUPPLY,
    "solar": MeterCategory.SOLAR,
    "solar_energy": MeterCategory.SOLAR,
    "tenant": MeterCategory.TENANT,
    "check": MeterCategory.CHECK,
    "distribution": MeterCategory.DISTRIBUTION,
    "bulk": MeterCategory.DISTRIBUTION,
    "other": MeterCategory.OTHER,
    "unassigned": MeterCategory.UNASSIGNED,
}

# Keyed by the normalised meter type, see normalize_meter_type.
METER_TYPE_CATEGORIES = {
    "council_meter": MeterCategory.GRID_SUPPLY,
    "solar_meter": MeterCategory.SOLAR,
    "tenant_meter": MeterCategory.TENANT,
    "check_meter": MeterCategory.CHECK,
    "bulk_meter": MeterCategory.DISTRIBUTION,
    "distribution": MeterCategory.DISTRIBUTION,
    "other": MeterCategory.OTHER,
}


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------


def classify_meter(meter: Meter, assignment: str | None = None) -> MeterCategory:
    """Place a meter in its reconciliation category.

    An explicit *assignment* wins; otherwise the meter type decides. An
    unrecognised assignment is ``other``; an unrecognised type with no
    assignment is ``unassigned``.
    """
    if assignment:
        return ASSIGNMENT_CATEGORIES.get(assignment.lower(), MeterCategory.OTHER)
    return METER_TYPE_CATEGORIES.get(
        normalize_meter_type(meter.meter_type), MeterCategory.UNASSIGNED,
    )


def calculate_reconciliation_totals(
    grid_supply_meters: Iterable[MeterTotals],
    solar_meters: Iterable[MeterTotals],
    tenant_meters: Iterable[MeterTotals],
) -> ReconciliationTotals:
    """Summarise supply against tenant consumption.

    Grid supply contributes its positive kWh (or its net total clamped at
    zero when no positive split was computed); its negative kWh is export
    and is counted with solar. Net-negative "other" supply never reduces
    total supply below the grid figure.

    Returns:
        ReconciliationTotals; ``recovery_rate`` is a percentage and is 0
        when there is no supply.
    """
    grid = list(grid_supply_meters)

    bulk_total = sum(
        m.total_kwh_positive if m.total_kwh_positive > 0 else max(0.0, m.total_kwh)
        for m in grid
    )
    solar_meter_total = sum(m.total_kwh for m in solar_meters)
    grid_negative = sum(m.total_kwh_negative for m in grid)
    other_total = solar_meter_total + grid_negative
    tenant_total = sum(m.total_kwh for m in tenant_meters)

    total_supply = bulk_total + max(0.0, other_total)
    recovery_rate = tenant_total / total_supply * 100 if total_supply > 0 else 0.0

    return ReconciliationTotals(
        bulk_total=bulk_total,
        solar_meter_total=solar_meter_total,
        grid_negative=grid_negative,
        other_total=other_total,
        tenant_total=tenant_total,
        total_supply=total_supply,
        recovery_rate=recovery_rate,
        discrepancy=total_supply - tenant_total,
    )


def _rollup(children: Sequence[ColumnTotalsResult]) -> ColumnTotalsResult:
    return ColumnTotalsResult(
        processed_totals=aggregate_column_totals(c.processed_totals for c in children),
        processed_max_values=aggregate_column_max_values(
            c.processed_max_values for c in children
        ),
        total_kwh_positive=sum(c.total_kwh_positive for c in children),
        total_kwh_negative=sum(c.total_kwh_negative for c in children),
        total_kwh=sum(c.total_kwh for c in children),
    )


def calculate_hierarchical_totals(
    meters: Sequence[Meter],
    connections_map: ConnectionsMap,
    direct_totals: Mapping[str, ColumnTotalsResult],
) -> dict[str, ColumnTotalsResult]:
    """Roll direct column totals up the hierarchy, leaves first.

    A meter without children keeps its direct totals (empty when it has
    no data). A parent's totals are the sum of its children's effective
    totals, and its max values the per-column max of theirs, where a
    child's effective totals are its direct totals when it has data and
    its own rollup otherwise.

    Args:
        meters: Meters to process, in any order.
        connections_map: Parent id -> child ids.
        direct_totals: Meter id -> processed totals, only for meters with
            readings.

    Returns:
        Meter id -> hierarchical totals for every meter in *meters*.
    """
    known = {m.id for m in meters}
    hierarchical: dict[str, ColumnTotalsResult] = {}

    for meter in sort_meters_by_depth(meters, connections_map):
        children = [c for c in connections_map.get(meter.id) or [] if c in known]
        if not children:
            hierarchical[meter.id] = direct_totals.get(meter.id, ColumnTotalsResult())
            continue

        effective = [
            direct_totals[child] if child in direct_totals
            else hierarchical.get(child, ColumnTotalsResult())
            for child in children
        ]
        hierarchical[meter.id] = _rollup(effective)

    return hierarchical


def rollup_source_meters(
    meter_id: str,
    connections_map: ConnectionsMap,
    metered: Iterable[str],
) -> list[str]:
    """Meters whose readings make up *meter_id*'s hierarchical totals.

    Mirrors :func:`calculate_hierarchical_totals`: a child with data of its
    own stands for its whole subtree, a child without data is replaced by
    its own sources. Each meter is visited once, so cycles terminate.

    Args:
        meter_id: Parent meter.
        connections_map: Parent id -> child ids.
        metered: Ids of the meters that have readings.
    """
    metered = set(metered)
    visited = {meter_id}
    sources: list[str] = []

    def collect(parent_id: str) -> None:
        for child in connections_map.get(parent_id) or []:
            if child in visited:
                continue
            visited.add(child)
            if child in metered:
                sources.append(child)
            else:
                collect(child)

    collect(meter_id)
    return sources


def calculate_revenue_totals(results: Iterable[MeterResult]) -> RevenueTotals:
    """Sum reported costs per category; revenue is what tenants are billed."""
    grid_cost = solar_cost = tenant_cost = tenant_kwh = 0.0
    for result in results:
        if result.category == MeterCategory.GRID_SUPPLY:
            grid_cost += result.reported_cost()
        elif result.category == MeterCategory.SOLAR:
            solar_cost += result.reported_cost()
        elif result.category == MeterCategory.TENANT:
            tenant_cost += result.reported_cost()
            tenant_kwh += result.reported_totals().total_kwh

    return RevenueTotals(
        grid_supply_cost=grid_cost,
        solar_cost=solar_cost,
        tenant_cost=tenant_cost,
        total_revenue=tenant_cost,
        avg_cost_per_kwh=tenant_cost / tenant_kwh if tenant_kwh > 0 else 0.0,
    )


# ---------------------------------------------------------------------------
# Reconciliation run
# ---------------------------------------------------------------------------


def _direct_totals(raw: RawColumnAggregate, settings: ColumnSettings) -> ColumnTotalsResult:
    """Apply settings; fall back to the raw kWh when no kWh column is selected."""
    direct = apply_column_settings(
        raw.column_totals, raw.column_max_values, raw.row_count, settings,
    )
    if any(not is_kva_field(column) for column in direct.processed_totals):
        return direct
    return direct.model_copy(
        update={
            "total_kwh": raw.total_kwh,
            "total_kwh_positive": max(0.0, raw.total_kwh),
            "total_kwh_negative": min(0.0, raw.total_kwh),
        },
    )


async def _meter_cost(
    tariff_store: TariffStore,
    reading_store: ReadingStore,
    site: Site,
    meter: Meter,
    date_from: datetime,
    date_to: datetime,
    total_kwh: float,
    max_kva: float,
    source_meter_ids: Sequence[str] | None = None,
) -> CostCalculationResult | None:
    """Cost a meter by tariff name (multi-period) or by assigned tariff id.

    *source_meter_ids* names the meters whose readings are priced or used
    to split *total_kwh* across tariff versions; None means the meter's own.
    """
    if meter.assigned_tariff_name and site.supply_authority_id:
        return await calculate_cost_across_periods(
            tariff_store, reading_store, meter.id, site.supply_authority_id,
            meter.assigned_tariff_name, date_from, date_to,
            total_kwh=total_kwh, max_kva=max_kva, source_meter_ids=source_meter_ids,
        )
    if meter.tariff_structure_id:
        return await calculate_meter_cost(
            tariff_store, reading_store, meter.id, meter.tariff_structure_id,
            date_from, date_to, total_kwh=total_kwh, max_kva=max_kva,
            source_meter_ids=source_meter_ids,
        )
    return None


async def run_reconciliation(
    meter_store: MeterStore,
    reading_store: ReadingStore,
    tariff_store: TariffStore,
    site_id: str,
    date_from: date | datetime,
    date_to: date | datetime,
    settings: ColumnSettings,
    meter_assignments: Mapping[str, str] | None = None,
    indent_levels: Mapping[str, int] | None = None,
    calculate_revenue: bool = False,
    thresholds: CorruptionThresholds = DEFAULT_THRESHOLDS,
) -> ReconciliationReport | None:
    """Reconcile one site over a date range.

    Explicit connection records define the hierarchy; when a site has none,
    connections are derived from *indent_levels* in meter-number order.
    Meters are processed one at a time over the shared stores.

    Args:
        meter_store: Source of the site, its meters and connections.
        reading_store: Source of readings.
        tariff_store: Source of tariffs (only used with calculate_revenue).
        site_id: Site to reconcile.
        date_from: Start of the range; a date means the start of that day.
        date_to: End of the range; a date means the end of that day.
        settings: Column settings for this run.
        meter_assignments: Meter id -> category assignment.
        indent_levels: Meter id -> indent, for sites without connections.
        calculate_revenue: Also cost every meter with a tariff.
        thresholds: Corruption ceilings for reading validation.

    Returns:
        ReconciliationReport, or None when the site does not exist.

    Raises:
        StoreError: If the site, its meters or its connections cannot be
            read. Per-meter failures are reported on the meter instead.
    """
    from_ts, to_ts = reading_window(date_from, date_to)
    assignments = meter_assignments or {}

    site = await meter_store.fetch_site(site_id)
    if site is None:
        return None

    meters = await meter_store.fetch_site_meters(site_id)
    meter_ids = {m.id for m in meters}
    connections: list[MeterConnection] = [
        c
        for c in await meter_store.fetch_connections(sorted(meter_ids))
        if c.parent_meter_id in meter_ids and c.child_meter_id in meter_ids
    ]
    if not connections and indent_levels:
        connections = derive_connections_from_indents(meters, indent_levels)
    connections_map = build_connections_map(connections)
    parent_of = {c.child_meter_id: c.parent_meter_id for c in reversed(connections)}

    warnings: list[str] = []
    for cycle in find_cycles(connections_map):
        message = f"Cycle in meter connections: {' -> '.join(cycle + cycle[:1])}"
        logger.warning("Site %s: %s", site_id, message)
        warnings.append(message)

    # Direct data per meter
    results: dict[str, MeterResult] = {}
    direct_totals: dict[str, ColumnTotalsResult] = {}
    corrections: list[CorrectedReading] = []
    for meter in meters:
        result = MeterResult(
            meter_id=meter.id,
            meter_number=meter.meter_number,
            meter_type=meter.meter_type,
            category=classify_meter(meter, assignments.get(meter.id)),
            depth=get_hierarchy_depth(meter.id, connections_map),
            parent_meter_id=parent_of.get(meter.id),
        )
        results[meter.id] = result

        try:
            readings = await reading_store.fetch_readings(meter.id, from_ts, to_ts)
        except StoreError as exc:
            logger.warning("Meter %s: failed to fetch readings: %s", meter.meter_number, exc)
            result.has_error = True
            result.error_message = str(exc)
            warnings.append(f"Meter {meter.meter_number}: {exc}")
            continue

        raw = summarize_readings(meter, readings, thresholds)
        corrections.extend(raw.corrections)
        result.readings_count = raw.row_count
        result.has_data = raw.row_count > 0
        if result.has_data:
            result.direct = _direct_totals(raw, settings)
            direct_totals[meter.id] = result.direct
        result.max_kva = get_max_kva_from_columns(result.direct.processed_max_values) or raw.max_kva

    # Hierarchical rollup
    for meter_id, totals in calculate_hierarchical_totals(
        meters, connections_map, direct_totals,
    ).items():
        results[meter_id].hierarchical = totals

    # Costs
    revenue = None
    if calculate_revenue:
        for meter in meters:
            result = results[meter.id]
            if result.has_error:
                continue
            if result.has_data:
                result.direct_cost = await _meter_cost(
                    tariff_store, reading_store, site, meter, from_ts, to_ts,
                    result.direct.total_kwh, result.max_kva,
                )
            if connections_map.get(meter.id):
                result.hierarchical_cost = await _meter_cost(
                    tariff_store, reading_store, site, meter, from_ts, to_ts,
                    result.hierarchical.total_kwh,
                    get_max_kva_from_columns(result.hierarchical.processed_max_values),
                    source_meter_ids=rollup_source_meters(
                        meter.id, connections_map, direct_totals,
                    ),
                )
            for cost in (result.direct_cost, result.hierarchical_cost):
                if cost is not None and cost.has_error:
                    logger.warning(
                        "Meter %s: cost not calculated: %s",
                        meter.meter_number, cost.error_message,
                    )
                    warnings.append(f"Meter {meter.meter_number}: {cost.error_message}")
        revenue = calculate_revenue_totals(results.values())

    ordered = list(results.values())
    by_category = {
        category: [r.reported_totals() for r in ordered if r.category == category]
        for category in (MeterCategory.GRID_SUPPLY, MeterCategory.SOLAR, MeterCategory.TENANT)
    }
    totals = calculate_reconciliation_totals(
        by_category[MeterCategory.GRID_SUPPLY],
        by_category[MeterCategory.SOLAR],
        by_category[MeterCategory.TENANT],
    )

    logger.info(
        "Reconciled site %s %s..%s: %d meters, supply %.2f kWh, tenants %.2f kWh, "
        "recovery %.1f%%, %d corrections, %d warnings",
        site_id, from_ts.isoformat(), to_ts.isoformat(), len(ordered),
        totals.total_supply, totals.tenant_total, totals.recovery_rate,
        len(corrections), len(warnings),
    )

    return ReconciliationReport(
        site_id=site_id,
        date_from=from_ts,
        date_to=to_ts,
        meters=ordered,
        totals=totals,
        revenue=revenue,
        corrections=corrections,
        warnings=warnings,
    )

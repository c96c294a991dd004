"""
Pydantic models shared by the calculation services and the API.

Covers the metering inputs (meters, readings, connections), the tariff
structure with its three pricing mechanisms, the typed column settings and
the plain result structures handed back to callers.

CHANGELOG:
- 2026-10-18: Replace parallel column maps with typed ColumnSettings
- 2026-10-18: Initial creation

TODO:
- None
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Meters and readings
# ---------------------------------------------------------------------------


class Site(BaseModel):
    """A metered site and the supply authority that bills it."""

    id: str
    name: str | None = None
    supply_authority_id: str | None = None


class Meter(BaseModel):
    """A physical or virtual meter on a site.

    ``meter_type`` is kept as free text because imported data uses several
    spellings (``council_meter``, ``council``, ``solar``, ``solar_meter`` ...).
    """

    id: str
    meter_number: str
    meter_type: str = "other"
    name: str | None = None
    location: str | None = None
    site_id: str | None = None
    tariff_structure_id: str | None = None
    assigned_tariff_name: str | None = None


class Reading(BaseModel):
    """One interval reading for a meter.

    Attributes:
        meter_id: Meter the reading belongs to.
        timestamp: Start of the interval (naive local time of the site).
        kwh_value: Energy for the interval.
        kva_value: Apparent power for the interval, if recorded.
        metadata: Free-form map; imported CSV columns live under
            ``imported_fields``.
    """

    meter_id: str
    timestamp: datetime
    kwh_value: float = 0.0
    kva_value: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def imported_fields(self) -> dict[str, Any]:
        """Imported CSV columns carried in the metadata map."""
        fields = self.metadata.get("imported_fields")
        return fields if isinstance(fields, dict) else {}


class MeterConnection(BaseModel):
    """Directed parent -> child edge in the meter hierarchy."""

    parent_meter_id: str
    child_meter_id: str


class DateRange(BaseModel):
    """Earliest and latest reading timestamps over a set of meters."""

    earliest: datetime | None = None
    latest: datetime | None = None


# ---------------------------------------------------------------------------
# Tariffs
# ---------------------------------------------------------------------------


class Season(str, Enum):
    """Season a time-of-use period applies to."""

    ALL_YEAR = "all_year"
    HIGH_DEMAND = "high_demand"
    LOW_DEMAND = "low_demand"


class DayType(str, Enum):
    """Day type a time-of-use period applies to."""

    WEEKDAY = "weekday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"
    WEEKEND = "weekend"
    ALL_DAYS = "all_days"


class TariffBlock(BaseModel):
    """One consumption band of a block tariff; ``kwh_to`` None is unbounded."""

    block_number: int
    kwh_from: float = 0.0
    kwh_to: float | None = None
    energy_charge_cents: float


class TariffCharge(BaseModel):
    """A typed charge (basic_monthly, demand_low_season, energy_both_seasons ...)."""

    charge_type: str
    charge_amount: float
    unit: str | None = None


class TariffTimePeriod(BaseModel):
    """Time-of-use rate for a season, day type and ``[start_hour, end_hour)``."""

    season: Season = Season.ALL_YEAR
    day_type: DayType = DayType.ALL_DAYS
    start_hour: int = Field(ge=0, le=24)
    end_hour: int = Field(ge=0, le=24)
    energy_charge_cents: float


class TariffStructure(BaseModel):
    """A versioned tariff with its blocks, charges and time periods."""

    id: str
    name: str
    tariff_type: str | None = None
    uses_tou: bool = False
    effective_from: date | None = None
    effective_to: date | None = None
    blocks: list[TariffBlock] = Field(default_factory=list)
    charges: list[TariffCharge] = Field(default_factory=list)
    time_periods: list[TariffTimePeriod] = Field(default_factory=list)


class TariffPeriod(BaseModel):
    """A tariff version applicable to part of a requested date range."""

    tariff_id: str
    tariff_name: str
    effective_from: date
    effective_to: date | None = None


class TariffPeriodBreakdown(BaseModel):
    """Cost of one tariff segment inside a multi-period calculation."""

    tariff_id: str
    tariff_name: str
    effective_from: date
    effective_to: date | None
    segment_start: date
    segment_end: date
    total_kwh: float
    total_cost: float


class CostErrorKind(str, Enum):
    """Why a cost calculation could not be performed."""

    NOT_FOUND = "not_found"
    NO_PRICING_STRUCTURE = "no_pricing_structure"
    FETCH_FAILURE = "fetch_failure"
    NO_SOURCE_READINGS = "no_source_readings"


class CostCalculationResult(BaseModel):
    """Cost breakdown for one meter over one date range.

    ``has_error`` distinguishes "could not calculate" from a legitimate zero
    cost. ``unmatched_kwh`` is the TOU energy that fell outside every time
    period and therefore carried no energy cost.
    """

    energy_cost: float = 0.0
    fixed_charges: float = 0.0
    demand_charges: float = 0.0
    total_cost: float = 0.0
    avg_cost_per_kwh: float = 0.0
    total_kwh: float = 0.0
    unmatched_kwh: float = 0.0
    tariff_name: str = "Unknown"
    has_error: bool = False
    error_kind: CostErrorKind | None = None
    error_message: str | None = None
    tariff_periods_used: list[TariffPeriodBreakdown] | None = None

    @classmethod
    def failure(
        cls,
        kind: CostErrorKind,
        message: str,
        tariff_name: str = "Unknown",
    ) -> "CostCalculationResult":
        """Build a zero-valued result flagged with *kind* and *message*."""
        return cls(
            tariff_name=tariff_name,
            has_error=True,
            error_kind=kind,
            error_message=message,
        )


# ---------------------------------------------------------------------------
# Column settings and aggregates
# ---------------------------------------------------------------------------


class ColumnOperation(str, Enum):
    """How a raw column aggregate is reduced to a reported value."""

    SUM = "sum"
    AVERAGE = "average"
    MAX = "max"
    MIN = "min"


class ColumnSetting(BaseModel):
    """Per-column configuration for one reconciliation pass."""

    model_config = ConfigDict(frozen=True)

    included: bool = True
    operation: ColumnOperation = ColumnOperation.SUM
    factor: float = 1.0


class ColumnSettings(BaseModel):
    """Column name -> setting. Columns without an entry are not selected."""

    model_config = ConfigDict(frozen=True)

    columns: dict[str, ColumnSetting] = Field(default_factory=dict)

    @classmethod
    def from_maps(
        cls,
        selected_columns: Iterable[str],
        column_operations: Mapping[str, str] | None = None,
        column_factors: Mapping[str, str | float] | None = None,
    ) -> "ColumnSettings":
        """Build settings from the selected-set / operations / factors triple.

        Operations and factors are only kept for selected columns, so the
        three inputs cannot drift apart once converted.
        """
        operations = column_operations or {}
        factors = column_factors or {}
        columns = {}
        for column in selected_columns:
            raw_factor = factors.get(column)
            columns[column] = ColumnSetting(
                operation=operations.get(column) or ColumnOperation.SUM,
                factor=raw_factor if raw_factor not in (None, "") else 1.0,
            )
        return cls(columns=columns)

    @property
    def selected_columns(self) -> frozenset[str]:
        """Names of the included columns."""
        return frozenset(
            name for name, setting in self.columns.items() if setting.included
        )

    def setting_for(self, column: str) -> ColumnSetting | None:
        """Return the setting for *column*, or None when it is not selected."""
        setting = self.columns.get(column)
        if setting is None or not setting.included:
            return None
        return setting


class ColumnTotalsResult(BaseModel):
    """Processed column totals for one meter after settings were applied."""

    processed_totals: dict[str, float] = Field(default_factory=dict)
    processed_max_values: dict[str, float] = Field(default_factory=dict)
    total_kwh_positive: float = 0.0
    total_kwh_negative: float = 0.0
    total_kwh: float = 0.0


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class CorruptionThresholds(BaseModel):
    """Per-field ceilings above which a single interval value is corrupt."""

    model_config = ConfigDict(frozen=True)

    max_kwh_per_interval: float = 10_000
    max_kva_per_interval: float = 50_000
    max_metadata_value: float = 100_000


class ValidationResult(BaseModel):
    """Outcome of a corruption check."""

    is_corrupt: bool
    reason: str | None = None


class CorrectedReading(BaseModel):
    """Audit record of a corrupt value that was replaced."""

    meter_id: str
    meter_number: str
    timestamp: str
    field_name: str
    original_value: float
    corrected_value: float
    reason: str


class RawColumnAggregate(BaseModel):
    """Raw per-column sums and maxima for one meter's readings."""

    total_kwh: float = 0.0
    column_totals: dict[str, float] = Field(default_factory=dict)
    column_max_values: dict[str, float] = Field(default_factory=dict)
    row_count: int = 0
    max_kva: float = 0.0
    corrections: list[CorrectedReading] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class MeterCategory(str, Enum):
    """Reconciliation bucket a meter is reported under."""

    GRID_SUPPLY = "grid_supply"
    SOLAR = "solar"
    TENANT = "tenant"
    CHECK = "check"
    DISTRIBUTION = "distribution"
    OTHER = "other"
    UNASSIGNED = "unassigned"


class MeterTotals(BaseModel):
    """kWh figures of one meter as consumed by the totals calculator."""

    meter_id: str | None = None
    total_kwh: float = 0.0
    total_kwh_positive: float = 0.0
    total_kwh_negative: float = 0.0


class ReconciliationTotals(BaseModel):
    """Site-level supply versus tenant consumption summary."""

    bulk_total: float
    solar_meter_total: float
    grid_negative: float
    other_total: float
    tenant_total: float
    total_supply: float
    recovery_rate: float
    discrepancy: float


class MeterResult(BaseModel):
    """Per-meter outcome of a reconciliation run."""

    meter_id: str
    meter_number: str
    meter_type: str
    category: MeterCategory
    depth: int = 0
    parent_meter_id: str | None = None
    readings_count: int = 0
    has_data: bool = False
    direct: ColumnTotalsResult = Field(default_factory=ColumnTotalsResult)
    hierarchical: ColumnTotalsResult = Field(default_factory=ColumnTotalsResult)
    max_kva: float = 0.0
    direct_cost: CostCalculationResult | None = None
    hierarchical_cost: CostCalculationResult | None = None
    has_error: bool = False
    error_message: str | None = None

    def reported_totals(self) -> MeterTotals:
        """kWh used in the site summary: direct data, else the rollup."""
        source = self.direct if self.has_data else self.hierarchical
        return MeterTotals(
            meter_id=self.meter_id,
            total_kwh=source.total_kwh,
            total_kwh_positive=source.total_kwh_positive,
            total_kwh_negative=source.total_kwh_negative,
        )

    def reported_cost(self) -> float:
        """Total cost matching :meth:`reported_totals`, 0 when not costed."""
        cost = self.direct_cost if self.has_data else self.hierarchical_cost
        if cost is None or cost.has_error:
            return 0.0
        return cost.total_cost


class RevenueTotals(BaseModel):
    """Cost rollup of a reconciliation run."""

    grid_supply_cost: float = 0.0
    solar_cost: float = 0.0
    tenant_cost: float = 0.0
    total_revenue: float = 0.0
    avg_cost_per_kwh: float = 0.0


class ReconciliationReport(BaseModel):
    """Everything a reconciliation run produces for the caller to persist."""

    site_id: str
    date_from: datetime
    date_to: datetime
    meters: list[MeterResult] = Field(default_factory=list)
    totals: ReconciliationTotals
    revenue: RevenueTotals | None = None
    corrections: list[CorrectedReading] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

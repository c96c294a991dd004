"""
Per-column aggregation of imported meter data.

Readings carry arbitrary imported columns (``P1 (kWh)``, ``V1 (V)``,
``S (kVA)`` ...). ``summarize_readings`` reduces a meter's readings to raw
per-column sums and maxima; ``apply_column_settings`` turns those into the
reported figures using the run's column settings; the ``aggregate_*``
helpers combine children into a parent.

Inputs are never mutated: every function returns fresh dicts.

CHANGELOG:
- 2026-10-18: Validate kva_value before it reaches the peak kVA
- 2026-10-18: Add summarize_readings with neighbour-based corrections
- 2026-10-18: Initial creation

TODO:
- None
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from meter_recon.schemas import (
    ColumnOperation,
    ColumnSettings,
    ColumnTotalsResult,
    CorrectedReading,
    CorruptionThresholds,
    Meter,
    RawColumnAggregate,
    Reading,
)
from meter_recon.services.validation import (
    DEFAULT_THRESHOLDS,
    is_kva_field,
    validate_and_correct_value,
)


def apply_column_settings(
    raw_totals: Mapping[str, float],
    raw_max_values: Mapping[str, float],
    row_count: int,
    settings: ColumnSettings,
) -> ColumnTotalsResult:
    """Reduce raw column aggregates to reported values.

    For every selected column in *raw_totals*: ``sum`` keeps the raw sum,
    ``average`` divides it by *row_count* (0 when there are no rows),
    ``max`` takes the value from *raw_max_values* (the column is skipped
    when none was recorded) and ``min`` falls back to the sum, since the
    raw aggregate keeps no per-interval values. The result is multiplied
    by the column factor; max results go to ``processed_max_values``,
    the rest to ``processed_totals``.

    Every selected column with a recorded maximum also gets its factored
    maximum in ``processed_max_values`` so that peak columns are available
    whatever their operation.

    The kWh totals sum the non-max, non-kVA results, split by sign.

    Args:
        raw_totals: Column -> raw sum over the meter's rows.
        raw_max_values: Column -> raw maximum over the meter's rows.
        row_count: Number of rows that produced the sums.
        settings: Column settings for this run.

    Returns:
        ColumnTotalsResult with the processed maps and kWh totals.
    """
    processed_totals: dict[str, float] = {}
    processed_max_values: dict[str, float] = {}
    total_positive = total_negative = total = 0.0

    for column, raw_sum in raw_totals.items():
        setting = settings.setting_for(column)
        if setting is None:
            continue

        is_max = setting.operation == ColumnOperation.MAX
        if is_max:
            if column not in raw_max_values:
                continue
            value = raw_max_values[column]
        elif setting.operation == ColumnOperation.AVERAGE:
            value = raw_sum / row_count if row_count > 0 else 0.0
        else:
            # sum, and min until per-interval minima are tracked upstream
            value = raw_sum

        value *= setting.factor

        if is_max:
            processed_max_values[column] = value
            continue

        processed_totals[column] = value
        if is_kva_field(column):
            continue
        if value > 0:
            total_positive += value
        elif value < 0:
            total_negative += value
        total += value

    for column, raw_max in raw_max_values.items():
        setting = settings.setting_for(column)
        if setting is not None:
            processed_max_values[column] = raw_max * setting.factor

    return ColumnTotalsResult(
        processed_totals=processed_totals,
        processed_max_values=processed_max_values,
        total_kwh_positive=total_positive,
        total_kwh_negative=total_negative,
        total_kwh=total,
    )


def aggregate_column_totals(child_totals: Iterable[Mapping[str, float]]) -> dict[str, float]:
    """Sum column values key by key across children."""
    aggregated: dict[str, float] = {}
    for totals in child_totals:
        for column, value in totals.items():
            aggregated[column] = aggregated.get(column, 0.0) + value
    return aggregated


def aggregate_column_max_values(child_max_values: Iterable[Mapping[str, float]]) -> dict[str, float]:
    """Take the largest value per column across children."""
    aggregated: dict[str, float] = {}
    for max_values in child_max_values:
        for column, value in max_values.items():
            if column not in aggregated or value > aggregated[column]:
                aggregated[column] = value
    return aggregated


def get_max_kva_from_columns(max_values: Mapping[str, float]) -> float:
    """Peak over the kVA columns of *max_values*, 0 when there are none."""
    return max(
        (value for column, value in max_values.items() if is_kva_field(column)),
        default=0.0,
    )


# ---------------------------------------------------------------------------
# Reading summarisation
# ---------------------------------------------------------------------------


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _imported_value(reading: Reading | None, column: str) -> float | None:
    if reading is None:
        return None
    return _to_number(reading.imported_fields.get(column))


def summarize_readings(
    meter: Meter,
    readings: Sequence[Reading],
    thresholds: CorruptionThresholds = DEFAULT_THRESHOLDS,
) -> RawColumnAggregate:
    """Reduce one meter's readings to raw column sums and maxima.

    Every ``kwh_value``, ``kva_value`` and imported column value is
    checked against *thresholds*; corrupt values are replaced from their
    neighbouring readings before being accumulated, and each replacement is
    returned in ``corrections``. The corrected ``kva_value`` feeds the peak
    kVA used for demand charges. Non-numeric imported values count as 0.

    Args:
        meter: Meter the readings belong to (for the audit trail).
        readings: The meter's readings ordered by timestamp.
        thresholds: Corruption ceilings to apply.

    Returns:
        RawColumnAggregate for the readings.
    """
    total_kwh = 0.0
    max_kva = 0.0
    column_totals: dict[str, float] = {}
    column_max_values: dict[str, float] = {}
    corrections: list[CorrectedReading] = []

    for index, reading in enumerate(readings):
        previous = readings[index - 1] if index > 0 else None
        following = readings[index + 1] if index + 1 < len(readings) else None
        timestamp = reading.timestamp.isoformat()

        kwh, correction = validate_and_correct_value(
            reading.kwh_value,
            "kwh_value",
            meter.id,
            meter.meter_number,
            timestamp,
            prev_value=previous.kwh_value if previous else None,
            next_value=following.kwh_value if following else None,
            thresholds=thresholds,
        )
        if correction is not None:
            corrections.append(correction)
        total_kwh += kwh

        if reading.kva_value is not None:
            kva, correction = validate_and_correct_value(
                reading.kva_value,
                "kva_value",
                meter.id,
                meter.meter_number,
                timestamp,
                prev_value=previous.kva_value if previous else None,
                next_value=following.kva_value if following else None,
                thresholds=thresholds,
            )
            if correction is not None:
                corrections.append(correction)
            max_kva = max(max_kva, kva)

        for column, raw in reading.imported_fields.items():
            value, correction = validate_and_correct_value(
                _to_number(raw) or 0.0,
                column,
                meter.id,
                meter.meter_number,
                timestamp,
                prev_value=_imported_value(previous, column),
                next_value=_imported_value(following, column),
                thresholds=thresholds,
            )
            if correction is not None:
                corrections.append(correction)

            column_totals[column] = column_totals.get(column, 0.0) + value
            if column not in column_max_values or value > column_max_values[column]:
                column_max_values[column] = value

    return RawColumnAggregate(
        total_kwh=total_kwh,
        column_totals=column_totals,
        column_max_values=column_max_values,
        row_count=len(readings),
        max_kva=max_kva,
        corrections=corrections,
    )

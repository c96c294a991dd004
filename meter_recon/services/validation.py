"""
Corruption detection for meter reading values.

``is_value_corrupt`` is a pure check of one value against per-field
ceilings. ``validate_and_correct_value`` wraps it for callers that want to
repair a corrupt interval from its neighbours and keep an audit trail of
every replacement.

CHANGELOG:
- 2026-10-18: Add neighbour-based correction with CorrectedReading audit
- 2026-10-18: Initial creation

TODO:
- None
"""

import logging

from meter_recon.schemas import (
    CorrectedReading,
    CorruptionThresholds,
    ValidationResult,
)

logger = logging.getLogger(__name__)

# 10,000 kWh in a 30-minute interval is a sustained 20 MW draw; anything
# above these ceilings is treated as a meter or import fault.
DEFAULT_THRESHOLDS = CorruptionThresholds()


def is_kwh_field(field_name: str) -> bool:
    """Return True when *field_name* carries energy (kWh)."""
    return "kwh" in field_name.lower()


def is_kva_field(field_name: str) -> bool:
    """Return True when *field_name* carries apparent power (kVA).

    The bare column name ``S`` is the apparent-power column of most
    logger exports.
    """
    lowered = field_name.lower()
    return "kva" in lowered or lowered == "s"


def is_value_corrupt(
    value: float,
    field_name: str,
    thresholds: CorruptionThresholds = DEFAULT_THRESHOLDS,
) -> ValidationResult:
    """Check whether *value* exceeds the ceiling for its field type.

    Field classification is a case-insensitive substring match: names
    containing ``kwh`` use the kWh ceiling, names containing ``kva`` (or
    exactly ``s``) use the kVA ceiling, anything else uses the generic
    metadata ceiling. The absolute value is compared so that large export
    (negative) values are caught too.

    Args:
        value: The interval value to check.
        field_name: Column or field the value came from.
        thresholds: Ceilings to apply.

    Returns:
        ValidationResult with a human-readable reason when corrupt.
    """
    if is_kwh_field(field_name):
        label, limit = "kWh", thresholds.max_kwh_per_interval
    elif is_kva_field(field_name):
        label, limit = "kVA", thresholds.max_kva_per_interval
    else:
        label, limit = "metadata", thresholds.max_metadata_value

    if abs(value) > limit:
        return ValidationResult(
            is_corrupt=True,
            reason=f"Value {value:,.2f} exceeds max {label} threshold {limit:,.0f}",
        )
    return ValidationResult(is_corrupt=False)


def _usable(
    neighbour: float | None,
    field_name: str,
    thresholds: CorruptionThresholds,
) -> bool:
    return (
        neighbour is not None
        and not is_value_corrupt(neighbour, field_name, thresholds).is_corrupt
    )


def validate_and_correct_value(
    value: float,
    field_name: str,
    meter_id: str,
    meter_number: str,
    timestamp: str,
    prev_value: float | None = None,
    next_value: float | None = None,
    thresholds: CorruptionThresholds = DEFAULT_THRESHOLDS,
) -> tuple[float, CorrectedReading | None]:
    """Return *value*, or a neighbour-based replacement when it is corrupt.

    Replacement order: mean of both neighbours when both are valid, the
    previous valid neighbour, the next valid neighbour, and finally zero.

    Returns:
        Tuple of (value to use, correction record or None when unchanged).
    """
    if not is_value_corrupt(value, field_name, thresholds).is_corrupt:
        return value, None

    prev_ok = _usable(prev_value, field_name, thresholds)
    next_ok = _usable(next_value, field_name, thresholds)

    if prev_ok and next_ok:
        corrected = (prev_value + next_value) / 2
        reason = f"Interpolated from neighbors ({prev_value:.2f}, {next_value:.2f})"
    elif prev_ok:
        corrected = prev_value
        reason = f"Used previous value ({prev_value:.2f})"
    elif next_ok:
        corrected = next_value
        reason = f"Used next value ({next_value:.2f})"
    else:
        corrected = 0.0
        reason = "Zeroed out (no valid neighbors)"

    logger.warning(
        "Corrupt value on meter %s @ %s %s: %s -> %.2f (%s)",
        meter_number, timestamp, field_name, value, corrected, reason,
    )

    return corrected, CorrectedReading(
        meter_id=meter_id,
        meter_number=meter_number,
        timestamp=timestamp,
        field_name=field_name,
        original_value=value,
        corrected_value=corrected,
        reason=reason,
    )

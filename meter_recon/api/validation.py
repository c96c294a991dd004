"""
Reading validation endpoint.

POST /v1/validation checks a series of interval values of one field
against the configured corruption thresholds and returns the corrected
series together with the audit trail of every replacement.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel, Field

from meter_recon.api.deps import AppSettings
from meter_recon.schemas import CorrectedReading, ValidationResult
from meter_recon.services.validation import is_value_corrupt, validate_and_correct_value

router = APIRouter(prefix="/v1", tags=["validation"])


class IntervalValue(BaseModel):
    """One value of the series, with the start of its interval."""

    timestamp: datetime
    value: float


class ValidationRequest(BaseModel):
    """Request body for POST /v1/validation."""

    meter_id: str
    meter_number: str
    field_name: str
    values: list[IntervalValue] = Field(default_factory=list)


class ValidationResponse(BaseModel):
    """Per-value checks, the corrected series and the corrections made."""

    results: list[ValidationResult]
    corrected_values: list[float]
    corrections: list[CorrectedReading]


@router.post("/validation", response_model=ValidationResponse)
async def validate_values(body: ValidationRequest, settings: AppSettings) -> ValidationResponse:
    """Validate and correct a series of values.

    Each corrupt value is replaced from its neighbours in the submitted
    order; neighbours are the submitted values, not corrected ones.

    Args:
        body: Series to validate.
        settings: Application settings (corruption thresholds).

    Returns:
        ValidationResponse aligned with ``body.values``.
    """
    thresholds = settings.corruption_thresholds()
    raw = [item.value for item in body.values]

    results = []
    corrected_values = []
    corrections = []
    for index, item in enumerate(body.values):
        results.append(is_value_corrupt(item.value, body.field_name, thresholds))
        value, correction = validate_and_correct_value(
            item.value,
            body.field_name,
            body.meter_id,
            body.meter_number,
            item.timestamp.isoformat(),
            prev_value=raw[index - 1] if index > 0 else None,
            next_value=raw[index + 1] if index + 1 < len(raw) else None,
            thresholds=thresholds,
        )
        corrected_values.append(value)
        if correction is not None:
            corrections.append(correction)

    return ValidationResponse(
        results=results,
        corrected_values=corrected_values,
        corrections=corrections,
    )

"""
Reconciliation endpoint.

POST /v1/reconciliation runs a full supply-versus-tenant reconciliation
for one site and returns the report for the caller to persist or render.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from datetime import date
from typing import Self

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, model_validator

from meter_recon.api.deps import AppSettings, DataStore
from meter_recon.schemas import ColumnOperation, ColumnSettings, ReconciliationReport
from meter_recon.services.data_fetching import StoreError
from meter_recon.services.reconciliation import run_reconciliation

router = APIRouter(prefix="/v1", tags=["reconciliation"])


class ReconciliationRequest(BaseModel):
    """Request body for POST /v1/reconciliation.

    Column settings arrive as the selected-columns list with per-column
    operations and factors; they are only honoured for selected columns.
    """

    site_id: str
    date_from: date
    date_to: date
    selected_columns: list[str] = Field(default_factory=list)
    column_operations: dict[str, ColumnOperation] = Field(default_factory=dict)
    column_factors: dict[str, float] = Field(default_factory=dict)
    meter_assignments: dict[str, str] = Field(default_factory=dict)
    indent_levels: dict[str, int] = Field(default_factory=dict)
    calculate_revenue: bool = False

    @model_validator(mode="after")
    def check_range(self) -> Self:
        """Reject ranges that end before they start."""
        if self.date_to < self.date_from:
            raise ValueError("date_to must not be before date_from")
        return self

    def column_settings(self) -> ColumnSettings:
        """Typed column settings for the run."""
        return ColumnSettings.from_maps(
            self.selected_columns, self.column_operations, self.column_factors,
        )


@router.post("/reconciliation", response_model=ReconciliationReport)
async def reconcile(
    body: ReconciliationRequest,
    store: DataStore,
    settings: AppSettings,
) -> ReconciliationReport:
    """Reconcile a site over the requested date range.

    Args:
        body: Reconciliation request.
        store: Meter, reading and tariff store (injected).
        settings: Application settings (corruption thresholds).

    Returns:
        ReconciliationReport with per-meter results and site totals.

    Raises:
        HTTPException: 404 if the site does not exist.
        HTTPException: 503 if the site's meters cannot be read.
    """
    try:
        report = await run_reconciliation(
            store, store, store,
            body.site_id, body.date_from, body.date_to,
            body.column_settings(),
            meter_assignments=body.meter_assignments,
            indent_levels=body.indent_levels,
            calculate_revenue=body.calculate_revenue,
            thresholds=settings.corruption_thresholds(),
        )
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    if report is None:
        raise HTTPException(status_code=404, detail=f"Site '{body.site_id}' not found")
    return report

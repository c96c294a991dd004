"""
Cost calculation endpoint.

POST /v1/cost costs one meter over a date range, either against one tariff
structure (``tariff_id``) or against every version of a named tariff of a
supply authority (``tariff_name`` + ``supply_authority_id``). Results are
cached in Redis for CACHE_TTL_S; failed calculations are not cached.

A calculation that could not be performed is still HTTP 200 with
``has_error`` set: only malformed requests are rejected (422).

CHANGELOG:
- 2026-10-18: Cache successful results in Redis
- 2026-10-18: Initial creation

TODO:
- None
"""

import hashlib
import logging
from datetime import date
from typing import Self

from fastapi import APIRouter
from pydantic import BaseModel, Field, model_validator

from meter_recon.api.deps import DataStore
from meter_recon.cache.redis_client import cache_get_json, cache_set_json
from meter_recon.schemas import CostCalculationResult
from meter_recon.services.multi_period import calculate_cost_across_periods
from meter_recon.services.tariff_cost import calculate_meter_cost

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["cost"])


class CostRequest(BaseModel):
    """Request body for POST /v1/cost.

    Attributes:
        meter_id: Meter to cost.
        date_from: First billed day.
        date_to: Last billed day (inclusive).
        tariff_id: Tariff structure to apply.
        tariff_name: Logical tariff name, resolved to versions by date.
        supply_authority_id: Authority publishing ``tariff_name``.
        total_kwh: Consumption override; summed from readings when absent.
        max_kva: Peak kVA override; taken from readings when absent.
    """

    meter_id: str
    date_from: date
    date_to: date
    tariff_id: str | None = None
    tariff_name: str | None = None
    supply_authority_id: str | None = None
    total_kwh: float | None = None
    max_kva: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_tariff_reference(self) -> Self:
        """Require a tariff id or a tariff name with its supply authority."""
        if self.date_to < self.date_from:
            raise ValueError("date_to must not be before date_from")
        if self.tariff_id is None and not (self.tariff_name and self.supply_authority_id):
            raise ValueError(
                "Provide tariff_id, or tariff_name together with supply_authority_id",
            )
        return self

    def cache_key(self) -> str:
        """Redis key identifying this exact request."""
        digest = hashlib.sha256(self.model_dump_json().encode()).hexdigest()
        return f"cost:{digest}"


@router.post("/cost", response_model=CostCalculationResult)
async def calculate(body: CostRequest, store: DataStore) -> CostCalculationResult:
    """Calculate the cost of a meter's consumption.

    Uses the named-tariff (multi-period) path when ``tariff_name`` and
    ``supply_authority_id`` are given, else the single ``tariff_id``.

    Args:
        body: Cost request.
        store: Reading and tariff store (injected).

    Returns:
        CostCalculationResult, possibly flagged with ``has_error``.
    """
    key = body.cache_key()
    cached = await cache_get_json(key)
    if cached is not None:
        return CostCalculationResult.model_validate(cached)

    if body.tariff_name and body.supply_authority_id:
        result = await calculate_cost_across_periods(
            store, store, body.meter_id, body.supply_authority_id, body.tariff_name,
            body.date_from, body.date_to,
            total_kwh=body.total_kwh, max_kva=body.max_kva,
        )
    else:
        result = await calculate_meter_cost(
            store, store, body.meter_id, body.tariff_id,
            body.date_from, body.date_to,
            total_kwh=body.total_kwh, max_kva=body.max_kva,
        )

    if result.has_error:
        logger.warning(
            "Cost for meter %s not calculated (%s): %s",
            body.meter_id, result.error_kind, result.error_message,
        )
    else:
        await cache_set_json(key, result.model_dump(mode="json"))
    return result

"""
Database package for SQLAlchemy models and session management.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from meter_recon.db.models import (
    Base,
    Meter,
    MeterConnection,
    MeterReading,
    Site,
    TariffBlock,
    TariffCharge,
    TariffStructure,
    TariffTimePeriod,
)
from meter_recon.db.session import (
    dispose_engine,
    get_async_session,
    init_engine,
)

__all__ = [
    "Base",
    "Meter",
    "MeterConnection",
    "MeterReading",
    "Site",
    "TariffBlock",
    "TariffCharge",
    "TariffStructure",
    "TariffTimePeriod",
    "dispose_engine",
    "get_async_session",
    "init_engine",
]

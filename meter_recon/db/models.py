"""
SQLAlchemy ORM models for the metering and tariff store.

The service only reads these tables; rows are written by the import and
tariff-extraction pipelines that own the schema.

CHANGELOG:
- 2026-10-18: Add tariff structure, block, charge and time-period tables
- 2026-10-18: Initial creation

TODO:
- None
"""

import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Double,
    ForeignKey,
    Integer,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all metering ORM models."""

    pass


# ---------------------------------------------------------------------------
# Sites, meters and readings
# ---------------------------------------------------------------------------


class Site(Base):
    """A metered site billed by one supply authority."""

    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    supply_authority_id: Mapped[str | None] = mapped_column(Text, nullable=True)


class Meter(Base):
    """A meter on a site, with its optional tariff assignment.

    Attributes:
        meter_number: Human-readable number printed on the meter.
        meter_type: council_meter, bulk_meter, check_meter, solar,
            tenant_meter, distribution or other.
        tariff_structure_id: Directly assigned tariff version.
        assigned_tariff_name: Logical tariff name, resolved to versions by
            effective date for multi-period costing.
    """

    __tablename__ = "meters"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    site_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("sites.id"), nullable=True, index=True,
    )
    meter_number: Mapped[str] = mapped_column(Text, nullable=False)
    meter_type: Mapped[str] = mapped_column(Text, nullable=False, default="other")
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    tariff_structure_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_tariff_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of the Meter."""
        return f"Meter(id={self.id!r}, meter_number={self.meter_number!r})"


class MeterReading(Base):
    """One interval reading.

    Timestamps are stored without a zone: they are the site's local time,
    which is what time-of-use periods are defined against. The ``metadata``
    column holds the imported CSV columns under ``imported_fields``.
    """

    __tablename__ = "meter_readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meter_id: Mapped[str] = mapped_column(
        Text, ForeignKey("meters.id"), nullable=False, index=True,
    )
    reading_timestamp: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, index=True,
    )
    kwh_value: Mapped[float | None] = mapped_column(Double, nullable=True)
    kva_value: Mapped[float | None] = mapped_column(Double, nullable=True)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True,
    )

    def __repr__(self) -> str:
        """Return string representation of the MeterReading."""
        return (
            f"MeterReading(meter_id={self.meter_id!r}, "
            f"reading_timestamp={self.reading_timestamp!r}, "
            f"kwh_value={self.kwh_value!r})"
        )


class MeterConnection(Base):
    """Parent -> child edge of the meter hierarchy."""

    __tablename__ = "meter_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_meter_id: Mapped[str] = mapped_column(
        Text, ForeignKey("meters.id"), nullable=False,
    )
    child_meter_id: Mapped[str] = mapped_column(
        Text, ForeignKey("meters.id"), nullable=False,
    )


# ---------------------------------------------------------------------------
# Tariffs
# ---------------------------------------------------------------------------


class TariffStructure(Base):
    """One version of a named tariff, valid from ``effective_from``.

    ``effective_to`` NULL means the version is still in force.
    """

    __tablename__ = "tariff_structures"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    supply_authority_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    tariff_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    uses_tou: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    effective_from: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        """Return string representation of the TariffStructure."""
        return (
            f"TariffStructure(id={self.id!r}, name={self.name!r}, "
            f"effective_from={self.effective_from!r})"
        )


class TariffBlock(Base):
    """Consumption band of a block tariff (cents per kWh)."""

    __tablename__ = "tariff_blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tariff_structure_id: Mapped[str] = mapped_column(
        Text, ForeignKey("tariff_structures.id"), nullable=False, index=True,
    )
    block_number: Mapped[int] = mapped_column(Integer, nullable=False)
    kwh_from: Mapped[float] = mapped_column(Double, nullable=False, default=0)
    kwh_to: Mapped[float | None] = mapped_column(Double, nullable=True)
    energy_charge_cents: Mapped[float] = mapped_column(Double, nullable=False)


class TariffCharge(Base):
    """Typed charge of a tariff (basic, demand or energy)."""

    __tablename__ = "tariff_charges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tariff_structure_id: Mapped[str] = mapped_column(
        Text, ForeignKey("tariff_structures.id"), nullable=False, index=True,
    )
    charge_type: Mapped[str] = mapped_column(Text, nullable=False)
    charge_amount: Mapped[float] = mapped_column(Double, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text, nullable=True)


class TariffTimePeriod(Base):
    """Time-of-use rate for a season, day type and hour window."""

    __tablename__ = "tariff_time_periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tariff_structure_id: Mapped[str] = mapped_column(
        Text, ForeignKey("tariff_structures.id"), nullable=False, index=True,
    )
    season: Mapped[str] = mapped_column(Text, nullable=False, default="all_year")
    day_type: Mapped[str] = mapped_column(Text, nullable=False, default="all_days")
    start_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    end_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    energy_charge_cents: Mapped[float] = mapped_column(Double, nullable=False)

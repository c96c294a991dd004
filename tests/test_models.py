"""
Tests for the metering and tariff ORM models.

Validates table names, the columns the store queries rely on and their
types.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from sqlalchemy import JSON, Date, DateTime, Double, inspect

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


class TestTables:
    """Every model maps to its table."""

    def test_table_names(self) -> None:
        """Table names match the metering schema."""
        assert set(Base.metadata.tables) == {
            "sites",
            "meters",
            "meter_readings",
            "meter_connections",
            "tariff_structures",
            "tariff_blocks",
            "tariff_charges",
            "tariff_time_periods",
        }

    def test_site_columns(self) -> None:
        """Site carries its supply authority."""
        columns = [col.key for col in inspect(Site).column_attrs]
        assert "supply_authority_id" in columns


class TestMeterReading:
    """Reading table columns."""

    def test_metadata_column_name(self) -> None:
        """The metadata_ attribute maps to the 'metadata' column."""
        assert "metadata" in MeterReading.__table__.columns
        assert isinstance(MeterReading.__table__.columns["metadata"].type, JSON)

    def test_timestamp_is_naive(self) -> None:
        """Reading timestamps are stored without a zone."""
        col = MeterReading.__table__.columns["reading_timestamp"]
        assert isinstance(col.type, DateTime)
        assert col.type.timezone is False

    def test_kwh_nullable_double(self) -> None:
        """kwh_value is a nullable double."""
        col = MeterReading.__table__.columns["kwh_value"]
        assert isinstance(col.type, Double)
        assert col.nullable is True

    def test_repr(self) -> None:
        """repr names meter and timestamp."""
        assert "meter_id='m1'" in repr(MeterReading(meter_id="m1"))


class TestMeter:
    """Meter table columns."""

    def test_tariff_assignment_columns(self) -> None:
        """Meters carry both tariff assignment styles."""
        columns = [col.key for col in inspect(Meter).column_attrs]
        assert "tariff_structure_id" in columns
        assert "assigned_tariff_name" in columns

    def test_repr(self) -> None:
        """repr names id and number."""
        assert repr(Meter(id="m1", meter_number="M-01")) == (
            "Meter(id='m1', meter_number='M-01')"
        )


class TestTariffTables:
    """Tariff tables reference their structure."""

    def test_children_reference_structure(self) -> None:
        """Blocks, charges and periods point at tariff_structures."""
        for model in (TariffBlock, TariffCharge, TariffTimePeriod):
            col = model.__table__.columns["tariff_structure_id"]
            (fk,) = col.foreign_keys
            assert fk.target_fullname == "tariff_structures.id"

    def test_effective_dates(self) -> None:
        """Versions have a required start and an open end."""
        columns = TariffStructure.__table__.columns
        assert isinstance(columns["effective_from"].type, Date)
        assert columns["effective_from"].nullable is False
        assert columns["effective_to"].nullable is True

    def test_connection_endpoints(self) -> None:
        """Edges reference meters on both ends."""
        columns = MeterConnection.__table__.columns
        assert {fk.target_fullname for fk in columns["parent_meter_id"].foreign_keys} == {
            "meters.id",
        }
        assert {fk.target_fullname for fk in columns["child_meter_id"].foreign_keys} == {
            "meters.id",
        }

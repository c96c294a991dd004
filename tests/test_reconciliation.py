"""
Tests for reconciliation totals, hierarchical rollup and full runs.

CHANGELOG:
- 2026-10-18: Cover rollup costing of parents and short meter types
- 2026-10-18: Initial creation

TODO:
- None
"""

import logging
from datetime import date, datetime, time
from unittest.mock import AsyncMock

import pytest

from meter_recon.schemas import (
    ColumnSetting,
    ColumnSettings,
    ColumnTotalsResult,
    Meter,
    MeterCategory,
    MeterConnection,
    MeterTotals,
    Site,
)
from meter_recon.services.data_fetching import StoreError
from meter_recon.services.reconciliation import (
    calculate_hierarchical_totals,
    calculate_reconciliation_totals,
    classify_meter,
    rollup_source_meters,
    run_reconciliation,
)
from tests.conftest import FakeStore, flat_tariff, reading, tou_tariff

AUTHORITY = "auth-1"
MARCH_FROM = date(2026, 3, 1)
MARCH_TO = date(2026, 3, 31)
KWH = "P1 (kWh)"
SETTINGS = ColumnSettings(columns={KWH: ColumnSetting()})


def _result_by_id(report) -> dict:
    return {m.meter_id: m for m in report.meters}


@pytest.fixture()
def site_store(store: FakeStore) -> FakeStore:
    """council -> check -> (t1, t2) plus a solar meter, March readings."""
    store.sites["s1"] = Site(id="s1", name="Mall", supply_authority_id=AUTHORITY)
    store.meters = [
        Meter(id="council", meter_number="M-01", meter_type="council_meter", site_id="s1"),
        Meter(id="check", meter_number="M-02", meter_type="check_meter", site_id="s1"),
        Meter(id="t1", meter_number="M-03", meter_type="tenant_meter", site_id="s1"),
        Meter(id="t2", meter_number="M-04", meter_type="tenant_meter", site_id="s1"),
        Meter(id="solar", meter_number="M-05", meter_type="solar_meter", site_id="s1"),
    ]
    store.connections = [
        MeterConnection(parent_meter_id="council", child_meter_id="check"),
        MeterConnection(parent_meter_id="check", child_meter_id="t1"),
        MeterConnection(parent_meter_id="check", child_meter_id="t2"),
    ]
    store.readings = [
        reading("council", datetime(2026, 3, 5, 12), 100, **{KWH: 100}),
        reading("council", datetime(2026, 3, 6, 12), 100, **{KWH: 100}),
        reading("t1", datetime(2026, 3, 5, 12), 80, **{KWH: 80}),
        reading("t2", datetime(2026, 3, 5, 12), 60, **{KWH: 60}),
        reading("solar", datetime(2026, 3, 5, 12), 50, **{KWH: 50}),
        reading("t1", datetime(2026, 4, 2, 12), 999, **{KWH: 999}),
    ]
    return store


async def _run(store: FakeStore, site_id: str = "s1", **kwargs):
    kwargs.setdefault("settings", SETTINGS)
    return await run_reconciliation(
        store, store, store, site_id, MARCH_FROM, MARCH_TO, **kwargs,
    )


class TestReconciliationTotals:
    """Supply, recovery rate and discrepancy."""

    def test_supply_and_recovery(self):
        """Grid import plus net solar is the supply tenants are measured against."""
        totals = calculate_reconciliation_totals(
            [MeterTotals(total_kwh=900, total_kwh_positive=1000, total_kwh_negative=-100)],
            [MeterTotals(total_kwh=200)],
            [MeterTotals(total_kwh=600), MeterTotals(total_kwh=300)],
        )
        assert totals.bulk_total == 1000
        assert totals.grid_negative == -100
        assert totals.other_total == 100
        assert totals.total_supply == 1100
        assert totals.tenant_total == 900
        assert totals.recovery_rate == pytest.approx(900 / 1100 * 100)
        assert totals.discrepancy == totals.total_supply - totals.tenant_total

    def test_zero_supply_gives_zero_recovery(self):
        """No supply -> recovery 0, however much tenants consumed."""
        totals = calculate_reconciliation_totals([], [], [MeterTotals(total_kwh=500)])
        assert totals.total_supply == 0
        assert totals.recovery_rate == 0
        assert totals.discrepancy == -500

    def test_net_export_never_reduces_supply(self):
        """Negative other supply is clamped out of total supply."""
        totals = calculate_reconciliation_totals(
            [MeterTotals(total_kwh=400, total_kwh_positive=500, total_kwh_negative=-100)],
            [],
            [],
        )
        assert totals.other_total == -100
        assert totals.total_supply == 500

    def test_grid_without_sign_split_uses_clamped_total(self):
        """Grid meters with no positive split contribute max(0, total)."""
        totals = calculate_reconciliation_totals(
            [MeterTotals(total_kwh=300), MeterTotals(total_kwh=-20)], [], [],
        )
        assert totals.bulk_total == 300


class TestClassifyMeter:
    """Assignments win over meter types."""

    def test_assignment_case_insensitive(self):
        """'Tenant' is the tenant category."""
        meter = Meter(id="m", meter_number="M", meter_type="council_meter")
        assert classify_meter(meter, "Tenant") == MeterCategory.TENANT

    def test_unknown_assignment_is_other(self):
        """An unrecognised assignment lands in other."""
        meter = Meter(id="m", meter_number="M", meter_type="tenant_meter")
        assert classify_meter(meter, "spare") == MeterCategory.OTHER

    @pytest.mark.parametrize(
        ("meter_type", "category"),
        [
            ("council_meter", MeterCategory.GRID_SUPPLY),
            ("council", MeterCategory.GRID_SUPPLY),
            ("Tenant", MeterCategory.TENANT),
            ("solar", MeterCategory.SOLAR),
            ("bulk_meter", MeterCategory.DISTRIBUTION),
            ("check_meter", MeterCategory.CHECK),
            ("mystery", MeterCategory.UNASSIGNED),
        ],
    )
    def test_type_fallback(self, meter_type, category):
        """Without an assignment the meter type decides."""
        meter = Meter(id="m", meter_number="M", meter_type=meter_type)
        assert classify_meter(meter) == category


class TestHierarchicalTotals:
    """Leaves-first rollup of direct totals."""

    def test_child_without_data_uses_its_rollup(self):
        """p = c1 (direct) + c2's own rollup of c3."""
        meters = [Meter(id=i, meter_number=i.upper()) for i in ("p", "c1", "c2", "c3")]
        connections = {"p": ["c1", "c2"], "c2": ["c3"]}
        direct = {
            "c1": ColumnTotalsResult(
                processed_totals={KWH: 10}, processed_max_values={KWH: 4},
                total_kwh=10, total_kwh_positive=10,
            ),
            "c3": ColumnTotalsResult(
                processed_totals={KWH: 5}, processed_max_values={KWH: 6},
                total_kwh=5, total_kwh_positive=5,
            ),
        }
        totals = calculate_hierarchical_totals(meters, connections, direct)

        assert totals["c2"].total_kwh == 5
        assert totals["p"].processed_totals == {KWH: 15}
        assert totals["p"].processed_max_values == {KWH: 6}
        assert totals["p"].total_kwh == 15

    def test_leaf_without_data_is_empty(self):
        """A leaf with no readings rolls up nothing."""
        totals = calculate_hierarchical_totals([Meter(id="x", meter_number="X")], {}, {})
        assert totals["x"] == ColumnTotalsResult()

    def test_children_outside_meter_set_ignored(self):
        """Connections to meters not being processed contribute nothing."""
        meters = [Meter(id="p", meter_number="P")]
        direct = {"p": ColumnTotalsResult(total_kwh=7)}
        totals = calculate_hierarchical_totals(meters, {"p": ["elsewhere"]}, direct)
        assert totals["p"].total_kwh == 7

    def test_cycle_terminates(self):
        """A cyclic hierarchy still produces totals for every meter."""
        meters = [Meter(id="a", meter_number="A"), Meter(id="b", meter_number="B")]
        direct = {"a": ColumnTotalsResult(total_kwh=1), "b": ColumnTotalsResult(total_kwh=2)}
        totals = calculate_hierarchical_totals(meters, {"a": ["b"], "b": ["a"]}, direct)
        assert set(totals) == {"a", "b"}


class TestRunReconciliation:
    """Full reconciliation of one site."""

    @pytest.mark.asyncio()
    async def test_site_summary(self, site_store):
        """Grid 200 + solar 50 supply against 140 kWh of tenants."""
        report = await _run(site_store)

        assert report.site_id == "s1"
        assert report.date_from == datetime(2026, 3, 1, 0, 0)
        assert report.date_to == datetime.combine(MARCH_TO, time.max)
        assert report.totals.bulk_total == 200
        assert report.totals.solar_meter_total == 50
        assert report.totals.total_supply == 250
        assert report.totals.tenant_total == 140
        assert report.totals.recovery_rate == pytest.approx(56.0)
        assert report.totals.discrepancy == 110
        assert report.warnings == []
        assert report.revenue is None

    @pytest.mark.asyncio()
    async def test_meter_results(self, site_store):
        """Depth, parent and rollups are reported per meter."""
        results = _result_by_id(await _run(site_store))

        assert results["council"].depth == 2
        assert results["council"].category == MeterCategory.GRID_SUPPLY
        assert results["t1"].parent_meter_id == "check"
        assert results["t1"].readings_count == 1
        assert results["check"].has_data is False
        assert results["check"].hierarchical.total_kwh == 140
        assert results["council"].direct.total_kwh == 200
        assert results["council"].hierarchical.total_kwh == 140

    @pytest.mark.asyncio()
    async def test_readings_limited_to_range(self, site_store):
        """A reading after date_to is not counted."""
        results = _result_by_id(await _run(site_store))
        assert results["t1"].direct.processed_totals == {KWH: 80}

    @pytest.mark.asyncio()
    async def test_assignments_override_types(self, site_store):
        """Assigning solar as a tenant moves its kWh to the tenant total."""
        report = await _run(site_store, meter_assignments={"solar": "tenant"})
        assert report.totals.tenant_total == 190
        assert report.totals.solar_meter_total == 0

    @pytest.mark.asyncio()
    async def test_no_kwh_column_selected_uses_raw_kwh(self, site_store):
        """With nothing selected the meter's kwh_value sum is used."""
        report = await _run(site_store, settings=ColumnSettings())
        assert report.totals.bulk_total == 200
        assert report.totals.tenant_total == 140

    @pytest.mark.asyncio()
    async def test_unknown_site(self, store):
        """An unknown site returns None."""
        assert await _run(store, site_id="nope") is None

    @pytest.mark.asyncio()
    async def test_meter_read_failure_is_isolated(self, site_store, caplog):
        """One meter failing is reported on that meter only."""
        site_store.fail_readings.add("t2")
        with caplog.at_level(logging.WARNING, logger="meter_recon.services.reconciliation"):
            report = await _run(site_store)

        results = _result_by_id(report)
        assert results["t2"].has_error is True
        assert "t2" in results["t2"].error_message
        assert results["t1"].has_error is False
        assert report.totals.tenant_total == 80
        assert any("M-04" in w for w in report.warnings)
        assert any("M-04" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio()
    async def test_site_level_failure_propagates(self, site_store):
        """Failing to list the site's meters aborts the run."""
        site_store.fetch_site_meters = AsyncMock(side_effect=StoreError("db down"))
        with pytest.raises(StoreError):
            await _run(site_store)

    @pytest.mark.asyncio()
    async def test_indent_fallback(self, site_store):
        """Without connections the hierarchy comes from indent levels."""
        site_store.connections = []
        indents = {"council": 0, "check": 1, "t1": 2, "t2": 2, "solar": 0}
        results = _result_by_id(await _run(site_store, indent_levels=indents))

        assert results["t1"].parent_meter_id == "check"
        assert results["check"].parent_meter_id == "council"
        assert results["solar"].parent_meter_id is None
        assert results["check"].hierarchical.total_kwh == 140

    @pytest.mark.asyncio()
    async def test_explicit_connections_win_over_indents(self, site_store):
        """Indent levels are ignored when connections exist."""
        indents = {"council": 0, "check": 0, "t1": 0, "t2": 0, "solar": 0}
        results = _result_by_id(await _run(site_store, indent_levels=indents))
        assert results["t1"].parent_meter_id == "check"

    @pytest.mark.asyncio()
    async def test_cycle_reported_as_warning(self, site_store):
        """A cyclic connection set completes and names the cycle."""
        site_store.connections.append(
            MeterConnection(parent_meter_id="t1", child_meter_id="council"),
        )
        report = await _run(site_store)
        assert any(w.startswith("Cycle") for w in report.warnings)
        assert len(report.meters) == 5

    @pytest.mark.asyncio()
    async def test_cycle_logged_once_per_run(self, site_store, caplog):
        """Each cycle is one WARNING for the run, not one per traversal."""
        site_store.connections.append(
            MeterConnection(parent_meter_id="t1", child_meter_id="council"),
        )
        with caplog.at_level(logging.WARNING):
            await _run(site_store)
        cycle_warnings = [
            r for r in caplog.records
            if r.levelno == logging.WARNING and "Cycle" in r.getMessage()
        ]
        assert len(cycle_warnings) == 1
        assert cycle_warnings[0].name == "meter_recon.services.reconciliation"

    @pytest.mark.asyncio()
    async def test_corrections_collected(self, site_store):
        """Corrupt readings are replaced and listed on the report."""
        site_store.readings.append(
            reading("solar", datetime(2026, 3, 6, 12), 90_000, **{KWH: 90_000}),
        )
        report = await _run(site_store)
        assert len(report.corrections) == 2
        assert {c.meter_id for c in report.corrections} == {"solar"}
        assert report.totals.solar_meter_total == 100

    @pytest.mark.asyncio()
    async def test_summary_logged(self, site_store, caplog):
        """Every run logs an INFO summary."""
        with caplog.at_level(logging.INFO, logger="meter_recon.services.reconciliation"):
            await _run(site_store)
        assert any("Reconciled site s1" in r.getMessage() for r in caplog.records)


class TestRevenue:
    """Cost rollup when calculate_revenue is set."""

    @pytest.fixture()
    def priced_store(self, site_store: FakeStore) -> FakeStore:
        """Grid on a 100c tariff by id, tenants on a 200c tariff by name."""
        site_store.add_tariff(flat_tariff("t-grid", 100, "Bulk Flat"))
        site_store.add_tariff(
            flat_tariff("t-tenant", 200, "Tenant Flat", date(2026, 1, 1)), AUTHORITY,
        )
        for meter in site_store.meters:
            if meter.id == "council":
                meter.tariff_structure_id = "t-grid"
            elif meter.id in ("t1", "t2"):
                meter.assigned_tariff_name = "Tenant Flat"
        return site_store

    @pytest.mark.asyncio()
    async def test_revenue_totals(self, priced_store):
        """Revenue is the tenant bill; grid cost is reported alongside."""
        report = await _run(priced_store, calculate_revenue=True)

        assert report.revenue.grid_supply_cost == pytest.approx(200)
        assert report.revenue.tenant_cost == pytest.approx(280)
        assert report.revenue.total_revenue == pytest.approx(280)
        assert report.revenue.avg_cost_per_kwh == pytest.approx(2.0)
        assert report.warnings == []

    @pytest.mark.asyncio()
    async def test_tenant_cost_uses_tariff_versions(self, priced_store):
        """Name-assigned meters report the tariff versions used."""
        results = _result_by_id(await _run(priced_store, calculate_revenue=True))
        cost = results["t1"].direct_cost
        assert cost.total_cost == pytest.approx(160)
        assert [p.tariff_id for p in cost.tariff_periods_used] == ["t-tenant"]

    @pytest.mark.asyncio()
    async def test_parent_gets_hierarchical_cost(self, priced_store):
        """A parent meter is also costed on its rolled-up consumption."""
        results = _result_by_id(await _run(priced_store, calculate_revenue=True))
        assert results["council"].hierarchical_cost.total_cost == pytest.approx(140)
        assert results["check"].direct_cost is None

    @pytest.mark.asyncio()
    async def test_cost_failure_is_a_warning(self, priced_store):
        """A missing tariff leaves the meter uncosted and the run complete."""
        del priced_store.tariffs["t-grid"]
        report = await _run(priced_store, calculate_revenue=True)

        results = _result_by_id(report)
        assert results["council"].direct_cost.has_error is True
        assert report.revenue.grid_supply_cost == 0
        assert report.revenue.tenant_cost == pytest.approx(280)
        assert any("M-01" in w for w in report.warnings)

    @pytest.fixture()
    def check_versions(self, priced_store: FakeStore) -> FakeStore:
        """check on a two-version named tariff: 200c to 15 March, 300c after."""
        priced_store.add_tariff(
            flat_tariff("check-v1", 200, "Check Flat", date(2026, 1, 1), date(2026, 3, 15)),
            AUTHORITY,
        )
        priced_store.add_tariff(
            flat_tariff("check-v2", 300, "Check Flat", date(2026, 3, 16)), AUTHORITY,
        )
        for meter in priced_store.meters:
            if meter.id == "check":
                meter.assigned_tariff_name = "Check Flat"
        return priced_store

    @pytest.mark.asyncio()
    async def test_parent_without_readings_billed_for_rollup(self, check_versions):
        """A data-less parent on two tariff versions bills its children's 140 kWh."""
        results = _result_by_id(await _run(check_versions, calculate_revenue=True))
        cost = results["check"].hierarchical_cost

        assert cost.has_error is False
        assert cost.total_kwh == pytest.approx(140)
        assert cost.total_cost == pytest.approx(280)
        assert [p.tariff_id for p in cost.tariff_periods_used] == ["check-v1", "check-v2"]
        assert [p.total_kwh for p in cost.tariff_periods_used] == [
            pytest.approx(140), pytest.approx(0),
        ]

    @pytest.mark.asyncio()
    async def test_rollup_split_at_version_boundary(self, check_versions):
        """Children's readings either side of the change decide each segment's kWh."""
        check_versions.readings.append(
            reading("t2", datetime(2026, 3, 20, 12), 60, **{KWH: 60}),
        )
        results = _result_by_id(await _run(check_versions, calculate_revenue=True))
        cost = results["check"].hierarchical_cost

        assert cost.total_kwh == pytest.approx(200)
        assert [p.total_kwh for p in cost.tariff_periods_used] == [
            pytest.approx(140), pytest.approx(60),
        ]
        assert cost.total_cost == pytest.approx(140 * 2 + 60 * 3)

    @pytest.mark.asyncio()
    async def test_tou_parent_priced_on_children_readings(self, priced_store):
        """Time-of-use pricing of a parent's rollup uses the readings below it."""
        priced_store.add_tariff(tou_tariff())
        for meter in priced_store.meters:
            if meter.id == "council":
                meter.tariff_structure_id = "t-tou"
        results = _result_by_id(await _run(priced_store, calculate_revenue=True))

        assert results["council"].direct_cost.total_cost == pytest.approx(200)
        assert results["council"].hierarchical_cost.total_cost == pytest.approx(140)


class TestRollupSources:
    """Meters whose readings stand behind a parent's rollup."""

    def test_data_less_child_replaced_by_its_sources(self):
        """p -> (c1, c2 -> c3): c1 and c3 carry the data."""
        connections = {"p": ["c1", "c2"], "c2": ["c3", "c4"]}
        assert rollup_source_meters("p", connections, {"c1", "c3"}) == ["c1", "c3"]

    def test_metered_child_stands_for_its_subtree(self):
        """A child with readings is not expanded further."""
        connections = {"p": ["c"], "c": ["g"]}
        assert rollup_source_meters("p", connections, {"c", "g"}) == ["c"]

    def test_cycle_terminates(self):
        """A loop back to the parent ends the walk."""
        assert rollup_source_meters("a", {"a": ["b"], "b": ["a"]}, set()) == []

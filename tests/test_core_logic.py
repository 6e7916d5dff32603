"""Unit tests describing the submission layer contract."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock

import pytest

from station_erp import core_logic, data_manager, errors, inventory, workflow
from station_erp.constants import Department, FuelType, WorkflowKind, WorkflowStatus
from station_erp.discrepancy import DiscrepancyStatus


def _sale_command(**overrides) -> core_logic.SaleCommand:
    values = dict(
        department=Department.SUPERMARKET,
        sale_type="retail",
        payment_method="cash",
        items=(
            data_manager.SaleItem("Bread", Decimal("2"), Decimal("3000"), Decimal("0")),
            data_manager.SaleItem("Milk", Decimal("1"), Decimal("2500"), Decimal("0")),
        ),
        created_by="u-cashier",
        tax=Decimal("500"),
    )
    values.update(overrides)
    return core_logic.SaleCommand(**values)


def _fuel_command(**overrides) -> core_logic.FuelEntryCommand:
    values = dict(
        fuel_type=FuelType.PETROL,
        opening_stock=Decimal("1000"),
        closing_stock=Decimal("940"),
        revenue_received=Decimal("300000"),
        created_by="u-attendant",
        pump_fuel_sold=Decimal("58"),
    )
    values.update(overrides)
    return core_logic.FuelEntryCommand(**values)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_data_manager(monkeypatch, tmp_path):
    """The loader should resolve config, parse settings and open the workbook."""

    config_path = tmp_path / "config.ini"
    settings = data_manager.ConfigSettings(
        data_file=tmp_path / "station.xlsx",
        station_name="Demo",
        schema_version="2.0.0",
    )
    workbook = object()
    find = Mock(return_value=config_path)
    read = Mock(return_value="parser")
    parse = Mock(return_value=settings)
    open_wb = Mock(return_value=workbook)
    build = Mock(return_value="context")
    monkeypatch.setattr(core_logic.data_manager, "find_config_file", find)
    monkeypatch.setattr(core_logic.data_manager, "read_config", read)
    monkeypatch.setattr(core_logic.data_manager, "parse_settings", parse)
    monkeypatch.setattr(core_logic.data_manager, "open_workbook", open_wb)
    monkeypatch.setattr(core_logic, "build_runtime_context", build)

    assert core_logic.load_runtime_context(config_path) == "context"

    find.assert_called_once_with(config_path)
    read.assert_called_once_with(config_path.resolve())
    parse.assert_called_once_with("parser", base_path=config_path.resolve().parent)
    open_wb.assert_called_once_with(settings.data_file)
    build.assert_called_once_with(settings, workbook, None)


def test_load_runtime_context_reads_real_files(runtime_context):
    assert runtime_context.settings.station_name == "Test Station"
    assert {tank.fuel_type for tank in runtime_context.store.list_tanks()} == {"petrol", "diesel"}


def test_build_runtime_context_attaches_router(context):
    session = context.router.subscribe("accountant")

    core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(Department.RESTAURANT, "supplies", "Cooking gas", Decimal("85000"), "u-chef"),
    )

    (notification,) = session.drain()
    assert notification.title == "New Expense Request"


def test_ensure_schema_version_accepts_expected(context):
    core_logic.ensure_schema_version(context)


def test_ensure_schema_version_rejects_mismatch(config_factory):
    bundle = config_factory(schema_version="1.0.0")
    context = core_logic.load_runtime_context(bundle.config_path)

    with pytest.raises(RuntimeError, match="schema mismatch"):
        core_logic.ensure_schema_version(context)


def test_refresh_context_discards_unsaved_changes_and_keeps_router(runtime_context):
    session = runtime_context.router.subscribe("manager")
    inventory.refill(runtime_context, FuelType.PETROL, Decimal("4000"))

    refreshed = core_logic.refresh_context(runtime_context)

    assert inventory.get_tank(refreshed, FuelType.PETROL).current_level == Decimal("0")
    assert refreshed.router is runtime_context.router
    inventory.refill(refreshed, FuelType.PETROL, Decimal("4000"))
    inventory.deduct(refreshed, FuelType.PETROL, Decimal("3500"), idempotency_key="K1")
    assert [n.title for n in session.drain()] == ["Low Fuel Alert"]


def test_refresh_context_detaches_old_store(runtime_context):
    session = runtime_context.router.subscribe("manager")
    old_context = runtime_context
    core_logic.refresh_context(runtime_context)

    inventory.refill(old_context, FuelType.PETROL, Decimal("4000"))
    inventory.deduct(old_context, FuelType.PETROL, Decimal("3500"), idempotency_key="K1")

    assert session.drain() == []


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def test_get_record_unknown_id_raises(context):
    with pytest.raises(errors.RecordNotFoundError):
        core_logic.get_record(context, WorkflowKind.SALE, "S-missing")


def test_list_records_filters_by_status(context):
    first = core_logic.record_sale(context, _sale_command())
    core_logic.record_sale(context, _sale_command())
    context.store.compare_and_set_status(
        replace(first, status="rejected"),
        expected_status="submitted",
    )

    assert len(core_logic.list_records(context, WorkflowKind.SALE)) == 2
    rejected = core_logic.list_records(context, WorkflowKind.SALE, status=WorkflowStatus.REJECTED)
    assert [record.record_id for record in rejected] == [first.record_id]


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def test_record_sale_recomputes_totals(context, set_fixed_datetime):
    moment = set_fixed_datetime(datetime(2026, 3, 1, 9, 30, tzinfo=UTC))

    record = core_logic.record_sale(context, _sale_command())

    assert record.status == "submitted"
    assert record.created_at_iso == moment.isoformat()
    assert [item.total for item in record.items] == [Decimal("6000"), Decimal("2500")]
    assert record.subtotal == Decimal("8500")
    assert record.amount == Decimal("9000")
    assert record.record_id.startswith("S20260301093000")
    assert core_logic.get_record(context, WorkflowKind.SALE, record.record_id) == record


def test_record_sale_rejects_empty_basket(context):
    with pytest.raises(ValueError, match="at least one item"):
        core_logic.record_sale(context, _sale_command(items=()))


@pytest.mark.parametrize(
    "item",
    [
        data_manager.SaleItem("Bread", Decimal("0"), Decimal("3000"), Decimal("0")),
        data_manager.SaleItem("Bread", Decimal("1"), Decimal("-1"), Decimal("0")),
    ],
)
def test_record_sale_rejects_bad_lines(context, item):
    with pytest.raises(ValueError):
        core_logic.record_sale(context, _sale_command(items=(item,)))
    assert core_logic.list_records(context, WorkflowKind.SALE) == []


def test_record_sale_rejects_negative_tax(context):
    with pytest.raises(ValueError):
        core_logic.record_sale(context, _sale_command(tax=Decimal("-1")))


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def test_record_expense_strips_description(context):
    record = core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(Department.FUEL, "maintenance", "  Pump seal  ", Decimal("40000"), "u-att"),
    )

    assert record.description == "Pump seal"
    assert record.record_id.startswith("E")
    assert record.amount == Decimal("40000")


@pytest.mark.parametrize(
    "description, amount",
    [("Gas", Decimal("0")), ("   ", Decimal("10"))],
)
def test_record_expense_validation(context, description, amount):
    with pytest.raises(ValueError):
        core_logic.record_expense(
            context,
            core_logic.ExpenseCommand(Department.FUEL, "misc", description, amount, "u"),
        )


# ---------------------------------------------------------------------------
# Fuel entries
# ---------------------------------------------------------------------------


def test_record_fuel_entry_within_tolerance(context):
    inventory.register_tank(context, FuelType.PETROL, Decimal("5000"), initial_level=Decimal("2000"))

    submission = core_logic.record_fuel_entry(context, _fuel_command())

    assert submission.report.status is DiscrepancyStatus.OK
    assert submission.record.fuel_sold == Decimal("60")
    assert submission.record.amount == Decimal("300000")
    assert submission.record.department == "fuel"
    # submission alone never touches the tank
    assert inventory.get_tank(context, FuelType.PETROL).current_level == Decimal("2000")


def test_record_fuel_entry_accepts_discrepancy_with_warning(context, caplog):
    inventory.register_tank(context, FuelType.PETROL, Decimal("5000"), initial_level=Decimal("2000"))
    caplog.set_level("WARNING")

    submission = core_logic.record_fuel_entry(context, _fuel_command(pump_fuel_sold=Decimal("50")))

    assert submission.report.status is DiscrepancyStatus.DISCREPANCY
    assert submission.report.difference == Decimal("10")
    assert any("discrepancy" in record.getMessage() for record in caplog.records)


def test_record_fuel_entry_refuses_pump_above_tank(context):
    inventory.register_tank(context, FuelType.PETROL, Decimal("5000"), initial_level=Decimal("50"))

    with pytest.raises(errors.ExceedsTankLevelError):
        core_logic.record_fuel_entry(context, _fuel_command(pump_fuel_sold=Decimal("55")))
    assert core_logic.list_records(context, WorkflowKind.FUEL_ENTRY) == []


def test_record_fuel_entry_requires_tank(context):
    with pytest.raises(errors.TankNotFoundError):
        core_logic.record_fuel_entry(context, _fuel_command(fuel_type=FuelType.KEROSENE))


@pytest.mark.parametrize(
    "overrides",
    [
        {"opening_stock": Decimal("-1")},
        {"closing_stock": Decimal("1200")},
        {"pump_fuel_sold": Decimal("-3")},
        {"revenue_received": Decimal("-1")},
    ],
)
def test_record_fuel_entry_validates_readings(context, overrides):
    inventory.register_tank(context, FuelType.PETROL, Decimal("5000"), initial_level=Decimal("2000"))
    with pytest.raises(ValueError):
        core_logic.record_fuel_entry(context, _fuel_command(**overrides))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_generate_record_id_prefix_and_uniqueness():
    moment = datetime(2026, 1, 2, 3, 4, 5, 678901, tzinfo=UTC)

    first = core_logic.generate_record_id(WorkflowKind.FUEL_ENTRY, when=moment)
    second = core_logic.generate_record_id(WorkflowKind.FUEL_ENTRY, when=moment)

    assert first.startswith("F20260102030405678901-")
    assert len(first.split("-")[1]) == 6
    assert first != second


def test_persist_context_saves_to_data_file(context, tmp_path: Path):
    core_logic.persist_context(context)

    assert context.settings.data_file.exists()
    reopened = data_manager.open_workbook(context.settings.data_file)
    assert "Approvals" in reopened.sheetnames


def test_persist_context_refuses_to_overwrite_newer_file(config_file, accountant):
    seed = core_logic.load_runtime_context(config_file)
    inventory.refill(seed, FuelType.PETROL, Decimal("200"))
    sale_id = core_logic.record_sale(seed, _sale_command()).record_id
    core_logic.persist_context(seed)

    first = core_logic.load_runtime_context(config_file)
    second = core_logic.load_runtime_context(config_file)
    workflow.approve(first, sale_id, WorkflowKind.SALE, accountant)
    workflow.reject(second, sale_id, WorkflowKind.SALE, accountant, "Duplicate")
    inventory.deduct(first, FuelType.PETROL, Decimal("180"), idempotency_key="K1")
    inventory.deduct(second, FuelType.PETROL, Decimal("30"), idempotency_key="K2")

    core_logic.persist_context(first)
    with pytest.raises(errors.StaleStateError, match="another writer"):
        core_logic.persist_context(second)

    reloaded = core_logic.load_runtime_context(config_file)
    record = core_logic.get_record(reloaded, WorkflowKind.SALE, sale_id)
    assert record.status == WorkflowStatus.ACCOUNTANT_APPROVED.value
    assert set(record.approvals) == {"accountant"}
    assert inventory.get_tank(reloaded, FuelType.PETROL).current_level == Decimal("20")
    movements = inventory.list_movements(reloaded)
    assert [m.idempotency_key for m in movements] == [None, "K1"]


def test_refreshed_context_sees_the_winning_write(config_file):
    seed = core_logic.load_runtime_context(config_file)
    inventory.refill(seed, FuelType.PETROL, Decimal("200"))
    core_logic.persist_context(seed)

    first = core_logic.load_runtime_context(config_file)
    second = core_logic.load_runtime_context(config_file)
    inventory.deduct(first, FuelType.PETROL, Decimal("180"), idempotency_key="K1")
    core_logic.persist_context(first)

    second = core_logic.refresh_context(second)
    with pytest.raises(errors.InsufficientStockError, match="only 20L"):
        inventory.deduct(second, FuelType.PETROL, Decimal("30"), idempotency_key="K2")
    inventory.deduct(second, FuelType.PETROL, Decimal("20"), idempotency_key="K2")
    core_logic.persist_context(second)

    reloaded = core_logic.load_runtime_context(config_file)
    assert inventory.get_tank(reloaded, FuelType.PETROL).current_level == Decimal("0")
    assert len(inventory.list_movements(reloaded)) == 3

"""Business logic layer for Station ERP submissions.

This module turns front-line intents (a sale, an expense claim, a shift's fuel
readings) into ``submitted`` workflow records. It owns the runtime context that
every other service function receives: the parsed settings, the ledger store
wrapping the workbook, and the notification router attached to the store's
change stream. Approval transitions live in :mod:`station_erp.workflow` and
tank mutations in :mod:`station_erp.inventory`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    Department,
    FuelType,
    Role,
    WorkflowKind,
    WorkflowStatus,
)
from .discrepancy import DiscrepancyReport, DiscrepancyStatus, classify_fuel_reading
from .errors import ExceedsTankLevelError, RecordNotFoundError, StaleStateError, TankNotFoundError
from .ledger_store import LedgerStore
from .notifications import NotificationRouter


RECORD_ID_PREFIXES = {
    WorkflowKind.SALE: "S",
    WorkflowKind.EXPENSE: "E",
    WorkflowKind.FUEL_ENTRY: "F",
}


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the ledger store and the notification router."""

    settings: data_manager.ConfigSettings
    store: LedgerStore
    router: NotificationRouter

    @property
    def workbook(self) -> Workbook:
        return self.store.workbook


@dataclass(frozen=True)
class Actor:
    """Authenticated caller of a mutating operation.

    Identity is verified upstream; the engine trusts ``role`` as given.
    """

    actor_id: str
    role: Role


@dataclass(frozen=True)
class SaleCommand:
    """User intent for submitting a sale."""

    department: Department
    sale_type: str
    payment_method: str
    items: Sequence[data_manager.SaleItem]
    created_by: str
    tax: Decimal = Decimal("0.00")
    customer_name: Optional[str] = None
    pump_number: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for submitting an expense claim."""

    department: Department
    expense_type: str
    description: str
    amount: Decimal
    created_by: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class FuelEntryCommand:
    """A fuel attendant's end-of-shift readings."""

    fuel_type: FuelType
    opening_stock: Decimal
    closing_stock: Decimal
    revenue_received: Decimal
    created_by: str
    pump_fuel_sold: Optional[Decimal] = None
    notes: Optional[str] = None
    department: Department = Department.FUEL
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class FuelSubmission:
    """Stored fuel entry plus the reconciliation it was accepted with."""

    record: data_manager.FuelEntryRecord
    report: DiscrepancyReport


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    workbook: Workbook,
    source_digest: Optional[str] = None,
) -> RuntimeContext:
    """Wrap ``workbook`` in a ledger store and attach a fresh notification router.

    ``source_digest`` is the digest of the file the workbook was read from;
    :func:`persist_context` refuses to save over a file that no longer matches.
    """

    store = LedgerStore(workbook, source_digest=source_digest)
    router = NotificationRouter(
        retention=settings.notification_retention,
        low_level_percent=settings.low_level_percent,
        currency=settings.currency,
    )
    router.attach(store)
    return RuntimeContext(settings=settings, store=store, router=router)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live ledger store.

    The helper resolves ``config.ini`` (searching upward from the working
    directory when ``config_path`` is omitted), parses the settings, opens the
    workbook they point at and wires the notification router to the store's
    change stream.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file.

    Returns:
        RuntimeContext: Context ready for service calls.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    with data_manager.workbook_lock(settings.data_file):
        digest = data_manager.workbook_digest(settings.data_file)
        workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_runtime_context(settings, workbook, digest)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to mutate a workbook whose declared schema differs from ours.

    Raises:
        RuntimeError: If ``SchemaVersion`` in ``config.ini`` does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def get_record(context: RuntimeContext, kind: WorkflowKind, record_id: str) -> data_manager.WorkflowRecord:
    """Resolve a workflow record by kind and id.

    Raises:
        RecordNotFoundError: If no record of ``kind`` has ``record_id``.
    """

    record = context.store.get_record(kind, record_id)
    if record is None:
        log.warning("Record lookup failed for %s id '%s'", WorkflowKind(kind).value, record_id)
        raise RecordNotFoundError(f"Unknown {WorkflowKind(kind).value} id: {record_id}")
    return record


def list_records(
    context: RuntimeContext,
    kind: WorkflowKind,
    *,
    status: Optional[WorkflowStatus] = None,
) -> List[data_manager.WorkflowRecord]:
    """Return records of ``kind`` in submission order, optionally by status."""

    status_value = WorkflowStatus(status).value if status is not None else None
    return context.store.list_records(kind, status=status_value)


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.SaleRecord:
    """Validate and submit a sale.

    Line totals are recomputed from quantity and price; the record amount is
    the subtotal plus tax.

    Raises:
        ValueError: If the basket is empty, a quantity is not positive, or a
            price or the tax is negative.
    """

    if not command.items:
        log.error("Sale submission rejected: empty basket")
        raise ValueError("A sale needs at least one item")

    items = []
    for item in command.items:
        require_positive_quantity(item.quantity)
        require_nonnegative_money(item.price)
        items.append(replace(item, total=item.quantity * item.price))
    require_nonnegative_money(command.tax)

    subtotal = sum((item.total for item in items), Decimal("0"))
    timestamp = _resolve_timestamp(command.timestamp)
    record = data_manager.SaleRecord(
        record_id=generate_record_id(WorkflowKind.SALE, when=timestamp),
        department=Department(command.department).value,
        amount=subtotal + command.tax,
        created_by=command.created_by,
        created_at_iso=timestamp.isoformat(),
        status=WorkflowStatus.SUBMITTED.value,
        sale_type=command.sale_type,
        payment_method=command.payment_method,
        items=tuple(items),
        subtotal=subtotal,
        tax=command.tax,
        customer_name=command.customer_name,
        pump_number=command.pump_number,
    )
    committed = context.store.insert_record(record)
    log.info(
        "Submitted sale '%s' for department '%s' (total=%s)",
        committed.record_id,
        committed.department,
        committed.amount,
    )
    return committed


def record_expense(context: RuntimeContext, command: ExpenseCommand) -> data_manager.ExpenseRecord:
    """Validate and submit an expense claim.

    Raises:
        ValueError: If the amount is not positive or the description is blank.
    """

    require_positive_quantity(command.amount)
    if not command.description.strip():
        log.error("Expense submission rejected: blank description")
        raise ValueError("Expense description must not be empty")

    timestamp = _resolve_timestamp(command.timestamp)
    record = data_manager.ExpenseRecord(
        record_id=generate_record_id(WorkflowKind.EXPENSE, when=timestamp),
        department=Department(command.department).value,
        amount=command.amount,
        created_by=command.created_by,
        created_at_iso=timestamp.isoformat(),
        status=WorkflowStatus.SUBMITTED.value,
        expense_type=command.expense_type,
        description=command.description.strip(),
    )
    committed = context.store.insert_record(record)
    log.info(
        "Submitted expense '%s' for department '%s' (amount=%s)",
        committed.record_id,
        committed.department,
        committed.amount,
    )
    return committed


def record_fuel_entry(context: RuntimeContext, command: FuelEntryCommand) -> FuelSubmission:
    """Reconcile and submit a fuel attendant's readings.

    The readings are checked against the pump meter and the current tank level
    before anything is stored. A pump figure above what the tank holds refuses
    the entry; a pump figure outside the configured tolerance is accepted with
    a logged warning and reported back on the returned :class:`FuelSubmission`.

    Args:
        context (RuntimeContext): Active runtime context.
        command (FuelEntryCommand): Shift readings.

    Returns:
        FuelSubmission: The stored record and its discrepancy report.

    Raises:
        ValueError: If a reading is negative, closing stock exceeds opening
            stock, or the revenue is negative.
        TankNotFoundError: If no tank is registered for the fuel type.
        ExceedsTankLevelError: If the pump reading exceeds the tank level.
    """

    fuel_type = FuelType(command.fuel_type).value
    validate_stock_readings(command.opening_stock, command.closing_stock, command.pump_fuel_sold)
    require_nonnegative_money(command.revenue_received)

    tank = context.store.get_tank(fuel_type)
    if tank is None:
        log.warning("Fuel entry refused: no tank registered for '%s'", fuel_type)
        raise TankNotFoundError(f"Unknown fuel type: {fuel_type}")

    report = classify_fuel_reading(
        command.opening_stock,
        command.closing_stock,
        command.pump_fuel_sold,
        tank.current_level,
        tolerance=context.settings.discrepancy_tolerance,
    )
    if report.blocking:
        log.warning("Fuel entry refused for '%s': %s", fuel_type, report.describe())
        raise ExceedsTankLevelError(report.describe())
    if report.status is DiscrepancyStatus.DISCREPANCY:
        log.warning("Fuel entry for '%s' accepted with discrepancy: %s", fuel_type, report.describe())

    timestamp = _resolve_timestamp(command.timestamp)
    record = data_manager.FuelEntryRecord(
        record_id=generate_record_id(WorkflowKind.FUEL_ENTRY, when=timestamp),
        department=Department(command.department).value,
        amount=command.revenue_received,
        created_by=command.created_by,
        created_at_iso=timestamp.isoformat(),
        status=WorkflowStatus.SUBMITTED.value,
        fuel_type=fuel_type,
        opening_stock=command.opening_stock,
        closing_stock=command.closing_stock,
        pump_fuel_sold=command.pump_fuel_sold,
        notes=command.notes,
    )
    committed = context.store.insert_record(record)
    log.info(
        "Submitted fuel entry '%s' for '%s' (sold=%sL, revenue=%s, check=%s)",
        committed.record_id,
        fuel_type,
        committed.fuel_sold,
        committed.amount,
        report.status.value,
    )
    return FuelSubmission(record=committed, report=report)


def generate_record_id(kind: WorkflowKind, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable, collision-resistant record identifier.

    Returns:
        str: ``{prefix}{YYYYMMDDHHMMSSffffff}-{6 hex chars}`` where the prefix
            is ``S``, ``E`` or ``F`` depending on ``kind``.
    """

    when = when or _resolve_timestamp(None)
    prefix = RECORD_ID_PREFIXES[WorkflowKind(kind)]
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity or amount is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """

    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """

    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def validate_stock_readings(
    opening_stock: Decimal,
    closing_stock: Decimal,
    pump_fuel_sold: Optional[Decimal] = None,
) -> None:
    """Reject readings that cannot describe a shift's sales.

    Raises:
        ValueError: If any reading is negative or ``closing_stock`` is larger
            than ``opening_stock``.
    """

    if opening_stock < 0 or closing_stock < 0:
        log.error("Stock validation failed: opening=%s closing=%s", opening_stock, closing_stock)
        raise ValueError("Stock readings must be zero or positive")
    if closing_stock > opening_stock:
        log.error("Stock validation failed: closing %s exceeds opening %s", closing_stock, opening_stock)
        raise ValueError("Closing stock cannot exceed opening stock")
    if pump_fuel_sold is not None and pump_fuel_sold < 0:
        log.error("Pump reading validation failed: %s", pump_fuel_sold)
        raise ValueError("Pump fuel sold must be zero or positive")


def persist_context(context: RuntimeContext) -> None:
    """Save the workbook to the configured data file.

    The save is refused when the file on disk no longer matches the digest the
    context loaded or last saved, so a context working from an outdated copy
    cannot overwrite changes persisted by another process in the meantime.

    Raises:
        StaleStateError: If the data file changed since this context read it.
    """

    data_file = context.settings.data_file
    data_file.parent.mkdir(parents=True, exist_ok=True)
    with data_manager.workbook_lock(data_file):
        on_disk = data_manager.workbook_digest(data_file)
        expected = context.store.source_digest
        if expected is not None and on_disk != expected:
            log.error("Workbook '%s' changed on disk since it was loaded; save refused", data_file)
            raise StaleStateError(
                f"Workbook '{data_file}' was modified by another writer; reload and retry"
            )
        context.store.save(data_file)
        context.store.source_digest = data_manager.workbook_digest(data_file)
    log.info("Persisted workbook '%s'", data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk, discarding unsaved modifications.

    The existing router (and its open sessions) is moved onto the new store so
    live viewers keep receiving notifications.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    with data_manager.workbook_lock(context.settings.data_file):
        digest = data_manager.workbook_digest(context.settings.data_file)
        workbook = data_manager.refresh_workbook(context.settings.data_file)
    context.router.detach(context.store)
    store = LedgerStore(workbook, source_digest=digest)
    context.router.attach(store)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store, router=context.router)

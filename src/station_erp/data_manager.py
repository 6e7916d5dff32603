"""Data access layer for Station ERP.

This module provides low-level helpers that read from and write to the
``station_master.xlsx`` workbook. Business logic belongs elsewhere and
concurrency control lives in :mod:`station_erp.ledger_store`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: converting rows to typed records and back, appending
   rows, and updating individual cells located by a key column.
"""


from __future__ import annotations

import configparser
import fcntl
import hashlib
import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Iterator, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_DISCREPANCY_TOLERANCE,
    DEFAULT_LOW_LEVEL_PERCENT,
    DEFAULT_NOTIFICATION_RETENTION,
    RECORD_SHEETS,
    SheetName,
    WorkflowKind,
)
from .errors import StoreUnavailableError


CONFIG_FILE_NAME = "config.ini"
APPROVALS_SHEET = SheetName.APPROVALS.value
TANK_INVENTORY_SHEET = SheetName.TANK_INVENTORY.value
TANK_MOVEMENTS_SHEET = SheetName.TANK_MOVEMENTS.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    station_name: str
    schema_version: str
    currency: str = DEFAULT_CURRENCY
    discrepancy_tolerance: Decimal = DEFAULT_DISCREPANCY_TOLERANCE
    low_level_percent: Decimal = DEFAULT_LOW_LEVEL_PERCENT
    notification_retention: int = DEFAULT_NOTIFICATION_RETENTION
    tank_capacities: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class ApprovalEntry:
    """In-memory view of a row from the ``Approvals`` sheet."""

    record_id: str
    kind: str
    stage: str
    approver_id: str
    timestamp_iso: str


@dataclass(frozen=True)
class SaleItem:
    """One line of a sale basket."""

    name: str
    quantity: Decimal
    price: Decimal
    total: Decimal


@dataclass(frozen=True)
class WorkflowRecord:
    """Fields shared by every record routed through the approval chain."""

    KIND: ClassVar[WorkflowKind]

    record_id: str
    department: str
    amount: Decimal
    created_by: str
    created_at_iso: str
    status: str
    updated_at_iso: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at_iso: Optional[str] = None
    approvals: Mapping[str, ApprovalEntry] = field(default_factory=dict, hash=False)

    @property
    def kind(self) -> WorkflowKind:
        return self.KIND


@dataclass(frozen=True)
class SaleRecord(WorkflowRecord):
    """In-memory view of a row from the ``Sales`` sheet."""

    KIND: ClassVar[WorkflowKind] = WorkflowKind.SALE

    sale_type: str = ""
    payment_method: str = ""
    items: tuple[SaleItem, ...] = ()
    subtotal: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    customer_name: Optional[str] = None
    pump_number: Optional[str] = None


@dataclass(frozen=True)
class ExpenseRecord(WorkflowRecord):
    """In-memory view of a row from the ``Expenses`` sheet."""

    KIND: ClassVar[WorkflowKind] = WorkflowKind.EXPENSE

    expense_type: str = ""
    description: str = ""


@dataclass(frozen=True)
class FuelEntryRecord(WorkflowRecord):
    """In-memory view of a row from the ``FuelEntries`` sheet.

    ``fuel_sold`` is always derived from the stock readings; the workbook
    never stores it.
    """

    KIND: ClassVar[WorkflowKind] = WorkflowKind.FUEL_ENTRY

    fuel_type: str = ""
    opening_stock: Decimal = Decimal("0")
    closing_stock: Decimal = Decimal("0")
    pump_fuel_sold: Optional[Decimal] = None
    notes: Optional[str] = None

    @property
    def fuel_sold(self) -> Decimal:
        return self.opening_stock - self.closing_stock


@dataclass(frozen=True)
class TankRow:
    """In-memory view of a row from the ``TankInventory`` sheet."""

    fuel_type: str
    capacity: Decimal
    current_level: Decimal
    last_refill_amount: Optional[Decimal] = None
    last_refill_date: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at_iso: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class MovementRow:
    """In-memory view of a row from the ``TankMovements`` sheet."""

    movement_id: str
    timestamp_iso: str
    fuel_type: str
    movement_type: str
    amount: Decimal
    level_before: Decimal
    level_after: Decimal
    idempotency_key: Optional[str] = None
    actor_id: Optional[str] = None
    notes: Optional[str] = None


RECORD_TYPES: Mapping[WorkflowKind, type[WorkflowRecord]] = {
    WorkflowKind.SALE: SaleRecord,
    WorkflowKind.EXPENSE: ExpenseRecord,
    WorkflowKind.FUEL_ENTRY: FuelEntryRecord,
}


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Inventory]``, ``[Notifications]``
    and ``[Tanks]`` are optional and fall back to the package defaults.
    Relative ``DataFile`` paths are anchored to ``base_path`` (or the current
    working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a mandatory option is missing.
        ValueError: If a numeric option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        station_name = parser.get("System", "StationName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    currency = parser.get("System", "Currency", fallback=DEFAULT_CURRENCY)
    tolerance = _parse_decimal_option(
        parser, "Inventory", "DiscrepancyTolerance", DEFAULT_DISCREPANCY_TOLERANCE)
    low_level = _parse_decimal_option(
        parser, "Inventory", "LowLevelPercent", DEFAULT_LOW_LEVEL_PERCENT)
    retention = parser.getint(
        "Notifications", "Retention", fallback=DEFAULT_NOTIFICATION_RETENTION)

    tank_capacities: dict[str, Decimal] = {}
    if parser.has_section("Tanks"):
        for fuel_type, raw in parser.items("Tanks"):
            tank_capacities[fuel_type.lower()] = _parse_decimal(raw, f"Tanks.{fuel_type}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    log.debug("Parsed settings for station '%s' (%d tanks configured)", station_name, len(tank_capacities))
    return ConfigSettings(
        data_file=data_file_path,
        station_name=station_name,
        schema_version=schema_version,
        currency=currency,
        discrepancy_tolerance=tolerance,
        low_level_percent=low_level,
        notification_retention=retention,
        tank_capacities=tank_capacities,
    )


def _parse_decimal_option(parser: configparser.ConfigParser, section: str, option: str, default: Decimal) -> Decimal:
    raw = parser.get(section, option, fallback=None)
    if raw is None:
        return default
    return _parse_decimal(raw, f"{section}.{option}")


def _parse_decimal(raw: str, label: str) -> Decimal:
    try:
        return Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid numeric configuration value for {label}: {raw!r}") from exc


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def workbook_digest(data_file: Path) -> Optional[str]:
    """Return the SHA-256 hex digest of the workbook file, or ``None`` if absent."""

    path = Path(data_file).expanduser().resolve()
    try:
        with path.open("rb") as handle:
            return hashlib.file_digest(handle, "sha256").hexdigest()
    except FileNotFoundError:
        return None


class WorkbookLock:
    """Exclusive lock on one workbook, shared by threads and processes.

    Other processes are kept out with ``fcntl.flock`` on a ``<data_file>.lock``
    sidecar file. Threads of this process share one instance per path, and the
    owning thread may re-enter it.
    """

    def __init__(self, lock_path: Path) -> None:
        self.lock_path = lock_path
        self._mutex = threading.RLock()
        self._depth = 0
        self._handle = None

    def __enter__(self) -> "WorkbookLock":
        self._mutex.acquire()
        try:
            if self._depth == 0:
                self._handle = self._acquire_file_lock()
            self._depth += 1
        except BaseException:
            self._mutex.release()
            raise
        return self

    def __exit__(self, *exc_info: Any) -> None:
        try:
            self._depth -= 1
            if self._depth == 0:
                handle, self._handle = self._handle, None
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()
        finally:
            self._mutex.release()

    def _acquire_file_lock(self):
        try:
            handle = self.lock_path.open("a+")
        except FileNotFoundError:
            raise
        except OSError as exc:
            log.error("Cannot open workbook lock '%s': %s", self.lock_path, exc)
            raise StoreUnavailableError(f"Cannot lock workbook: {exc}") from exc
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        except OSError as exc:
            handle.close()
            log.error("Cannot lock workbook '%s': %s", self.lock_path, exc)
            raise StoreUnavailableError(f"Cannot lock workbook: {exc}") from exc
        return handle


_WORKBOOK_LOCKS: Dict[Path, WorkbookLock] = {}
_WORKBOOK_LOCKS_GUARD = threading.Lock()


@contextmanager
def workbook_lock(data_file: Path) -> Iterator[WorkbookLock]:
    """Hold the exclusive lock for ``data_file`` for the duration of the block."""

    path = Path(data_file).expanduser().resolve()
    lock_path = path.with_name(path.name + ".lock")
    with _WORKBOOK_LOCKS_GUARD:
        lock = _WORKBOOK_LOCKS.setdefault(lock_path, WorkbookLock(lock_path))
    with lock:
        yield lock


def record_sheet_name(kind: WorkflowKind) -> str:
    """Return the sheet that stores records of ``kind``."""

    return RECORD_SHEETS[WorkflowKind(kind)].value


def iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple[object, ...]]:
    """Yield raw value tuples for every non-empty data row of ``sheet_name``."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_records(workbook: Workbook, kind: WorkflowKind) -> Iterable[WorkflowRecord]:
    """Stream workflow records of ``kind`` without their approval entries."""

    for raw in iter_sheet_rows(workbook, record_sheet_name(kind)):
        yield deserialize_record(kind, raw)


def iter_approvals(workbook: Workbook) -> Iterable[ApprovalEntry]:
    """Stream approval entries in the order they were appended."""

    for raw in iter_sheet_rows(workbook, APPROVALS_SHEET):
        yield deserialize_approval(raw)


def iter_tanks(workbook: Workbook) -> Iterable[TankRow]:
    """Stream tank rows from the ``TankInventory`` sheet."""

    for raw in iter_sheet_rows(workbook, TANK_INVENTORY_SHEET):
        yield deserialize_tank(raw)


def iter_movements(workbook: Workbook) -> Iterable[MovementRow]:
    """Stream tank movements in the order they were appended."""

    for raw in iter_sheet_rows(workbook, TANK_MOVEMENTS_SHEET):
        yield deserialize_movement(raw)


def append_record(workbook: Workbook, record: WorkflowRecord) -> None:
    """Append a workflow record to the sheet matching its kind.

    Approval entries carried by ``record`` are not written here; they belong
    to the ``Approvals`` sheet and go through :func:`append_approval`.
    """

    sheet = workbook[record_sheet_name(record.kind)]
    sheet.append(serialize_record(record))


def append_approval(workbook: Workbook, entry: ApprovalEntry) -> None:
    """Append an approval entry to the ``Approvals`` sheet."""

    workbook[APPROVALS_SHEET].append(serialize_approval(entry))


def append_tank(workbook: Workbook, tank: TankRow) -> None:
    """Append a tank row to the ``TankInventory`` sheet."""

    workbook[TANK_INVENTORY_SHEET].append(serialize_tank(tank))


def append_movement(workbook: Workbook, movement: MovementRow) -> None:
    """Append a tank movement to the ``TankMovements`` sheet."""

    workbook[TANK_MOVEMENTS_SHEET].append(serialize_movement(movement))


def update_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns for an existing row.

    The function locates the row whose ``key_column`` matches ``key_value``,
    validates that each requested field exists in the header row, and writes
    the provided values into the corresponding cells. Only the specified
    fields are modified.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): Worksheet to modify.
        key_column (str): Header title of the lookup column.
        key_value (str): Identifier used to locate the target row.
        field_values (Mapping[str, Any]): Mapping of column names to
            replacement values.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)

    for field_name, value in field_values.items():
        if field_name not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field_name}")
        sheet.cell(row=row_index, column=header_map[field_name], value=value)


def read_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[tuple[object, ...]]:
    """Return the raw values of the row keyed by ``key_value`` or ``None``."""

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        return None
    sheet = workbook[sheet_name]
    return next(sheet.iter_rows(min_row=row_index, max_row=row_index, values_only=True))


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def _header_map(sheet) -> dict[object, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _common_values(record: WorkflowRecord) -> list[object]:
    return [
        record.record_id,
        record.department,
        record.amount,
        record.created_by,
        record.created_at_iso,
        record.status,
        record.updated_at_iso,
        record.rejection_reason,
        record.rejected_by,
        record.rejected_at_iso,
    ]


def serialize_record(record: WorkflowRecord) -> list[object]:
    """Convert a workflow record into its sheet's column ordering.

    The ten common columns come first, followed by the kind-specific ones.
    Sale items are stored as a JSON array with decimal values kept as text.
    """

    values = _common_values(record)
    if isinstance(record, SaleRecord):
        values.extend([
            record.sale_type,
            record.payment_method,
            serialize_items(record.items),
            record.subtotal,
            record.tax,
            record.customer_name,
            record.pump_number,
        ])
    elif isinstance(record, ExpenseRecord):
        values.extend([record.expense_type, record.description])
    elif isinstance(record, FuelEntryRecord):
        values.extend([
            record.fuel_type,
            record.opening_stock,
            record.closing_stock,
            record.pump_fuel_sold,
            record.notes,
        ])
    else:
        raise TypeError(f"Unsupported record type: {type(record).__name__}")
    return values


def serialize_items(items: Sequence[SaleItem]) -> str:
    return json.dumps([
        {
            "name": item.name,
            "quantity": str(item.quantity),
            "price": str(item.price),
            "total": str(item.total),
        }
        for item in items
    ])


def deserialize_items(raw: object) -> tuple[SaleItem, ...]:
    if raw in (None, ""):
        return ()
    return tuple(
        SaleItem(
            name=str(entry["name"]),
            quantity=Decimal(entry["quantity"]),
            price=Decimal(entry["price"]),
            total=Decimal(entry["total"]),
        )
        for entry in json.loads(str(raw))
    )


def serialize_approval(entry: ApprovalEntry) -> list[object]:
    return [entry.record_id, entry.kind, entry.stage, entry.approver_id, entry.timestamp_iso]


def serialize_tank(tank: TankRow) -> list[object]:
    return [
        tank.fuel_type,
        tank.capacity,
        tank.current_level,
        tank.last_refill_amount,
        tank.last_refill_date,
        tank.updated_by,
        tank.updated_at_iso,
        tank.notes,
    ]


def serialize_movement(movement: MovementRow) -> list[object]:
    return [
        movement.movement_id,
        movement.timestamp_iso,
        movement.fuel_type,
        movement.movement_type,
        movement.amount,
        movement.level_before,
        movement.level_after,
        movement.idempotency_key,
        movement.actor_id,
        movement.notes,
    ]


def deserialize_record(kind: WorkflowKind, raw_row: Sequence[object]) -> WorkflowRecord:
    """Convert a raw worksheet row into the record type matching ``kind``.

    Numeric columns become :class:`~decimal.Decimal` instances (going through
    ``str`` so Excel floats keep their shortest representation) and optional
    text columns stay ``None`` when blank.
    """

    (
        record_id,
        department,
        amount_raw,
        created_by,
        created_at,
        status,
        updated_at,
        rejection_reason,
        rejected_by,
        rejected_at,
    ) = raw_row[:10]
    extra = raw_row[10:]
    common = dict(
        record_id=str(record_id),
        department=str(department) if department is not None else "",
        amount=_to_decimal(amount_raw),
        created_by=str(created_by) if created_by is not None else "",
        created_at_iso=str(created_at) if created_at is not None else "",
        status=str(status) if status is not None else "",
        updated_at_iso=_to_optional_str(updated_at),
        rejection_reason=_to_optional_str(rejection_reason),
        rejected_by=_to_optional_str(rejected_by),
        rejected_at_iso=_to_optional_str(rejected_at),
    )

    kind = WorkflowKind(kind)
    if kind is WorkflowKind.SALE:
        sale_type, payment_method, items, subtotal, tax, customer_name, pump_number = extra[:7]
        return SaleRecord(
            **common,
            sale_type=str(sale_type) if sale_type is not None else "",
            payment_method=str(payment_method) if payment_method is not None else "",
            items=deserialize_items(items),
            subtotal=_to_decimal(subtotal),
            tax=_to_decimal(tax),
            customer_name=_to_optional_str(customer_name),
            pump_number=_to_optional_str(pump_number),
        )
    if kind is WorkflowKind.EXPENSE:
        expense_type, description = extra[:2]
        return ExpenseRecord(
            **common,
            expense_type=str(expense_type) if expense_type is not None else "",
            description=str(description) if description is not None else "",
        )
    fuel_type, opening_raw, closing_raw, pump_raw, notes = extra[:5]
    return FuelEntryRecord(
        **common,
        fuel_type=str(fuel_type) if fuel_type is not None else "",
        opening_stock=_to_decimal(opening_raw),
        closing_stock=_to_decimal(closing_raw),
        pump_fuel_sold=_to_optional_decimal(pump_raw),
        notes=_to_optional_str(notes),
    )


def deserialize_approval(raw_row: Sequence[object]) -> ApprovalEntry:
    record_id, kind, stage, approver_id, timestamp_iso = raw_row[:5]
    return ApprovalEntry(
        record_id=str(record_id),
        kind=str(kind),
        stage=str(stage),
        approver_id=str(approver_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
    )


def deserialize_tank(raw_row: Sequence[object]) -> TankRow:
    (
        fuel_type,
        capacity,
        current_level,
        last_refill_amount,
        last_refill_date,
        updated_by,
        updated_at,
        notes,
    ) = raw_row[:8]
    return TankRow(
        fuel_type=str(fuel_type),
        capacity=_to_decimal(capacity),
        current_level=_to_decimal(current_level),
        last_refill_amount=_to_optional_decimal(last_refill_amount),
        last_refill_date=_to_optional_str(last_refill_date),
        updated_by=_to_optional_str(updated_by),
        updated_at_iso=_to_optional_str(updated_at),
        notes=_to_optional_str(notes),
    )


def deserialize_movement(raw_row: Sequence[object]) -> MovementRow:
    (
        movement_id,
        timestamp_iso,
        fuel_type,
        movement_type,
        amount,
        level_before,
        level_after,
        idempotency_key,
        actor_id,
        notes,
    ) = raw_row[:10]
    return MovementRow(
        movement_id=str(movement_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        fuel_type=str(fuel_type),
        movement_type=str(movement_type),
        amount=_to_decimal(amount),
        level_before=_to_decimal(level_before),
        level_after=_to_decimal(level_after),
        idempotency_key=_to_optional_str(idempotency_key),
        actor_id=_to_optional_str(actor_id),
        notes=_to_optional_str(notes),
    )


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_optional_decimal(raw: object) -> Optional[Decimal]:
    return Decimal(str(raw)) if raw is not None else None


def _to_optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


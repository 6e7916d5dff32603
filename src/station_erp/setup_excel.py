"""Utility for initializing the Station ERP master workbook.

The module doubles as a script (``python -m station_erp.setup_excel``) and as
a library used by tests or other tooling. Shared helpers keep the workbook
bootstrap logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from .constants import SheetName

_RECORD_COLUMNS: Sequence[str] = [
    "RecordID",
    "Department",
    "Amount",
    "CreatedBy",
    "CreatedAt",
    "Status",
    "UpdatedAt",
    "RejectionReason",
    "RejectedBy",
    "RejectedAt",
]

# Column order must match the serializers in data_manager.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.SALES.value: [
        *_RECORD_COLUMNS,
        "SaleType",
        "PaymentMethod",
        "Items",
        "Subtotal",
        "Tax",
        "CustomerName",
        "PumpNumber",
    ],
    SheetName.EXPENSES.value: [
        *_RECORD_COLUMNS,
        "ExpenseType",
        "Description",
    ],
    SheetName.FUEL_ENTRIES.value: [
        *_RECORD_COLUMNS,
        "FuelType",
        "OpeningStock",
        "ClosingStock",
        "PumpFuelSold",
        "Notes",
    ],
    SheetName.APPROVALS.value: [
        "RecordID",
        "Kind",
        "Stage",
        "ApproverID",
        "Timestamp",
    ],
    SheetName.TANK_INVENTORY.value: [
        "FuelType",
        "Capacity",
        "CurrentLevel",
        "LastRefillAmount",
        "LastRefillDate",
        "UpdatedBy",
        "UpdatedAt",
        "Notes",
    ],
    SheetName.TANK_MOVEMENTS.value: [
        "MovementID",
        "Timestamp",
        "FuelType",
        "MovementType",
        "Amount",
        "LevelBefore",
        "LevelAfter",
        "IdempotencyKey",
        "ActorID",
        "Notes",
    ],
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    tank_capacities: Mapping[str, Decimal] = field(default_factory=dict)


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory. Every entry of the optional ``[Tanks]`` section seeds an
    empty tank with the configured capacity.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    tank_capacities: dict[str, Decimal] = {}
    if parser.has_section("Tanks"):
        for fuel_type, raw in parser.items("Tanks"):
            try:
                tank_capacities[fuel_type.lower()] = Decimal(raw.strip())
            except InvalidOperation as exc:
                raise ValueError(f"Invalid capacity for tank '{fuel_type}': {raw!r}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, tank_capacities=tank_capacities)


def build_master_workbook(
    *,
    tank_capacities: Mapping[str, Decimal] | None = None,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
) -> Workbook:
    """Return an in-memory workbook with every sheet and header row in place.

    Each entry of ``tank_capacities`` becomes an empty ``TankInventory`` row.
    """

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    tanks_sheet = workbook[SheetName.TANK_INVENTORY.value]
    for fuel_type, capacity in (tank_capacities or {}).items():
        tanks_sheet.append([fuel_type, capacity, Decimal("0"), None, None, None, None, None])

    return workbook


def create_master_workbook(
    destination: Path,
    *,
    tank_capacities: Mapping[str, Decimal] | None = None,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the Station ERP master workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = build_master_workbook(
        tank_capacities=tank_capacities,
        sheet_columns=sheet_columns,
    )
    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook described by ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        tank_capacities=settings.tank_capacities,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Station ERP data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Station ERP Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())

"""Enumerations shared across Station ERP modules.

Centralises domain constants so that the data access layer (DAL), the
approval engine, the inventory ledger, and the presentation layer rely on a
single source of truth for workflow statuses, roles, and sheet names.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "2.0.0"

# Litres two independent fuel readings may differ before being flagged.
DEFAULT_DISCREPANCY_TOLERANCE = Decimal("5")

# Tanks below this share of capacity raise low-fuel alerts.
DEFAULT_LOW_LEVEL_PERCENT = Decimal("20")

# Live sessions keep only the most recent notifications.
DEFAULT_NOTIFICATION_RETENTION = 10

DEFAULT_CURRENCY = "UGX"


class WorkflowKind(str, Enum):
    """Enumerate the record kinds routed through the approval chain."""

    SALE = "sale"
    EXPENSE = "expense"
    FUEL_ENTRY = "fuel_entry"


class WorkflowStatus(str, Enum):
    """Enumerate every status a workflow record may hold."""

    SUBMITTED = "submitted"
    ACCOUNTANT_APPROVED = "accountant_approved"
    MANAGER_APPROVED = "manager_approved"
    DIRECTOR_APPROVED = "director_approved"
    REJECTED = "rejected"


class ApprovalStage(str, Enum):
    """Enumerate the approval stages recorded in the ``Approvals`` sheet."""

    ACCOUNTANT = "accountant"
    MANAGER = "manager"
    DIRECTOR = "director"


class Role(str, Enum):
    """Enumerate the staff roles resolved by the authentication layer."""

    ATTENDANT = "attendant"
    CASHIER = "cashier"
    ACCOUNTANT = "accountant"
    MANAGER = "manager"
    DIRECTOR = "director"


class Department(str, Enum):
    """Enumerate the business departments that produce sales."""

    FUEL = "fuel"
    SUPERMARKET = "supermarket"
    RESTAURANT = "restaurant"


class FuelType(str, Enum):
    """Enumerate the fuel grades stored in station tanks."""

    PETROL = "petrol"
    DIESEL = "diesel"
    KEROSENE = "kerosene"


class MovementType(str, Enum):
    """Enumerate tank movements recorded in the ``TankMovements`` sheet."""

    DEDUCT = "DEDUCT"
    REFILL = "REFILL"


class EntityKind(str, Enum):
    """Enumerate the collections that publish change events."""

    SALE = "sale"
    EXPENSE = "expense"
    FUEL_ENTRY = "fuel_entry"
    TANK = "tank"


class EventType(str, Enum):
    """Enumerate the mutation types carried by change events."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"


class NotificationKind(str, Enum):
    """Enumerate the notification categories shown to live sessions."""

    NEW_SUBMISSION = "new_submission"
    AWAITING_APPROVAL = "awaiting_approval"
    FULLY_APPROVED = "fully_approved"
    REJECTED = "rejected"
    LOW_FUEL = "low_fuel"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    SALES = "Sales"
    EXPENSES = "Expenses"
    FUEL_ENTRIES = "FuelEntries"
    APPROVALS = "Approvals"
    TANK_INVENTORY = "TankInventory"
    TANK_MOVEMENTS = "TankMovements"


RECORD_SHEETS = {
    WorkflowKind.SALE: SheetName.SALES,
    WorkflowKind.EXPENSE: SheetName.EXPENSES,
    WorkflowKind.FUEL_ENTRY: SheetName.FUEL_ENTRIES,
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_DISCREPANCY_TOLERANCE",
    "DEFAULT_LOW_LEVEL_PERCENT",
    "DEFAULT_NOTIFICATION_RETENTION",
    "DEFAULT_CURRENCY",
    "WorkflowKind",
    "WorkflowStatus",
    "ApprovalStage",
    "Role",
    "Department",
    "FuelType",
    "MovementType",
    "EntityKind",
    "EventType",
    "NotificationKind",
    "SheetName",
    "RECORD_SHEETS",
]

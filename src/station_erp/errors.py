"""Exception taxonomy shared by the store, the approval engine, and the CLI.

Domain failures derive from :class:`BusinessRuleViolation` so presentation
layers can surface them as validation errors. Store-level failures stay
separate because they describe infrastructure rather than business rules.
"""

from __future__ import annotations


class StationError(Exception):
    """Base class for every error raised by the package."""


class BusinessRuleViolation(StationError):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced record or tank is unknown."""


class RecordNotFoundError(MissingReferenceError):
    """Raised when a workflow record id does not exist."""


class TankNotFoundError(MissingReferenceError):
    """Raised when no tank row exists for a fuel type."""


class ApprovalError(BusinessRuleViolation):
    """Base class for approval state machine refusals."""


class UnauthorizedError(ApprovalError):
    """Raised when the actor's role may not act on the record's current stage."""


class IllegalTransitionError(ApprovalError):
    """Raised when the target status is not a legal successor."""


class StaleStateError(ApprovalError):
    """Raised when another actor already changed the record or tank."""


class InventoryError(BusinessRuleViolation):
    """Base class for tank bound violations."""


class InsufficientStockError(InventoryError):
    """Raised when a deduction would take a tank below zero."""


class ExceedsCapacityError(InventoryError):
    """Raised when a refill would take a tank above its capacity."""


class ExceedsTankLevelError(InventoryError):
    """Raised when a fuel entry reports more pump sales than the tank holds."""


class StoreError(StationError):
    """Base class for ledger store failures."""


class ConflictError(StoreError):
    """Raised when a conditional write finds a different stored value."""


class DuplicateMovementError(StoreError):
    """Raised when a tank movement reuses an applied idempotency key."""


class StoreUnavailableError(StoreError):
    """Raised when the backing workbook cannot be read or written."""


__all__ = [
    "StationError",
    "BusinessRuleViolation",
    "MissingReferenceError",
    "RecordNotFoundError",
    "TankNotFoundError",
    "ApprovalError",
    "UnauthorizedError",
    "IllegalTransitionError",
    "StaleStateError",
    "InventoryError",
    "InsufficientStockError",
    "ExceedsCapacityError",
    "ExceedsTankLevelError",
    "StoreError",
    "ConflictError",
    "DuplicateMovementError",
    "StoreUnavailableError",
]

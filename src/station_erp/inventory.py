"""Fuel tank ledger.

Tank levels change only through :func:`deduct` and :func:`refill`. Both read
the tank, compute the new level, and commit it conditionally on the level they
read together with an audit row in ``TankMovements``. A lost race surfaces as
:class:`~station_erp.errors.StaleStateError`; nothing is retried here.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import List, Optional

from . import data_manager, log
from .constants import FuelType, MovementType
from .core_logic import RuntimeContext, require_positive_quantity
from .errors import (
    BusinessRuleViolation,
    ConflictError,
    DuplicateMovementError,
    ExceedsCapacityError,
    InsufficientStockError,
    StaleStateError,
    TankNotFoundError,
)


def get_tank(context: RuntimeContext, fuel_type: FuelType) -> data_manager.TankRow:
    """Return the tank for ``fuel_type``.

    Raises:
        TankNotFoundError: If no tank is registered for the fuel type.
    """

    tank = context.store.get_tank(FuelType(fuel_type).value)
    if tank is None:
        log.warning("Tank lookup failed for fuel type '%s'", fuel_type)
        raise TankNotFoundError(f"Unknown fuel type: {FuelType(fuel_type).value}")
    return tank


def list_tanks(context: RuntimeContext) -> List[data_manager.TankRow]:
    return context.store.list_tanks()


def list_movements(context: RuntimeContext, fuel_type: Optional[FuelType] = None) -> List[data_manager.MovementRow]:
    """Return applied tank movements in the order they were committed."""

    key = FuelType(fuel_type).value if fuel_type is not None else None
    return context.store.list_movements(key)


def register_tank(
    context: RuntimeContext,
    fuel_type: FuelType,
    capacity: Decimal,
    *,
    initial_level: Decimal = Decimal("0"),
    actor_id: Optional[str] = None,
) -> data_manager.TankRow:
    """Create the tank row for a fuel type.

    Raises:
        ValueError: If ``capacity`` is not positive or ``initial_level`` is
            negative.
        ExceedsCapacityError: If ``initial_level`` is above ``capacity``.
        BusinessRuleViolation: If the fuel type already has a tank.
    """

    require_positive_quantity(capacity)
    if initial_level < 0:
        log.error("Tank registration rejected: negative initial level %s", initial_level)
        raise ValueError("Initial level must be zero or positive")
    if initial_level > capacity:
        log.warning("Tank registration rejected: level %s above capacity %s", initial_level, capacity)
        raise ExceedsCapacityError(f"Initial level {initial_level}L exceeds capacity {capacity}L")

    tank = data_manager.TankRow(
        fuel_type=FuelType(fuel_type).value,
        capacity=capacity,
        current_level=initial_level,
        updated_by=actor_id,
        updated_at_iso=datetime.now(UTC).isoformat(),
    )
    try:
        committed = context.store.insert_tank(tank)
    except ConflictError as exc:
        log.warning("Tank registration rejected: '%s' already exists", tank.fuel_type)
        raise BusinessRuleViolation(f"Tank already registered: {tank.fuel_type}") from exc
    log.info("Registered tank '%s' (capacity=%sL, level=%sL)", committed.fuel_type, capacity, initial_level)
    return committed


def deduct(
    context: RuntimeContext,
    fuel_type: FuelType,
    amount: Decimal,
    *,
    idempotency_key: str,
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> data_manager.TankRow:
    """Take ``amount`` litres out of the tank, at most once per ``idempotency_key``.

    A key that was already applied returns the current tank untouched, so the
    same fuel entry can be retried safely.

    Args:
        context (RuntimeContext): Active runtime context.
        fuel_type (FuelType): Tank to draw from.
        amount (Decimal): Litres to remove; must be positive.
        idempotency_key (str): Key identifying the originating record.
        actor_id (str | None): Who triggered the deduction.
        notes (str | None): Free text stored on the movement.

    Returns:
        data_manager.TankRow: Tank state after the deduction (or the replay).

    Raises:
        ValueError: If ``amount`` is not positive.
        TankNotFoundError: If the fuel type has no tank.
        InsufficientStockError: If the level would drop below zero.
        StaleStateError: If another writer changed the level concurrently.
    """

    require_positive_quantity(amount)
    tank = get_tank(context, fuel_type)
    if context.store.has_movement(idempotency_key):
        log.info("Deduction '%s' already applied to '%s'; skipping", idempotency_key, tank.fuel_type)
        return tank

    new_level = tank.current_level - amount
    if new_level < 0:
        log.warning(
            "Deduction of %sL from '%s' refused: only %sL available",
            amount,
            tank.fuel_type,
            tank.current_level,
        )
        raise InsufficientStockError(
            f"Cannot deduct {amount}L from {tank.fuel_type}: only {tank.current_level}L available"
        )

    timestamp = datetime.now(UTC)
    updated = replace(
        tank,
        current_level=new_level,
        updated_by=actor_id,
        updated_at_iso=timestamp.isoformat(),
    )
    movement = _build_movement(
        tank,
        MovementType.DEDUCT,
        amount,
        new_level,
        timestamp=timestamp,
        idempotency_key=idempotency_key,
        actor_id=actor_id,
        notes=notes,
    )
    try:
        committed = context.store.apply_tank_movement(updated, movement, expected_level=tank.current_level)
    except DuplicateMovementError:
        log.info("Deduction '%s' applied concurrently; returning current tank", idempotency_key)
        return get_tank(context, fuel_type)
    except ConflictError as exc:
        log.warning("Deduction from '%s' lost a concurrent update: %s", tank.fuel_type, exc)
        raise StaleStateError(str(exc)) from exc

    log.info(
        "Deducted %sL from '%s' (%sL -> %sL, key=%s)",
        amount,
        committed.fuel_type,
        tank.current_level,
        committed.current_level,
        idempotency_key,
    )
    return committed


def refill(
    context: RuntimeContext,
    fuel_type: FuelType,
    amount: Decimal,
    notes: Optional[str] = None,
    *,
    actor_id: Optional[str] = None,
) -> data_manager.TankRow:
    """Add ``amount`` litres to the tank and stamp the refill details.

    Raises:
        ValueError: If ``amount`` is not positive.
        TankNotFoundError: If the fuel type has no tank.
        ExceedsCapacityError: If the new level would exceed capacity.
        StaleStateError: If another writer changed the level concurrently.
    """

    require_positive_quantity(amount)
    tank = get_tank(context, fuel_type)
    new_level = tank.current_level + amount
    if new_level > tank.capacity:
        log.warning(
            "Refill of %sL into '%s' refused: capacity %sL, level %sL",
            amount,
            tank.fuel_type,
            tank.capacity,
            tank.current_level,
        )
        raise ExceedsCapacityError(
            f"Refill of {amount}L exceeds {tank.fuel_type} capacity "
            f"({tank.current_level}L of {tank.capacity}L)"
        )

    timestamp = datetime.now(UTC)
    updated = replace(
        tank,
        current_level=new_level,
        last_refill_amount=amount,
        last_refill_date=timestamp.isoformat(),
        updated_by=actor_id,
        updated_at_iso=timestamp.isoformat(),
        notes=notes if notes is not None else tank.notes,
    )
    movement = _build_movement(
        tank,
        MovementType.REFILL,
        amount,
        new_level,
        timestamp=timestamp,
        actor_id=actor_id,
        notes=notes,
    )
    try:
        committed = context.store.apply_tank_movement(updated, movement, expected_level=tank.current_level)
    except ConflictError as exc:
        log.warning("Refill of '%s' lost a concurrent update: %s", tank.fuel_type, exc)
        raise StaleStateError(str(exc)) from exc

    log.info(
        "Refilled '%s' with %sL (%sL -> %sL)",
        committed.fuel_type,
        amount,
        tank.current_level,
        committed.current_level,
    )
    return committed


def total_capacity(context: RuntimeContext) -> Decimal:
    return sum((tank.capacity for tank in list_tanks(context)), Decimal("0"))


def total_current_level(context: RuntimeContext) -> Decimal:
    return sum((tank.current_level for tank in list_tanks(context)), Decimal("0"))


def utilization_percentage(context: RuntimeContext, fuel_type: Optional[FuelType] = None) -> Decimal:
    """Percentage of capacity currently filled, for one tank or all tanks.

    Returns ``0`` when the relevant capacity is zero.
    """

    if fuel_type is not None:
        tank = get_tank(context, fuel_type)
        capacity, level = tank.capacity, tank.current_level
    else:
        capacity, level = total_capacity(context), total_current_level(context)
    if capacity <= 0:
        return Decimal("0")
    return level * Decimal("100") / capacity


def low_level_tanks(
    context: RuntimeContext,
    threshold_percent: Optional[Decimal] = None,
) -> List[data_manager.TankRow]:
    """Tanks filled below ``threshold_percent`` (default: the configured level)."""

    threshold = threshold_percent if threshold_percent is not None else context.settings.low_level_percent
    return [
        tank
        for tank in list_tanks(context)
        if tank.capacity > 0 and tank.current_level * Decimal("100") / tank.capacity < threshold
    ]


def generate_movement_id(when: Optional[datetime] = None) -> str:
    when = when or datetime.now(UTC)
    return f"M{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


def _build_movement(
    tank: data_manager.TankRow,
    movement_type: MovementType,
    amount: Decimal,
    new_level: Decimal,
    *,
    timestamp: datetime,
    idempotency_key: Optional[str] = None,
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> data_manager.MovementRow:
    return data_manager.MovementRow(
        movement_id=generate_movement_id(timestamp),
        timestamp_iso=timestamp.isoformat(),
        fuel_type=tank.fuel_type,
        movement_type=movement_type.value,
        amount=amount,
        level_before=tank.current_level,
        level_after=new_level,
        idempotency_key=idempotency_key,
        actor_id=actor_id,
        notes=notes,
    )

"""Fuel reading reconciliation.

Pure classification of an attendant's stock readings against the pump meter
and the tank ledger. Nothing here reads or writes the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from .constants import DEFAULT_DISCREPANCY_TOLERANCE


class DiscrepancyStatus(str, Enum):
    """Outcome of comparing reported fuel sales."""

    OK = "OK"
    DISCREPANCY = "DISCREPANCY"
    EXCEEDS_TANK_LEVEL = "EXCEEDS_TANK_LEVEL"


@dataclass(frozen=True)
class DiscrepancyReport:
    """Classification plus the numbers it was derived from."""

    status: DiscrepancyStatus
    calculated_sold: Decimal
    pump_fuel_sold: Optional[Decimal]
    difference: Optional[Decimal]
    tolerance: Decimal
    current_level: Optional[Decimal]

    @property
    def blocking(self) -> bool:
        return self.status is DiscrepancyStatus.EXCEEDS_TANK_LEVEL

    def describe(self) -> str:
        if self.status is DiscrepancyStatus.EXCEEDS_TANK_LEVEL:
            return (
                f"Pump reading {self.pump_fuel_sold}L exceeds the {self.current_level}L left in the tank"
            )
        if self.status is DiscrepancyStatus.DISCREPANCY:
            return (
                f"Pump reading {self.pump_fuel_sold}L differs from stock difference "
                f"{self.calculated_sold}L by {self.difference}L (tolerance {self.tolerance}L)"
            )
        return "Readings reconcile"


def classify_fuel_reading(
    opening_stock: Decimal,
    closing_stock: Decimal,
    pump_fuel_sold: Optional[Decimal],
    current_level: Optional[Decimal],
    *,
    tolerance: Decimal = DEFAULT_DISCREPANCY_TOLERANCE,
) -> DiscrepancyReport:
    """Classify a fuel entry's readings.

    ``EXCEEDS_TANK_LEVEL`` wins over the tolerance check: a pump reading larger
    than what the tank holds is refused regardless of how well it matches the
    stock readings. Without a pump reading the entry is ``OK``. Otherwise the
    absolute difference against ``opening_stock - closing_stock`` is compared
    to ``tolerance`` inclusively.

    Args:
        opening_stock: Reading at the start of the shift.
        closing_stock: Reading at the end of the shift.
        pump_fuel_sold: Independent pump meter figure, if reported.
        current_level: Current ``TankInventory`` level for the fuel type, or
            ``None`` when the tank level is not being checked.
        tolerance: Allowed absolute difference in litres.

    Returns:
        DiscrepancyReport: Status, calculated sale volume and difference.
    """

    calculated_sold = opening_stock - closing_stock

    if pump_fuel_sold is None:
        return DiscrepancyReport(
            status=DiscrepancyStatus.OK,
            calculated_sold=calculated_sold,
            pump_fuel_sold=None,
            difference=None,
            tolerance=tolerance,
            current_level=current_level,
        )

    difference = abs(pump_fuel_sold - calculated_sold)
    if current_level is not None and pump_fuel_sold > current_level:
        status = DiscrepancyStatus.EXCEEDS_TANK_LEVEL
    elif difference <= tolerance:
        status = DiscrepancyStatus.OK
    else:
        status = DiscrepancyStatus.DISCREPANCY

    return DiscrepancyReport(
        status=status,
        calculated_sold=calculated_sold,
        pump_fuel_sold=pump_fuel_sold,
        difference=difference,
        tolerance=tolerance,
        current_level=current_level,
    )

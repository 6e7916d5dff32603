"""Workbook-backed ledger store with conditional writes and a change stream.

The store owns every workflow record and tank row. Callers never mutate the
workbook directly: they read a snapshot, compute the next state, and ask the
store to commit it *only if* the value they read is still current. Each
committed mutation produces one :class:`ChangeEvent`; events are queued in
commit order while the store lock is held and handed to subscribers
afterwards by a single dispatcher, so subscribers observe mutations of a
collection in the order they were committed.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EntityKind, EventType, WorkflowKind
from .errors import (
    ConflictError,
    DuplicateMovementError,
    RecordNotFoundError,
    StoreUnavailableError,
    TankNotFoundError,
)


@dataclass(frozen=True)
class ChangeEvent:
    """One committed mutation as published on the change stream."""

    sequence: int
    entity_kind: EntityKind
    event_type: EventType
    before: Optional[Any]
    after: Any


ChangeListener = Callable[[ChangeEvent], None]


class LedgerStore:
    """Serialize reads and conditional writes against a single workbook."""

    def __init__(self, workbook: Workbook, *, source_digest: Optional[str] = None) -> None:
        self.workbook = workbook
        # digest of the file the workbook was loaded from or last saved to
        self.source_digest = source_digest
        self._lock = threading.RLock()
        self._dispatch_lock = threading.RLock()
        self._outbox: Deque[ChangeEvent] = deque()
        self._listeners: List[ChangeListener] = []
        self._sequence = itertools.count(1)

    # ------------------------------------------------------------------
    # Workflow records
    # ------------------------------------------------------------------

    def get_record(self, kind: WorkflowKind, record_id: str) -> Optional[data_manager.WorkflowRecord]:
        """Return the record with its approvals attached, or ``None``."""

        with self._guard():
            return self._read_record(WorkflowKind(kind), record_id)

    def list_records(self, kind: WorkflowKind, *, status: Optional[str] = None) -> List[data_manager.WorkflowRecord]:
        """Return every record of ``kind`` in sheet order, optionally filtered by status."""

        kind = WorkflowKind(kind)
        with self._guard():
            approvals = self._approvals_index(kind)
            records = []
            for record in data_manager.iter_records(self.workbook, kind):
                if status is not None and record.status != status:
                    continue
                records.append(replace(record, approvals=approvals.get(record.record_id, {})))
            return records

    def insert_record(self, record: data_manager.WorkflowRecord) -> data_manager.WorkflowRecord:
        """Append a new record; an existing id is reported as a conflict."""

        with self._guard():
            if self._read_record(record.kind, record.record_id) is not None:
                raise ConflictError(f"Record already exists: {record.record_id}")
            data_manager.append_record(self.workbook, record)
            for entry in record.approvals.values():
                data_manager.append_approval(self.workbook, entry)
            committed = self._read_record(record.kind, record.record_id)
            self._enqueue(EntityKind(record.kind.value), EventType.INSERT, None, committed)
        self._dispatch()
        return committed

    def compare_and_set_status(
        self,
        record: data_manager.WorkflowRecord,
        *,
        expected_status: str,
        approval: Optional[data_manager.ApprovalEntry] = None,
    ) -> data_manager.WorkflowRecord:
        """Commit ``record``'s status and audit fields if the stored status is unchanged.

        Args:
            record: Desired next state. Only the status, ``updated_at`` and
                rejection columns are written; every other column is left as
                stored.
            expected_status: Status the caller read before computing
                ``record``.
            approval: Approval entry to append in the same commit.

        Returns:
            The committed record as re-read from the workbook.

        Raises:
            RecordNotFoundError: If the record does not exist.
            ConflictError: If the stored status differs from
                ``expected_status`` or ``approval`` targets a stage that
                already has an entry.
        """

        kind = record.kind
        with self._guard():
            current = self._read_record(kind, record.record_id)
            if current is None:
                raise RecordNotFoundError(f"Unknown {kind.value} id: {record.record_id}")
            if current.status != expected_status:
                raise ConflictError(
                    f"{kind.value} '{record.record_id}' is '{current.status}', expected '{expected_status}'"
                )
            if approval is not None and approval.stage in current.approvals:
                raise ConflictError(
                    f"Stage '{approval.stage}' already recorded for {kind.value} '{record.record_id}'"
                )

            data_manager.update_row(
                self.workbook,
                data_manager.record_sheet_name(kind),
                "RecordID",
                record.record_id,
                field_values={
                    "Status": record.status,
                    "UpdatedAt": record.updated_at_iso,
                    "RejectionReason": record.rejection_reason,
                    "RejectedBy": record.rejected_by,
                    "RejectedAt": record.rejected_at_iso,
                },
            )
            if approval is not None:
                data_manager.append_approval(self.workbook, approval)
            committed = self._read_record(kind, record.record_id)
            self._enqueue(EntityKind(kind.value), EventType.UPDATE, current, committed)
        self._dispatch()
        return committed

    # ------------------------------------------------------------------
    # Tanks
    # ------------------------------------------------------------------

    def get_tank(self, fuel_type: str) -> Optional[data_manager.TankRow]:
        with self._guard():
            return self._read_tank(fuel_type)

    def list_tanks(self) -> List[data_manager.TankRow]:
        with self._guard():
            return sorted(data_manager.iter_tanks(self.workbook), key=lambda tank: tank.fuel_type)

    def insert_tank(self, tank: data_manager.TankRow) -> data_manager.TankRow:
        with self._guard():
            if self._read_tank(tank.fuel_type) is not None:
                raise ConflictError(f"Tank already exists: {tank.fuel_type}")
            data_manager.append_tank(self.workbook, tank)
            committed = self._read_tank(tank.fuel_type)
            self._enqueue(EntityKind.TANK, EventType.INSERT, None, committed)
        self._dispatch()
        return committed

    def has_movement(self, idempotency_key: str) -> bool:
        with self._guard():
            return self._find_movement(idempotency_key) is not None

    def list_movements(self, fuel_type: Optional[str] = None) -> List[data_manager.MovementRow]:
        with self._guard():
            return [
                movement
                for movement in data_manager.iter_movements(self.workbook)
                if fuel_type is None or movement.fuel_type == fuel_type
            ]

    def apply_tank_movement(
        self,
        tank: data_manager.TankRow,
        movement: data_manager.MovementRow,
        *,
        expected_level: Decimal,
    ) -> data_manager.TankRow:
        """Commit a tank level change together with its movement row.

        The level write succeeds only if the stored ``CurrentLevel`` still
        equals ``expected_level``; a movement whose idempotency key has already
        been applied is refused before anything is written.

        Raises:
            TankNotFoundError: If no tank row exists for ``tank.fuel_type``.
            DuplicateMovementError: If ``movement.idempotency_key`` was applied.
            ConflictError: If the stored level differs from ``expected_level``.
        """

        with self._guard():
            current = self._read_tank(tank.fuel_type)
            if current is None:
                raise TankNotFoundError(f"Unknown fuel type: {tank.fuel_type}")
            if movement.idempotency_key and self._find_movement(movement.idempotency_key) is not None:
                raise DuplicateMovementError(
                    f"Movement already applied for key '{movement.idempotency_key}'"
                )
            if current.current_level != expected_level:
                raise ConflictError(
                    f"Tank '{tank.fuel_type}' level is {current.current_level}, expected {expected_level}"
                )

            data_manager.update_row(
                self.workbook,
                data_manager.TANK_INVENTORY_SHEET,
                "FuelType",
                tank.fuel_type,
                field_values={
                    "CurrentLevel": tank.current_level,
                    "LastRefillAmount": tank.last_refill_amount,
                    "LastRefillDate": tank.last_refill_date,
                    "UpdatedBy": tank.updated_by,
                    "UpdatedAt": tank.updated_at_iso,
                    "Notes": tank.notes,
                },
            )
            data_manager.append_movement(self.workbook, movement)
            committed = self._read_tank(tank.fuel_type)
            self._enqueue(EntityKind.TANK, EventType.UPDATE, current, committed)
        self._dispatch()
        return committed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, destination: Path) -> None:
        """Write the workbook to ``destination`` while no mutation is in flight."""

        with self._guard():
            data_manager.save_workbook(self.workbook, destination)

    # ------------------------------------------------------------------
    # Change stream
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _enqueue(self, entity_kind: EntityKind, event_type: EventType, before: Any, after: Any) -> None:
        # Caller holds self._lock, so outbox order equals commit order.
        event = ChangeEvent(
            sequence=next(self._sequence),
            entity_kind=entity_kind,
            event_type=event_type,
            before=before,
            after=after,
        )
        self._outbox.append(event)

    def _dispatch(self) -> None:
        with self._dispatch_lock:
            while True:
                with self._lock:
                    if not self._outbox:
                        return
                    event = self._outbox.popleft()
                    listeners = list(self._listeners)
                for listener in listeners:
                    try:
                        listener(event)
                    except Exception:
                        log.exception(
                            "Change listener %r failed on event #%d (%s %s)",
                            listener,
                            event.sequence,
                            event.event_type.value,
                            event.entity_kind.value,
                        )

    # ------------------------------------------------------------------
    # Internal helpers (callers hold self._lock)
    # ------------------------------------------------------------------

    @contextmanager
    def _guard(self) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except (OSError, InvalidFileException) as exc:
                log.error("Ledger store unavailable: %s", exc)
                raise StoreUnavailableError(str(exc)) from exc

    def _read_record(self, kind: WorkflowKind, record_id: str) -> Optional[data_manager.WorkflowRecord]:
        raw = data_manager.read_row(self.workbook, data_manager.record_sheet_name(kind), "RecordID", record_id)
        if raw is None:
            return None
        record = data_manager.deserialize_record(kind, raw)
        approvals = {
            entry.stage: entry
            for entry in data_manager.iter_approvals(self.workbook)
            if entry.record_id == record_id and entry.kind == kind.value
        }
        return replace(record, approvals=approvals)

    def _approvals_index(self, kind: WorkflowKind) -> Dict[str, Dict[str, data_manager.ApprovalEntry]]:
        index: Dict[str, Dict[str, data_manager.ApprovalEntry]] = {}
        for entry in data_manager.iter_approvals(self.workbook):
            if entry.kind == kind.value:
                index.setdefault(entry.record_id, {})[entry.stage] = entry
        return index

    def _read_tank(self, fuel_type: str) -> Optional[data_manager.TankRow]:
        raw = data_manager.read_row(self.workbook, data_manager.TANK_INVENTORY_SHEET, "FuelType", fuel_type)
        if raw is None:
            return None
        return data_manager.deserialize_tank(raw)

    def _find_movement(self, idempotency_key: str) -> Optional[data_manager.MovementRow]:
        for movement in data_manager.iter_movements(self.workbook):
            if movement.idempotency_key == idempotency_key:
                return movement
        return None

"""Change-notification router.

The router listens to the ledger store's change stream, turns each committed
mutation into zero or more :class:`Notification` objects using a static rule
table, and pushes them to the live sessions whose role matches. Sessions are
transient: one that is closed (or not yet open) when a notification is routed
never sees it. Each session keeps only its most recent notifications.
"""

from __future__ import annotations

import itertools
import queue
import threading
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Deque, Dict, FrozenSet, Iterable, List, Mapping, Optional

from . import data_manager, log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_LOW_LEVEL_PERCENT,
    DEFAULT_NOTIFICATION_RETENTION,
    EntityKind,
    EventType,
    NotificationKind,
    Role,
    WorkflowKind,
    WorkflowStatus,
)
from .ledger_store import ChangeEvent, LedgerStore


ALL_ROLES: FrozenSet[Role] = frozenset(Role)
APPROVER_ROLES: FrozenSet[Role] = frozenset({Role.ACCOUNTANT, Role.MANAGER, Role.DIRECTOR})
SENIOR_ROLES: FrozenSet[Role] = frozenset({Role.MANAGER, Role.DIRECTOR})


@dataclass(frozen=True)
class Notification:
    """Ephemeral message delivered to live sessions."""

    notification_id: str
    kind: NotificationKind
    title: str
    message: str
    recipient_roles: FrozenSet[Role]
    entity_kind: EntityKind
    record_id: str
    timestamp: datetime


@dataclass(frozen=True)
class NotificationRule:
    """What to emit for one ``(event type, kind, new status)`` combination."""

    kind: NotificationKind
    title: str
    recipient_roles: FrozenSet[Role]


_S, _E, _F = WorkflowKind.SALE, WorkflowKind.EXPENSE, WorkflowKind.FUEL_ENTRY
_INSERT, _UPDATE = EventType.INSERT, EventType.UPDATE

NOTIFICATION_RULES: Mapping[tuple[EventType, WorkflowKind, WorkflowStatus], NotificationRule] = {
    (_INSERT, _S, WorkflowStatus.SUBMITTED): NotificationRule(
        NotificationKind.NEW_SUBMISSION, "New Sale Created", APPROVER_ROLES),
    (_INSERT, _E, WorkflowStatus.SUBMITTED): NotificationRule(
        NotificationKind.NEW_SUBMISSION, "New Expense Request", APPROVER_ROLES),
    (_INSERT, _F, WorkflowStatus.SUBMITTED): NotificationRule(
        NotificationKind.NEW_SUBMISSION, "New Fuel Entry Submitted", APPROVER_ROLES),
    (_UPDATE, _S, WorkflowStatus.ACCOUNTANT_APPROVED): NotificationRule(
        NotificationKind.AWAITING_APPROVAL, "Sale Needs Manager Approval", SENIOR_ROLES),
    (_UPDATE, _E, WorkflowStatus.ACCOUNTANT_APPROVED): NotificationRule(
        NotificationKind.AWAITING_APPROVAL, "Expense Needs Manager Approval", SENIOR_ROLES),
    (_UPDATE, _F, WorkflowStatus.ACCOUNTANT_APPROVED): NotificationRule(
        NotificationKind.AWAITING_APPROVAL, "Fuel Entry Needs Manager Approval", SENIOR_ROLES),
    (_UPDATE, _E, WorkflowStatus.MANAGER_APPROVED): NotificationRule(
        NotificationKind.AWAITING_APPROVAL, "Expense Needs Director Approval", frozenset({Role.DIRECTOR})),
    (_UPDATE, _S, WorkflowStatus.MANAGER_APPROVED): NotificationRule(
        NotificationKind.FULLY_APPROVED, "Sale Fully Approved", ALL_ROLES),
    (_UPDATE, _F, WorkflowStatus.MANAGER_APPROVED): NotificationRule(
        NotificationKind.FULLY_APPROVED, "Fuel Entry Fully Approved", ALL_ROLES),
    (_UPDATE, _E, WorkflowStatus.DIRECTOR_APPROVED): NotificationRule(
        NotificationKind.FULLY_APPROVED, "Expense Fully Approved", ALL_ROLES),
    (_UPDATE, _S, WorkflowStatus.REJECTED): NotificationRule(
        NotificationKind.REJECTED, "Sale Rejected", ALL_ROLES),
    (_UPDATE, _E, WorkflowStatus.REJECTED): NotificationRule(
        NotificationKind.REJECTED, "Expense Rejected", ALL_ROLES),
    (_UPDATE, _F, WorkflowStatus.REJECTED): NotificationRule(
        NotificationKind.REJECTED, "Fuel Entry Rejected", ALL_ROLES),
}

LOW_FUEL_RULE = NotificationRule(NotificationKind.LOW_FUEL, "Low Fuel Alert", SENIOR_ROLES)

_KIND_LABELS = {
    WorkflowKind.SALE: "sale",
    WorkflowKind.EXPENSE: "expense",
    WorkflowKind.FUEL_ENTRY: "fuel entry",
}


class NotificationSession:
    """A live subscriber: bounded history plus a queue for streaming reads."""

    def __init__(
        self,
        session_id: str,
        role: Role,
        *,
        kinds: Optional[Iterable[EntityKind]] = None,
        retention: int = DEFAULT_NOTIFICATION_RETENTION,
    ) -> None:
        if retention < 1:
            raise ValueError("Notification retention must be at least 1")
        self.session_id = session_id
        self.role = Role(role)
        self.kinds: Optional[FrozenSet[EntityKind]] = (
            frozenset(EntityKind(kind) for kind in kinds) if kinds is not None else None
        )
        self._history: Deque[Notification] = deque(maxlen=retention)
        self._queue: "queue.Queue[Notification]" = queue.Queue(maxsize=retention)
        self._lock = threading.Lock()
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def history(self) -> List[Notification]:
        """Retained notifications, newest first."""

        with self._lock:
            return list(reversed(self._history))

    def accepts(self, notification: Notification) -> bool:
        if not self._connected or self.role not in notification.recipient_roles:
            return False
        return self.kinds is None or notification.entity_kind in self.kinds

    def deliver(self, notification: Notification) -> bool:
        """Store and enqueue ``notification``; repeats of a retained id are ignored."""

        with self._lock:
            if not self._connected:
                return False
            if any(existing.notification_id == notification.notification_id for existing in self._history):
                log.debug(
                    "Session '%s' already holds notification '%s'",
                    self.session_id,
                    notification.notification_id,
                )
                return False
            self._history.append(notification)
            self._enqueue(notification)
        return True

    def _enqueue(self, notification: Notification) -> None:
        # an undrained session keeps only the newest ``retention`` items
        while True:
            try:
                self._queue.put_nowait(notification)
                return
            except queue.Full:
                try:
                    dropped = self._queue.get_nowait()
                except queue.Empty:
                    continue
                log.debug("Session '%s' dropped unread notification '%s'", self.session_id, dropped.notification_id)

    def next(self, timeout: Optional[float] = None) -> Optional[Notification]:
        """Block for the next notification; ``None`` when ``timeout`` elapses."""

        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Notification]:
        """Return every queued notification without blocking."""

        drained: List[Notification] = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                return drained

    def dismiss(self, notification_id: str) -> None:
        with self._lock:
            kept = [item for item in self._history if item.notification_id != notification_id]
            self._history.clear()
            self._history.extend(kept)

    def close(self) -> None:
        with self._lock:
            self._connected = False


class NotificationRouter:
    """Classify change events and fan notifications out to live sessions."""

    def __init__(
        self,
        *,
        retention: int = DEFAULT_NOTIFICATION_RETENTION,
        low_level_percent: Decimal = DEFAULT_LOW_LEVEL_PERCENT,
        currency: str = DEFAULT_CURRENCY,
        rules: Mapping[tuple[EventType, WorkflowKind, WorkflowStatus], NotificationRule] = NOTIFICATION_RULES,
    ) -> None:
        self.retention = retention
        self.low_level_percent = low_level_percent
        self.currency = currency
        self.rules = rules
        self._sessions: Dict[str, NotificationSession] = {}
        self._lock = threading.Lock()
        self._session_ids = itertools.count(1)

    @property
    def sessions(self) -> List[NotificationSession]:
        with self._lock:
            return list(self._sessions.values())

    def attach(self, store: LedgerStore) -> None:
        store.subscribe(self.handle_event)

    def detach(self, store: LedgerStore) -> None:
        store.unsubscribe(self.handle_event)

    def subscribe(self, role: Role, *, kinds: Optional[Iterable[EntityKind]] = None) -> NotificationSession:
        """Open a session for a viewer with ``role``."""

        session_id = f"session-{next(self._session_ids)}"
        session = NotificationSession(session_id, role, kinds=kinds, retention=self.retention)
        with self._lock:
            self._sessions[session_id] = session
        log.debug("Opened notification session '%s' for role '%s'", session_id, session.role.value)
        return session

    def unsubscribe(self, session: NotificationSession) -> None:
        session.close()
        with self._lock:
            self._sessions.pop(session.session_id, None)
        log.debug("Closed notification session '%s'", session.session_id)

    def handle_event(self, event: ChangeEvent) -> List[Notification]:
        """Route ``event`` and deliver the result to every matching session."""

        notifications = self.route(event)
        for notification in notifications:
            delivered = sum(1 for session in self.sessions if session.accepts(notification) and session.deliver(notification))
            log.debug(
                "Notification '%s' delivered to %d session(s)",
                notification.notification_id,
                delivered,
            )
        return notifications

    def route(self, event: ChangeEvent, *, now: Optional[datetime] = None) -> List[Notification]:
        """Derive the notifications implied by ``event`` without delivering them."""

        timestamp = now or datetime.now(UTC)
        if event.entity_kind is EntityKind.TANK:
            return self._route_tank(event, timestamp)

        record: data_manager.WorkflowRecord = event.after
        if event.event_type is EventType.UPDATE and event.before is not None and event.before.status == record.status:
            return []
        try:
            key = (event.event_type, record.kind, WorkflowStatus(record.status))
        except ValueError:
            log.warning("Record '%s' carries unknown status '%s'", record.record_id, record.status)
            return []
        rule = self.rules.get(key)
        if rule is None:
            return []

        return [
            Notification(
                notification_id=f"{record.record_id}-{record.status}",
                kind=rule.kind,
                title=rule.title,
                message=self._record_message(record),
                recipient_roles=rule.recipient_roles,
                entity_kind=event.entity_kind,
                record_id=record.record_id,
                timestamp=timestamp,
            )
        ]

    def _route_tank(self, event: ChangeEvent, timestamp: datetime) -> List[Notification]:
        tank: data_manager.TankRow = event.after
        if event.event_type is not EventType.UPDATE or event.before is None:
            return []
        if tank.current_level >= event.before.current_level or tank.capacity <= 0:
            return []
        utilization = tank.current_level * Decimal("100") / tank.capacity
        if utilization >= self.low_level_percent:
            return []
        return [
            Notification(
                notification_id=f"{tank.fuel_type}-low-{event.sequence}",
                kind=LOW_FUEL_RULE.kind,
                title=LOW_FUEL_RULE.title,
                message=f"{tank.fuel_type.upper()}: {tank.current_level}L remaining ({utilization:.0f}% of capacity)",
                recipient_roles=LOW_FUEL_RULE.recipient_roles,
                entity_kind=EntityKind.TANK,
                record_id=tank.fuel_type,
                timestamp=timestamp,
            )
        ]

    def _record_message(self, record: data_manager.WorkflowRecord) -> str:
        message = (
            f"{record.department.upper()} {_KIND_LABELS[record.kind]}: "
            f"{self.currency} {record.amount:,.2f}"
        )
        if isinstance(record, data_manager.FuelEntryRecord):
            message += f" ({record.fuel_sold}L {record.fuel_type})"
        if record.status == WorkflowStatus.REJECTED.value and record.rejection_reason:
            message += f" - {record.rejection_reason}"
        return message

"""Unit tests for change classification and session fan-out."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from station_erp import core_logic, data_manager, inventory, workflow
from station_erp.constants import (
    Department,
    EntityKind,
    EventType,
    FuelType,
    NotificationKind,
    Role,
    WorkflowKind,
)
from station_erp.ledger_store import ChangeEvent
from station_erp.notifications import Notification, NotificationRouter, NotificationSession

NOW = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)


def _sale(status: str = "submitted", **overrides) -> data_manager.SaleRecord:
    values = dict(
        record_id="S1",
        department="supermarket",
        amount=Decimal("125000"),
        created_by="u-cashier",
        created_at_iso="2026-02-01T11:00:00+00:00",
        status=status,
    )
    values.update(overrides)
    return data_manager.SaleRecord(**values)


def _event(before, after, event_type=EventType.UPDATE, entity_kind=EntityKind.SALE, sequence=1) -> ChangeEvent:
    return ChangeEvent(sequence, entity_kind, event_type, before, after)


def _notification(notification_id: str = "n1", roles=frozenset({Role.MANAGER})) -> Notification:
    return Notification(
        notification_id=notification_id,
        kind=NotificationKind.NEW_SUBMISSION,
        title="t",
        message="m",
        recipient_roles=roles,
        entity_kind=EntityKind.SALE,
        record_id="S1",
        timestamp=NOW,
    )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def test_new_sale_goes_to_approvers():
    router = NotificationRouter()

    (notification,) = router.route(_event(None, _sale(), EventType.INSERT), now=NOW)

    assert notification.title == "New Sale Created"
    assert notification.kind is NotificationKind.NEW_SUBMISSION
    assert notification.message == "SUPERMARKET sale: UGX 125,000.00"
    assert notification.recipient_roles == {Role.ACCOUNTANT, Role.MANAGER, Role.DIRECTOR}
    assert notification.notification_id == "S1-submitted"
    assert notification.timestamp == NOW


def test_accountant_approval_asks_manager():
    router = NotificationRouter(currency="KES")

    (notification,) = router.route(_event(_sale(), _sale("accountant_approved")))

    assert notification.title == "Sale Needs Manager Approval"
    assert notification.recipient_roles == {Role.MANAGER, Role.DIRECTOR}
    assert notification.message.startswith("SUPERMARKET sale: KES")


def test_expense_manager_approval_asks_director_only():
    router = NotificationRouter()
    before = data_manager.ExpenseRecord("E1", "fuel", Decimal("1"), "u", "t", "accountant_approved")
    after = replace(before, status="manager_approved")

    (notification,) = router.route(_event(before, after, entity_kind=EntityKind.EXPENSE))

    assert notification.title == "Expense Needs Director Approval"
    assert notification.recipient_roles == {Role.DIRECTOR}


def test_final_sale_approval_reaches_everyone():
    router = NotificationRouter()
    (notification,) = router.route(_event(_sale("accountant_approved"), _sale("manager_approved")))
    assert notification.kind is NotificationKind.FULLY_APPROVED
    assert Role.CASHIER in notification.recipient_roles


def test_rejection_message_carries_reason():
    router = NotificationRouter()
    after = _sale("rejected", rejection_reason="Duplicate receipt")

    (notification,) = router.route(_event(_sale(), after))

    assert notification.title == "Sale Rejected"
    assert notification.message.endswith(" - Duplicate receipt")


def test_fuel_entry_message_includes_litres():
    router = NotificationRouter()
    entry = data_manager.FuelEntryRecord(
        "F1", "fuel", Decimal("300000"), "u", "t", "submitted",
        fuel_type="petrol", opening_stock=Decimal("1000"), closing_stock=Decimal("940"),
    )

    (notification,) = router.route(_event(None, entry, EventType.INSERT, EntityKind.FUEL_ENTRY))

    assert notification.message == "FUEL fuel entry: UGX 300,000.00 (60L petrol)"


def test_unchanged_status_updates_are_silent():
    router = NotificationRouter()
    assert router.route(_event(_sale(), _sale(updated_at_iso="later"))) == []


def test_low_fuel_alert_only_on_decrease_below_threshold():
    router = NotificationRouter()
    full = data_manager.TankRow("diesel", Decimal("8000"), Decimal("2000"))
    low = replace(full, current_level=Decimal("1200"))

    (alert,) = router.route(_event(full, low, entity_kind=EntityKind.TANK, sequence=7))

    assert alert.kind is NotificationKind.LOW_FUEL
    assert alert.notification_id == "diesel-low-7"
    assert alert.message == "DIESEL: 1200L remaining (15% of capacity)"
    assert alert.recipient_roles == {Role.MANAGER, Role.DIRECTOR}

    lower_refill = replace(full, current_level=Decimal("1300"))
    assert router.route(_event(low, lower_refill, entity_kind=EntityKind.TANK)) == []
    assert router.route(_event(None, low, EventType.INSERT, EntityKind.TANK)) == []
    assert router.route(_event(replace(full, current_level=Decimal("5000")), full, entity_kind=EntityKind.TANK)) == []


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def test_session_retains_last_n_newest_first():
    session = NotificationSession("s1", Role.MANAGER, retention=3)
    for index in range(5):
        session.deliver(_notification(f"n{index}"))

    assert [n.notification_id for n in session.history] == ["n4", "n3", "n2"]
    assert [n.notification_id for n in session.drain()] == ["n2", "n3", "n4"]


def test_undrained_session_queue_keeps_newest_items():
    session = NotificationSession("s1", Role.MANAGER, retention=2)
    session.deliver(_notification("n0"))
    assert session.next(timeout=0.01).notification_id == "n0"

    for index in range(1, 50):
        session.deliver(_notification(f"n{index}"))

    assert [n.notification_id for n in session.drain()] == ["n48", "n49"]
    assert session.next(timeout=0.01) is None


def test_session_requires_positive_retention():
    with pytest.raises(ValueError):
        NotificationSession("s1", Role.MANAGER, retention=0)


def test_session_ignores_duplicate_ids():
    session = NotificationSession("s1", Role.MANAGER)
    assert session.deliver(_notification("n1"))
    assert not session.deliver(_notification("n1"))
    assert len(session.history) == 1


def test_session_dismiss_and_close():
    session = NotificationSession("s1", Role.MANAGER)
    session.deliver(_notification("n1"))
    session.deliver(_notification("n2"))

    session.dismiss("n1")
    session.close()

    assert [n.notification_id for n in session.history] == ["n2"]
    assert not session.connected
    assert not session.deliver(_notification("n3"))


def test_session_next_times_out():
    session = NotificationSession("s1", Role.MANAGER)
    assert session.next(timeout=0.01) is None
    session.deliver(_notification("n1"))
    assert session.next(timeout=0.01).notification_id == "n1"


def test_session_filters_by_role_and_entity_kind():
    session = NotificationSession("s1", Role.MANAGER, kinds=[EntityKind.TANK])
    assert not session.accepts(_notification(roles=frozenset({Role.ACCOUNTANT})))
    assert not session.accepts(_notification())


# ---------------------------------------------------------------------------
# Routing through the store
# ---------------------------------------------------------------------------


def test_router_fans_out_store_changes_by_role(context, accountant):
    accountant_view = context.router.subscribe(Role.ACCOUNTANT)
    manager_view = context.router.subscribe(Role.MANAGER)
    cashier_view = context.router.subscribe(Role.CASHIER)

    sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            Department.RESTAURANT,
            "dine_in",
            "cash",
            (data_manager.SaleItem("Rolex", Decimal("2"), Decimal("3000"), Decimal("0")),),
            "u-waiter",
        ),
    )
    workflow.approve(context, sale.record_id, WorkflowKind.SALE, accountant)

    assert [n.title for n in accountant_view.drain()] == ["New Sale Created"]
    assert [n.title for n in manager_view.drain()] == ["New Sale Created", "Sale Needs Manager Approval"]
    assert cashier_view.drain() == []


def test_session_opened_late_misses_earlier_events(context):
    inventory.register_tank(context, FuelType.PETROL, Decimal("1000"), initial_level=Decimal("500"))
    inventory.deduct(context, FuelType.PETROL, Decimal("400"), idempotency_key="F1")

    late = context.router.subscribe(Role.MANAGER)
    inventory.deduct(context, FuelType.PETROL, Decimal("50"), idempotency_key="F2")

    (alert,) = late.drain()
    assert alert.message == "PETROL: 50L remaining (5% of capacity)"


def test_unsubscribed_session_receives_nothing(context):
    session = context.router.subscribe(Role.MANAGER)
    context.router.unsubscribe(session)

    inventory.register_tank(context, FuelType.PETROL, Decimal("1000"), initial_level=Decimal("500"))
    inventory.deduct(context, FuelType.PETROL, Decimal("400"), idempotency_key="F1")

    assert session.drain() == []
    assert context.router.sessions == []


@pytest.mark.parametrize("role", [Role.MANAGER, Role.DIRECTOR])
def test_subscribe_assigns_sequential_ids(role):
    router = NotificationRouter()
    assert router.subscribe(role).session_id == "session-1"
    assert router.subscribe(role).session_id == "session-2"

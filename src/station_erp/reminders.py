"""Approval backlog summaries for the reminder mailer.

The engine only counts what is waiting on each approver role; formatting and
sending the reminder belongs to the external mail service.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Sequence

from . import log
from .constants import Role, WorkflowKind
from .core_logic import RuntimeContext
from .workflow import list_pending, required_role


@dataclass(frozen=True)
class ReminderRequest:
    """Payload handed to the reminder mailer."""

    recipient_role: Role
    item_kind: WorkflowKind
    pending_count: int


def summarize_backlog(context: RuntimeContext, kind: WorkflowKind) -> List[ReminderRequest]:
    """One request per approver role with at least one ``kind`` record waiting on it.

    Requests are ordered by approval stage (accountant first).
    """

    kind = WorkflowKind(kind)
    counts: Counter = Counter()
    for record in list_pending(context, kind):
        role = required_role(kind, record.status)
        if role is not None:
            counts[role] += 1

    requests = [
        ReminderRequest(recipient_role=role, item_kind=kind, pending_count=counts[role])
        for role in (Role.ACCOUNTANT, Role.MANAGER, Role.DIRECTOR)
        if counts[role]
    ]
    log.info(
        "Backlog for %s: %s",
        kind.value,
        ", ".join(f"{request.recipient_role.value}={request.pending_count}" for request in requests) or "empty",
    )
    return requests


def summarize_all_backlogs(
    context: RuntimeContext,
    kinds: Optional[Sequence[WorkflowKind]] = None,
) -> List[ReminderRequest]:
    requests: List[ReminderRequest] = []
    for kind in kinds or tuple(WorkflowKind):
        requests.extend(summarize_backlog(context, kind))
    return requests

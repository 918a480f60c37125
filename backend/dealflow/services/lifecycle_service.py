# Overview: Deal status machine; the only place a deal's status is written.

"""
Deal Lifecycle Service

================================================================================
PURPOSE: Enforce the deal status graph and keep an append-only history of it
================================================================================

STATE MACHINE:
    NEW -> IN_PROGRESS -> WAITING_STOCK_CONFIRMATION -> STOCK_CONFIRMED
        -> FINANCE_APPROVED -> ADMIN_APPROVED -> READY_FOR_SHIPMENT
        -> SHIPPED -> CLOSED

    STOCK_CONFIRMED     -> REJECTED       (finance rejection)
    REJECTED            -> IN_PROGRESS    (manager re-edit)
    READY_FOR_SHIPMENT <-> SHIPMENT_ON_HOLD
    any non-terminal status before SHIPPED -> CANCELED

RULES (NON-NEGOTIABLE):
1. Every workflow operation names its allowed (from -> to) pairs in
   DEAL_TRANSITIONS; nothing else moves a deal
2. Every pair in DEAL_TRANSITIONS is also an edge of STATUS_GRAPH
3. Each transition appends one DealStatusChange in the caller's transaction
4. CLOSED and CANCELED are terminal

"Quantities finalized" is NOT a status. It is Deal.quantities_finalized_at,
a sub-flag of STOCK_CONFIRMED.

================================================================================
"""

from __future__ import annotations

from ..models import Deal, DealStatusChange
from ..errors import InvalidTransitionError, ValidationError
from dealflow.time_utils import utcnow


NEW = "NEW"
IN_PROGRESS = "IN_PROGRESS"
WAITING_STOCK_CONFIRMATION = "WAITING_STOCK_CONFIRMATION"
STOCK_CONFIRMED = "STOCK_CONFIRMED"
FINANCE_APPROVED = "FINANCE_APPROVED"
ADMIN_APPROVED = "ADMIN_APPROVED"
READY_FOR_SHIPMENT = "READY_FOR_SHIPMENT"
SHIPMENT_ON_HOLD = "SHIPMENT_ON_HOLD"
SHIPPED = "SHIPPED"
CLOSED = "CLOSED"
CANCELED = "CANCELED"
REJECTED = "REJECTED"

VALID_STATUSES = {
    NEW, IN_PROGRESS, WAITING_STOCK_CONFIRMATION, STOCK_CONFIRMED,
    FINANCE_APPROVED, ADMIN_APPROVED, READY_FOR_SHIPMENT, SHIPMENT_ON_HOLD,
    SHIPPED, CLOSED, CANCELED, REJECTED,
}

STATUS_GRAPH: dict[str, frozenset] = {
    NEW: frozenset({IN_PROGRESS, CANCELED}),
    IN_PROGRESS: frozenset({WAITING_STOCK_CONFIRMATION, CANCELED}),
    WAITING_STOCK_CONFIRMATION: frozenset({STOCK_CONFIRMED, CANCELED}),
    STOCK_CONFIRMED: frozenset({FINANCE_APPROVED, REJECTED, CANCELED}),
    FINANCE_APPROVED: frozenset({ADMIN_APPROVED, CANCELED}),
    ADMIN_APPROVED: frozenset({READY_FOR_SHIPMENT, CANCELED}),
    READY_FOR_SHIPMENT: frozenset({SHIPPED, SHIPMENT_ON_HOLD, CANCELED}),
    SHIPMENT_ON_HOLD: frozenset({READY_FOR_SHIPMENT, CANCELED}),
    SHIPPED: frozenset({CLOSED}),
    REJECTED: frozenset({IN_PROGRESS}),
    CLOSED: frozenset(),
    CANCELED: frozenset(),
}

_CANCELABLE = [s for s, targets in STATUS_GRAPH.items() if CANCELED in targets]

# operation -> {from_status: to_status}
DEAL_TRANSITIONS: dict[str, dict[str, str]] = {
    "start_work": {NEW: IN_PROGRESS},
    "request_stock_confirmation": {IN_PROGRESS: WAITING_STOCK_CONFIRMATION},
    "confirm_stock": {WAITING_STOCK_CONFIRMATION: STOCK_CONFIRMED},
    "approve_finance": {STOCK_CONFIRMED: FINANCE_APPROVED},
    "reject_finance": {STOCK_CONFIRMED: REJECTED},
    "reopen": {REJECTED: IN_PROGRESS},
    "approve_admin": {FINANCE_APPROVED: ADMIN_APPROVED},
    "mark_ready_for_shipment": {ADMIN_APPROVED: READY_FOR_SHIPMENT},
    "submit_shipment": {READY_FOR_SHIPMENT: SHIPPED},
    "hold_shipment": {READY_FOR_SHIPMENT: SHIPMENT_ON_HOLD},
    "release_shipment_hold": {SHIPMENT_ON_HOLD: READY_FOR_SHIPMENT},
    "close": {SHIPPED: CLOSED},
    "cancel": {status: CANCELED for status in _CANCELABLE},
}

# Item edits are allowed before the warehouse has answered
ITEM_EDITABLE_STATUSES = frozenset({NEW, IN_PROGRESS, WAITING_STOCK_CONFIRMATION})


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """True when the status graph has an edge from_status -> to_status."""
    validate_status(from_status)
    validate_status(to_status)
    return to_status in STATUS_GRAPH[from_status]


def target_status(operation: str, from_status: str) -> str | None:
    return DEAL_TRANSITIONS.get(operation, {}).get(from_status)


def require_transition(deal: Deal, operation: str) -> str:
    """
    Resolve the status an operation moves the deal to.

    Raises:
        InvalidTransitionError: If the operation is not allowed from the
            deal's current status. The deal is left untouched.
    """
    to_status = target_status(operation, deal.status)
    if to_status is None:
        expected = next(iter(DEAL_TRANSITIONS.get(operation, {}).values()), None)
        raise InvalidTransitionError(
            deal.status,
            expected,
            message=f"Cannot {operation} deal {deal.id} from status {deal.status}",
        )
    return to_status


def apply_transition(
    deal: Deal,
    operation: str,
    *,
    changed_by_user_id: int | None = None,
    reason: str | None = None,
) -> DealStatusChange:
    """
    Move the deal along the graph and append the history row.

    Does NOT commit; the orchestrator owns the transaction.
    """
    to_status = require_transition(deal, operation)
    if not can_transition(deal.status, to_status):
        raise InvalidTransitionError(deal.status, to_status)

    change = DealStatusChange(
        from_status=deal.status,
        to_status=to_status,
        reason=reason,
        changed_by_user_id=changed_by_user_id,
        occurred_at=utcnow(),
    )
    deal.status_changes.append(change)
    deal.status = to_status
    return change


def record_initial_status(deal: Deal, *, changed_by_user_id: int | None = None) -> DealStatusChange:
    """History row for a freshly created deal (from_status is NULL)."""
    change = DealStatusChange(
        from_status=None,
        to_status=deal.status,
        changed_by_user_id=changed_by_user_id,
        occurred_at=utcnow(),
    )
    deal.status_changes.append(change)
    return change


def history(deal: Deal) -> list[DealStatusChange]:
    return list(deal.status_changes)

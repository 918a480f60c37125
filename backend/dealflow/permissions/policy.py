# Overview: Single authorization policy evaluated at the orchestrator boundary.

"""
Authorization policy: (role, permission set, operation) -> allow / deny.

WHY one table: every workflow operation used to carry its own role check.
Keeping them here means the orchestrator asks exactly once, before it opens a
transaction, and a reviewer can read the whole access matrix in one place.

DESIGN PRINCIPLES:
- Fail closed: an operation missing from OPERATION_POLICY is denied
- A role listed for the operation is enough
- Otherwise any one of the operation's grant permissions is enough
- Deal ownership (managers act on their own deals) is a separate scope check
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import AuthorizationError
from .roles import (
    ADMIN_ROLES,
    FULL_ACCESS_ROLES,
    MANAGER,
    ACCOUNTANT,
    WAREHOUSE,
    WAREHOUSE_MANAGER,
)


@dataclass(frozen=True)
class Actor:
    """Caller identity handed in by the identity provider. Never verified here."""
    user_id: int
    role: str
    permissions: frozenset = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, role=user.role, permissions=frozenset(user.permissions or ()))


@dataclass(frozen=True)
class OperationRule:
    roles: frozenset
    grant_permissions: frozenset = frozenset()


def _rule(roles, *grant_permissions) -> OperationRule:
    return OperationRule(roles=frozenset(roles) | ADMIN_ROLES, grant_permissions=frozenset(grant_permissions))


DEAL_EDITORS = {MANAGER}
WAREHOUSE_STAFF = {WAREHOUSE, WAREHOUSE_MANAGER}
SHIPPERS = {WAREHOUSE_MANAGER}
FINANCE = {ACCOUNTANT}

OPERATION_POLICY: dict[str, OperationRule] = {
    # deal authoring
    "create_deal": _rule(DEAL_EDITORS, "manage_deals"),
    "update_deal": _rule(DEAL_EDITORS, "manage_deals"),
    "add_item": _rule(DEAL_EDITORS, "manage_deals"),
    "remove_item": _rule(DEAL_EDITORS, "manage_deals"),
    "start_work": _rule(DEAL_EDITORS, "manage_deals"),
    "request_stock_confirmation": _rule(DEAL_EDITORS, "manage_deals"),
    "set_item_quantities": _rule(DEAL_EDITORS),
    "reopen": _rule(DEAL_EDITORS),
    "cancel": _rule(DEAL_EDITORS),
    # warehouse
    "submit_warehouse_response": _rule(WAREHOUSE_STAFF, "stock_confirm"),
    "submit_shipment": _rule(SHIPPERS, "confirm_shipment"),
    "hold_shipment": _rule(SHIPPERS, "confirm_shipment"),
    "release_shipment_hold": _rule(SHIPPERS, "confirm_shipment"),
    # approvals
    "approve_finance": _rule(FINANCE, "finance_approve"),
    "reject_finance": _rule(FINANCE, "finance_approve"),
    "approve_admin": _rule(set(), "admin_approve"),
    "close": _rule(set(), "close_deals"),
    "archive": _rule(set(), "archive_deals"),
    # money
    "record_payment": _rule(DEAL_EDITORS | FINANCE),
    "close_day": _rule(set(), "close_deals"),
    "view_debts": _rule(DEAL_EDITORS | FINANCE),
    # inventory
    "record_movement": _rule(WAREHOUSE_STAFF | DEAL_EDITORS, "manage_inventory"),
    "manage_products": _rule(set(), "manage_products"),
    # reads
    "view_deals": _rule(DEAL_EDITORS | FINANCE | WAREHOUSE_STAFF, "view_all_deals"),
}


def is_allowed(actor: Actor, operation: str) -> bool:
    rule = OPERATION_POLICY.get(operation)
    if rule is None:
        return False
    if actor.role in rule.roles:
        return True
    return any(code in actor.permissions for code in rule.grant_permissions)


def authorize(actor: Actor, operation: str) -> None:
    """Raise AuthorizationError unless the actor may perform the operation."""
    if not is_allowed(actor, operation):
        raise AuthorizationError(
            f"Role {actor.role} may not perform {operation}",
            details={"operation": operation, "role": actor.role},
        )


def is_admin(actor: Actor) -> bool:
    return actor.role in ADMIN_ROLES


def sees_all_deals(actor: Actor) -> bool:
    """Managers without view_all_deals only see the deals they own."""
    return actor.role in FULL_ACCESS_ROLES or "view_all_deals" in actor.permissions

# Overview: Permission system package.
# Re-exports all public APIs for imports from dealflow.permissions.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    DEAL_PERMISSIONS,
    WAREHOUSE_PERMISSIONS,
    FINANCE_PERMISSIONS,
    CLIENT_PERMISSIONS,
    USER_PERMISSIONS,
)
from .roles import ALL_ROLES, ADMIN_ROLES, FULL_ACCESS_ROLES, DEFAULT_ROLE_PERMISSIONS
from .helpers import (
    get_all_permission_codes,
    get_permissions_by_category,
    get_permission_definition,
    validate_permission_code,
)
from .policy import Actor, OPERATION_POLICY, authorize, is_allowed, is_admin, sees_all_deals

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "DEAL_PERMISSIONS",
    "WAREHOUSE_PERMISSIONS",
    "FINANCE_PERMISSIONS",
    "CLIENT_PERMISSIONS",
    "USER_PERMISSIONS",
    "ALL_ROLES",
    "ADMIN_ROLES",
    "FULL_ACCESS_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "get_permissions_by_category",
    "get_permission_definition",
    "validate_permission_code",
    "Actor",
    "OPERATION_POLICY",
    "authorize",
    "is_allowed",
    "is_admin",
    "sees_all_deals",
]

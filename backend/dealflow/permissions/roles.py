# Overview: Role names and the permission codes each role gets by default.

from .helpers import get_all_permission_codes

SUPER_ADMIN = "SUPER_ADMIN"
ADMIN = "ADMIN"
OPERATOR = "OPERATOR"
MANAGER = "MANAGER"
ACCOUNTANT = "ACCOUNTANT"
WAREHOUSE = "WAREHOUSE"
WAREHOUSE_MANAGER = "WAREHOUSE_MANAGER"

ALL_ROLES = (SUPER_ADMIN, ADMIN, OPERATOR, MANAGER, ACCOUNTANT, WAREHOUSE, WAREHOUSE_MANAGER)

ADMIN_ROLES = frozenset({SUPER_ADMIN, ADMIN})

# Roles that see every deal regardless of owner
FULL_ACCESS_ROLES = frozenset({SUPER_ADMIN, ADMIN, ACCOUNTANT, WAREHOUSE, WAREHOUSE_MANAGER})

DEFAULT_ROLE_PERMISSIONS = {
    SUPER_ADMIN: get_all_permission_codes(),
    ADMIN: get_all_permission_codes(),
    OPERATOR: ["view_all_clients"],
    MANAGER: ["manage_deals", "manage_inventory", "view_all_clients"],
    ACCOUNTANT: ["finance_approve", "view_all_deals"],
    WAREHOUSE: ["stock_confirm", "manage_inventory", "view_all_deals"],
    WAREHOUSE_MANAGER: ["confirm_shipment", "manage_inventory", "view_all_deals"],
}

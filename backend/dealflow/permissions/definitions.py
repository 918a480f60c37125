# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- DEALS --

DEAL_PERMISSIONS = [
    (
        "view_all_deals",
        "View All Deals",
        "See deals owned by other managers",
        PermissionCategory.DEALS,
    ),
    (
        "manage_deals",
        "Manage Deals",
        "Create deals, edit items and set quantities on owned deals",
        PermissionCategory.DEALS,
    ),
    (
        "close_deals",
        "Close Deals",
        "Close shipped deals and run the daily closing",
        PermissionCategory.DEALS,
    ),
    (
        "archive_deals",
        "Archive Deals",
        "Hide deals from listings and analytics",
        PermissionCategory.DEALS,
    ),
    (
        "admin_approve",
        "Admin Approve",
        "Give final approval that makes a deal shippable",
        PermissionCategory.DEALS,
    ),
]


# -- WAREHOUSE --

WAREHOUSE_PERMISSIONS = [
    (
        "stock_confirm",
        "Confirm Stock",
        "Answer stock confirmation requests",
        PermissionCategory.WAREHOUSE,
    ),
    (
        "confirm_shipment",
        "Confirm Shipment",
        "Ship deals and put shipments on hold",
        PermissionCategory.WAREHOUSE,
    ),
    (
        "manage_inventory",
        "Manage Inventory",
        "Record IN/OUT stock movements",
        PermissionCategory.WAREHOUSE,
    ),
    (
        "manage_products",
        "Manage Products",
        "Create and edit products",
        PermissionCategory.WAREHOUSE,
    ),
]


# -- FINANCE --

FINANCE_PERMISSIONS = [
    (
        "finance_approve",
        "Finance Approve",
        "Approve or reject priced deals",
        PermissionCategory.FINANCE,
    ),
]


# -- CLIENTS / USERS --

CLIENT_PERMISSIONS = [
    (
        "view_all_clients",
        "View All Clients",
        "See clients owned by other managers",
        PermissionCategory.CLIENTS,
    ),
]

USER_PERMISSIONS = [
    (
        "manage_users",
        "Manage Users",
        "Create users and reassign deals",
        PermissionCategory.USERS,
    ),
]


PERMISSION_DEFINITIONS = (
    DEAL_PERMISSIONS
    + WAREHOUSE_PERMISSIONS
    + FINANCE_PERMISSIONS
    + CLIENT_PERMISSIONS
    + USER_PERMISSIONS
)

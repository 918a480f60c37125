# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    DEALS = "DEALS"
    WAREHOUSE = "WAREHOUSE"
    FINANCE = "FINANCE"
    CLIENTS = "CLIENTS"
    USERS = "USERS"

    ALL = (DEALS, WAREHOUSE, FINANCE, CLIENTS, USERS)

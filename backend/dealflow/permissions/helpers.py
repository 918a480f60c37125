# Overview: Lookups over the permission catalog.

from .definitions import PERMISSION_DEFINITIONS

# code -> (code, name, description, category)
_CATALOG = {perm[0]: perm for perm in PERMISSION_DEFINITIONS}


def get_all_permission_codes():
    """Every permission code, in catalog order."""
    return list(_CATALOG)


def get_permissions_by_category(category):
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def get_permission_definition(code):
    """Catalog entry for a code as a dict, or None for an unknown code."""
    perm = _CATALOG.get(code)
    if perm is None:
        return None
    code, name, description, category = perm
    return {"code": code, "name": name, "description": description, "category": category}


def validate_permission_code(code):
    return code in _CATALOG

"""
Permission codes and static role mappings.

Roles are plain strings on User.role. Each role maps to a fixed set of
permission codes; routes check codes, never roles.

SCOPE_BRANCH is not an action but a restriction: holders may only act on
the city of their assigned branch warehouse.
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    SALES = "SALES"
    STOCK = "STOCK"
    CATALOG = "CATALOG"
    SCOPE = "SCOPE"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# (code, name, description, category)
PERMISSION_DEFINITIONS = [
    ("SALES_READ", "View Sales", "View quotes and sales orders", PermissionCategory.SALES),
    ("SALES_WRITE", "Edit Sales", "Create, edit and cancel quotes and orders", PermissionCategory.SALES),
    ("SALES_PROCESS", "Process Quotes", "Turn a quote into a sales order with reservations", PermissionCategory.SALES),
    ("STOCK_READ", "View Stock", "View balances, shortages and movement requests", PermissionCategory.STOCK),
    ("STOCK_MOVE", "Move Stock", "Record movements, transfers and fulfillments", PermissionCategory.STOCK),
    ("CATALOG_READ", "View Catalog", "View products and presentations", PermissionCategory.CATALOG),
    ("CATALOG_WRITE", "Edit Catalog", "Manage product presentations", PermissionCategory.CATALOG),
    ("SCOPE_BRANCH", "Branch Scoped", "Restricted to the city of the assigned branch", PermissionCategory.SCOPE),
]

ALL_ACTION_PERMISSIONS = [code for code, _, _, category in PERMISSION_DEFINITIONS if category != PermissionCategory.SCOPE]

# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

DEFAULT_ROLE_PERMISSIONS = {
    "ADMIN": list(ALL_ACTION_PERMISSIONS),

    "SELLER": [
        "SALES_READ",
        "SALES_WRITE",
        "SALES_PROCESS",
        "STOCK_READ",
        "CATALOG_READ",
    ],

    # Same as SELLER, confined to their branch city
    "BRANCH_SELLER": [
        "SALES_READ",
        "SALES_WRITE",
        "SALES_PROCESS",
        "STOCK_READ",
        "CATALOG_READ",
        "SCOPE_BRANCH",
    ],

    "WAREHOUSE": [
        "SALES_READ",
        "STOCK_READ",
        "STOCK_MOVE",
        "CATALOG_READ",
    ],

    "BRANCH_WAREHOUSE": [
        "SALES_READ",
        "STOCK_READ",
        "STOCK_MOVE",
        "CATALOG_READ",
        "SCOPE_BRANCH",
    ],

    "READONLY": [
        "SALES_READ",
        "STOCK_READ",
        "CATALOG_READ",
    ],
}


def permissions_for_role(role: str) -> frozenset:
    """Permission codes of a role; unknown roles get none."""
    return frozenset(DEFAULT_ROLE_PERMISSIONS.get((role or "").upper(), ()))


def validate_role(role: str) -> bool:
    return (role or "").upper() in DEFAULT_ROLE_PERMISSIONS

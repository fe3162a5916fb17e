"""
Roles, Collections and Default Column Permissions

WHY: Centralized definitions keep the permission resolver, the seed command
and the tests agreeing on what exists.

DESIGN PRINCIPLES:
- The role set is closed: super_admin, manager, sr_sales, jr_sales
- Column permissions are per (role, column key); absence means no access
- Cost data is restricted to managers and super admins at collection level
- Default mappings follow least privilege: sensitive fields (price, cost
  amounts) require approval for sales roles instead of direct edits
"""

# =============================================================================
# ROLES
# =============================================================================

class Roles:
    SUPER_ADMIN = "super_admin"
    MANAGER = "manager"
    SR_SALES = "sr_sales"
    JR_SALES = "jr_sales"


ALL_ROLES = (Roles.SUPER_ADMIN, Roles.MANAGER, Roles.SR_SALES, Roles.JR_SALES)

# Roles allowed to approve/reject pending changes
REVIEWER_ROLES = frozenset({Roles.MANAGER, Roles.SUPER_ADMIN})

# Roles allowed to touch the costs collection at all
COST_ROLES = frozenset({Roles.MANAGER, Roles.SUPER_ADMIN})

# Roles allowed to soft-delete and recover records, and to see deleted rows
RECOVERY_ROLES = frozenset({Roles.MANAGER, Roles.SUPER_ADMIN})


# =============================================================================
# COLLECTIONS
# =============================================================================

ORDERS = "orders"
COSTS = "costs"
RECORD_COLLECTIONS = (ORDERS, COSTS)

# Audit targets beyond the record collections
PENDING_CHANGES = "pending_changes"
COLUMN_DEFINITIONS = "column_definitions"
ROLE_PERMISSIONS = "role_permissions"
USERS = "users"


# =============================================================================
# RECORD AND COLUMN VOCABULARY
# =============================================================================

RECORD_STATUSES = ("active", "completed", "cancelled")
COLUMN_TYPES = ("text", "number", "date", "select")

# Built-in columns backed by real record attributes, never stored in dynamic_fields
SYSTEM_COLUMNS = ("id", "month", "status")


# Each column is defined as: (key, label, type, order, options, system_field, is_data_related)
DEFAULT_COLUMN_DEFINITIONS = [
    ("id", "ID", "number", 0, [], True, False),
    ("month", "Month", "text", 1, [], True, False),
    ("status", "Status", "select", 2, list(RECORD_STATUSES), True, False),
    ("customer", "Customer", "text", 10, [], False, True),
    ("product", "Product", "text", 20, [], False, True),
    ("quantity", "Quantity", "number", 30, [], False, True),
    ("price", "Price", "number", 40, [], False, True),
    ("delivery_date", "Delivery Date", "date", 50, [], False, True),
    ("payment_status", "Payment", "select", 60, ["unpaid", "partial", "paid"], False, True),
    ("notes", "Notes", "text", 70, [], False, False),
]


def _perm(visible=False, editable=False, requires_approval=False) -> dict:
    return {
        "visible": visible,
        "editable": editable,
        "requires_approval": requires_approval,
    }


_FULL = _perm(visible=True, editable=True)
_READ = _perm(visible=True)
_APPROVAL = _perm(visible=True, requires_approval=True)

_ALL_KEYS = [definition[0] for definition in DEFAULT_COLUMN_DEFINITIONS]


DEFAULT_ROLE_PERMISSIONS = {
    # Super admin and manager edit everything directly
    Roles.SUPER_ADMIN: {key: dict(_FULL) for key in _ALL_KEYS},
    Roles.MANAGER: {key: dict(_FULL) for key in _ALL_KEYS},
    Roles.SR_SALES: {
        "id": dict(_READ),
        "month": dict(_READ),
        "status": dict(_READ),
        "customer": dict(_FULL),
        "product": dict(_FULL),
        "quantity": dict(_FULL),
        "price": dict(_APPROVAL),
        "delivery_date": dict(_FULL),
        "payment_status": dict(_APPROVAL),
        "notes": dict(_FULL),
    },
    Roles.JR_SALES: {
        "id": dict(_READ),
        "month": dict(_READ),
        "status": dict(_READ),
        "customer": dict(_FULL),
        "product": dict(_READ),
        "quantity": dict(_APPROVAL),
        "delivery_date": dict(_FULL),
        "notes": dict(_FULL),
        # price and payment_status are invisible to junior sales
    },
}

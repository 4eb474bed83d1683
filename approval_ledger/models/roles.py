"""
Role Hierarchy

Roles form a strict total order. Every "can do X" check is a single
level comparison against a pinned role, so a higher role always has
every capability of a lower one.

DESIGN DECISION: The one exception is expense submission. Holders sit
above employees (they approve) but do not submit, so submission is a
membership test rather than a level test.

Navigation tabs follow the same rule: each tab is gated at a level, and
the debug tab is shown to the developer role only.
"""

from enum import Enum
from typing import Optional, Union


class Role(str, Enum):
    """User roles, lowest to highest."""
    EMPLOYEE = "employee"
    HOLDER = "holder"
    ACCOUNTANT = "accountant"
    MANAGER = "manager"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    DEVELOPER = "developer"


ROLE_LEVELS: dict[Role, int] = {
    Role.EMPLOYEE: 1,
    Role.HOLDER: 2,
    Role.ACCOUNTANT: 3,
    Role.MANAGER: 4,
    Role.ADMIN: 5,
    Role.SUPER_ADMIN: 6,
    Role.DEVELOPER: 7,
}

ROLE_DISPLAY_NAMES: dict[Role, str] = {
    Role.EMPLOYEE: "Employee",
    Role.HOLDER: "Holder",
    Role.ACCOUNTANT: "Accountant",
    Role.MANAGER: "Manager",
    Role.ADMIN: "Admin",
    Role.SUPER_ADMIN: "Super Admin",
    Role.DEVELOPER: "Developer",
}

# Holder approves but never submits
SUBMITTER_ROLES = frozenset({
    Role.EMPLOYEE,
    Role.ACCOUNTANT,
    Role.MANAGER,
    Role.ADMIN,
    Role.SUPER_ADMIN,
    Role.DEVELOPER,
})

RoleLike = Union[Role, str, None]


def _coerce(role: RoleLike) -> Optional[Role]:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def level_of(role: RoleLike) -> int:
    """Hierarchy level for a role; 0 for anything unrecognized."""
    coerced = _coerce(role)
    if coerced is None:
        return 0
    return ROLE_LEVELS[coerced]


def has_permission(role: RoleLike, required_level: int) -> bool:
    return level_of(role) >= required_level


def is_valid_role(role: RoleLike) -> bool:
    return _coerce(role) is not None


def role_display_name(role: RoleLike) -> str:
    coerced = _coerce(role)
    if coerced is None:
        return str(role)
    return ROLE_DISPLAY_NAMES[coerced]


# =============================================================================
# CAPABILITY PREDICATES
# =============================================================================

def can_submit_expenses(role: RoleLike) -> bool:
    return _coerce(role) in SUBMITTER_ROLES


def can_approve(role: RoleLike) -> bool:
    return has_permission(role, ROLE_LEVELS[Role.HOLDER])


def can_view_all_expenses(role: RoleLike) -> bool:
    return has_permission(role, ROLE_LEVELS[Role.HOLDER])


def can_generate_reports(role: RoleLike) -> bool:
    return has_permission(role, ROLE_LEVELS[Role.ACCOUNTANT])


def can_manage_team(role: RoleLike) -> bool:
    return has_permission(role, ROLE_LEVELS[Role.MANAGER])


def can_manage_accounts(role: RoleLike) -> bool:
    return has_permission(role, ROLE_LEVELS[Role.ADMIN])


def can_manage_categories(role: RoleLike) -> bool:
    return has_permission(role, ROLE_LEVELS[Role.ADMIN])


def can_manage_budgets(role: RoleLike) -> bool:
    return has_permission(role, ROLE_LEVELS[Role.ADMIN])


def can_access_settings(role: RoleLike) -> bool:
    return has_permission(role, ROLE_LEVELS[Role.ADMIN])


def is_developer(role: RoleLike) -> bool:
    return _coerce(role) == Role.DEVELOPER


# =============================================================================
# NAVIGATION
# =============================================================================

class Tab(str, Enum):
    """Navigation tabs."""
    DASHBOARD = "dashboard"
    TRANSACTIONS = "transactions"
    APPROVALS = "approvals"
    REPORTS = "reports"
    AUDIT = "audit"
    ACCOUNTS = "accounts"
    CATEGORIES = "categories"
    BUDGETS = "budgets"
    SETTINGS = "settings"
    TEAM = "team"
    DEBUG = "debug"


# (minimum level, tabs unlocked at that level), in display order
TAB_GATES: list[tuple[int, tuple[Tab, ...]]] = [
    (0, (Tab.DASHBOARD,)),
    (ROLE_LEVELS[Role.EMPLOYEE], (Tab.TRANSACTIONS,)),
    (ROLE_LEVELS[Role.HOLDER], (Tab.APPROVALS,)),
    (ROLE_LEVELS[Role.ACCOUNTANT], (Tab.REPORTS, Tab.AUDIT)),
    (ROLE_LEVELS[Role.MANAGER], (Tab.TEAM,)),
    (ROLE_LEVELS[Role.ADMIN], (Tab.ACCOUNTS, Tab.CATEGORIES, Tab.BUDGETS, Tab.SETTINGS)),
]


def visible_tabs(role: RoleLike) -> list[Tab]:
    """Tabs visible to a role, in display order."""
    level = level_of(role)
    tabs: list[Tab] = []
    for required, gated in TAB_GATES:
        if level >= required:
            tabs.extend(gated)
    if is_developer(role):
        tabs.append(Tab.DEBUG)
    return tabs


def is_tab_visible(role: RoleLike, tab: Tab) -> bool:
    return tab in visible_tabs(role)

"""
Role-Based Access Control (RBAC) for absencegov.

Maps each role to the set of permission strings it grants.  Permissions
are additive across roles: a user holding MANAGER and EMPLOYEE has the
union of both sets.

**Roles:**

* PLATFORM_ADMIN -- operates the platform across organisations.
* ORG_ADMIN      -- administers one organisation, including settings.
* HR             -- manages employees, cases and referrals.
* MANAGER        -- line manager; views cases, runs return-to-work meetings.
* EMPLOYEE       -- reports own sickness and views own data.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from absencegov.errors import UnauthorizedError
from absencegov.models import Role


# ---------------------------------------------------------------------------
# Permission definitions
# ---------------------------------------------------------------------------

MANAGE_ORGANISATIONS = "manage:organisations"
MANAGE_EMPLOYEES = "manage:employees"
MANAGE_ROLES = "manage:roles"
VIEW_EMPLOYEES = "view:employees"
VIEW_OWN_DATA = "view:own_data"
IMPORT_EMPLOYEES = "import:employees"
VIEW_AUDIT_LOG = "view:audit_log"
SEND_INVITATIONS = "send:invitations"
MANAGE_SETTINGS = "manage:settings"
REPORT_SICKNESS = "report:sickness"
VIEW_SICKNESS_CASES = "view:sickness_cases"
MANAGE_SICKNESS_CASES = "manage:sickness_cases"
VIEW_FIT_NOTES = "view:fit_notes"
UPLOAD_FIT_NOTES = "upload:fit_notes"
SCHEDULE_RTW = "schedule:rtw"
COMPLETE_RTW = "complete:rtw"
VIEW_GUIDANCE = "view:guidance"
VIEW_ABSENCE_CALENDAR = "view:absence_calendar"
MANAGE_TRIGGERS = "manage:triggers"
VIEW_TRIGGERS = "view:triggers"
MANAGE_OH_PROVIDERS = "manage:oh_providers"
VIEW_OH_PROVIDERS = "view:oh_providers"
CREATE_REFERRAL = "create:oh_referral"
VIEW_REFERRALS = "view:oh_referrals"
VIEW_ANALYTICS = "view:analytics"
EXPORT_ANALYTICS = "export:analytics"

_HR_PERMISSIONS = frozenset({
    MANAGE_EMPLOYEES,
    VIEW_EMPLOYEES,
    VIEW_OWN_DATA,
    IMPORT_EMPLOYEES,
    SEND_INVITATIONS,
    REPORT_SICKNESS,
    VIEW_SICKNESS_CASES,
    MANAGE_SICKNESS_CASES,
    VIEW_FIT_NOTES,
    UPLOAD_FIT_NOTES,
    SCHEDULE_RTW,
    COMPLETE_RTW,
    VIEW_GUIDANCE,
    VIEW_ABSENCE_CALENDAR,
    VIEW_TRIGGERS,
    VIEW_OH_PROVIDERS,
    CREATE_REFERRAL,
    VIEW_REFERRALS,
    VIEW_ANALYTICS,
    EXPORT_ANALYTICS,
})

_ORG_ADMIN_PERMISSIONS = _HR_PERMISSIONS | {
    MANAGE_ROLES,
    VIEW_AUDIT_LOG,
    MANAGE_SETTINGS,
    MANAGE_TRIGGERS,
    MANAGE_OH_PROVIDERS,
}

_ROLE_PERMISSIONS: Mapping[Role, frozenset[str]] = MappingProxyType({
    Role.PLATFORM_ADMIN: _ORG_ADMIN_PERMISSIONS | {MANAGE_ORGANISATIONS},
    Role.ORG_ADMIN: _ORG_ADMIN_PERMISSIONS,
    Role.HR: _HR_PERMISSIONS,
    Role.MANAGER: frozenset({
        VIEW_EMPLOYEES,
        VIEW_OWN_DATA,
        REPORT_SICKNESS,
        VIEW_SICKNESS_CASES,
        SCHEDULE_RTW,
        COMPLETE_RTW,
        VIEW_GUIDANCE,
        VIEW_ABSENCE_CALENDAR,
        VIEW_TRIGGERS,
        CREATE_REFERRAL,
        VIEW_REFERRALS,
        VIEW_ANALYTICS,
    }),
    Role.EMPLOYEE: frozenset({
        VIEW_OWN_DATA,
        REPORT_SICKNESS,
        VIEW_SICKNESS_CASES,
        VIEW_FIT_NOTES,
    }),
})

ALL_PERMISSIONS: frozenset[str] = frozenset().union(*_ROLE_PERMISSIONS.values())


def check_permission(roles: Iterable[Role], permission: str) -> bool:
    """Check whether any of the given roles grants a permission.

    Args:
        roles: The actor's roles.
        permission: The permission string (e.g., 'manage:sickness_cases').

    Returns:
        True if at least one role grants the permission, False otherwise.
    """
    return any(permission in _ROLE_PERMISSIONS.get(role, frozenset()) for role in roles)


def require_permission(roles: Iterable[Role], permission: str) -> None:
    """Enforce a permission check; raise if denied.

    Raises:
        UnauthorizedError: If no role grants the permission.
    """
    roles = list(roles)
    if not check_permission(roles, permission):
        held = sorted(r.value for r in roles) or ["<none>"]
        raise UnauthorizedError(
            f"Roles {held} are not permitted to perform '{permission}'."
        )


def get_permissions_for_roles(roles: Iterable[Role]) -> frozenset[str]:
    """Return the union of permissions granted by the given roles."""
    granted: set[str] = set()
    for role in roles:
        granted |= _ROLE_PERMISSIONS.get(role, frozenset())
    return frozenset(granted)

"""
Role precedence and effective-role resolution.

A user may hold several roles in one organisation.  Where a single
effective role is needed (display, precedence-gated actions) the role with
the highest precedence wins.

The super-admin allow-list is not consulted here.  It is supplied as a
``SuperAdminCheck`` capability at construction time of whatever needs it,
so no identities are embedded in code and tests can swap the list freely.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from absencegov.models import Role, User


SuperAdminCheck = Callable[[User], bool]


class RolePrecedence(BaseModel):
    """Total, injective mapping of roles to precedence levels.

    Higher level means more authority.  Construction fails when a role is
    missing or two roles share a level, so ties can never reach
    ``highest_role``.  Instances are frozen and ``levels`` is read-only.
    """

    model_config = ConfigDict(frozen=True)

    levels: Mapping[Role, int] = Field(
        default_factory=lambda: {
            Role.PLATFORM_ADMIN: 5,
            Role.ORG_ADMIN: 4,
            Role.HR: 3,
            Role.MANAGER: 2,
            Role.EMPLOYEE: 1,
        },
        validate_default=True,
    )

    @field_validator("levels")
    @classmethod
    def total_and_unique(cls, v: Mapping[Role, int]) -> Mapping[Role, int]:
        missing = set(Role) - set(v)
        if missing:
            raise ValueError(
                f"role precedence must cover every role; missing {sorted(r.value for r in missing)}"
            )
        if len(set(v.values())) != len(v):
            raise ValueError(f"role precedence levels must be unique, got {dict(v)}")
        return MappingProxyType(dict(v))

    @field_serializer("levels")
    def _dump_levels(self, v: Mapping[Role, int]) -> dict[Role, int]:
        return dict(v)

    def level(self, role: Role) -> int:
        return self.levels[role]


DEFAULT_PRECEDENCE = RolePrecedence()


def highest_role(
    roles: Iterable[Role],
    precedence: RolePrecedence = DEFAULT_PRECEDENCE,
) -> Optional[Role]:
    """Return the role with the highest precedence, or ``None`` if empty.

    Args:
        roles: The roles held by a user.  Order and duplicates are irrelevant.
        precedence: The precedence table to compare against.

    Returns:
        The most authoritative role, or ``None`` when ``roles`` is empty.
    """
    roles = set(roles)
    if not roles:
        return None
    return max(roles, key=precedence.level)


def allow_list_check(emails: Iterable[str]) -> SuperAdminCheck:
    """Build a super-admin capability check from an email allow-list.

    Emails are compared case-insensitively and with surrounding whitespace
    stripped.
    """
    allowed = frozenset(e.strip().lower() for e in emails if e.strip())

    def is_super_admin(user: User) -> bool:
        return user.email.strip().lower() in allowed

    return is_super_admin


def no_super_admins(user: User) -> bool:
    """Capability check that grants nobody super-admin authority."""
    return False


def has_authority(
    user: User,
    minimum_role: Role,
    precedence: RolePrecedence = DEFAULT_PRECEDENCE,
    is_super_admin: SuperAdminCheck = no_super_admins,
) -> bool:
    """Whether the user's effective authority reaches ``minimum_role``.

    The super-admin check runs first; when it passes, assigned roles are
    not consulted at all.
    """
    if is_super_admin(user):
        return True
    effective = highest_role(user.roles, precedence)
    if effective is None:
        return False
    return precedence.level(effective) >= precedence.level(minimum_role)

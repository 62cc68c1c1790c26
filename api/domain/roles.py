# SPDX-License-Identifier: Apache-2.0

"""
Role graph domain logic.

Roles carry a numeric level where a lower number means more privilege.
A user may only hand out roles strictly below their own effective level.
Roles may inherit the permissions of less privileged roles; the inheritance
edges form a directed acyclic graph.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from models.entities import Role, UserRoleBinding
from models.enums import RoleKind, RoleCategory
from domain.catalog import PermissionCatalog
from domain.errors import ConstraintViolation, IntegrityError


# Fields an administrator may change on a modifiable role
MODIFIABLE_ROLE_FIELDS = {
    "display_name", "description", "level", "category", "permission_ids",
    "max_assignable_users", "is_active", "inherits_from",
}

_REVIEWER_PERMISSIONS = [
    "applications.read", "applications.review", "applications.verify",
    "applications.schedule_interview", "interview.reschedule",
]

_DECISION_PERMISSIONS = _REVIEWER_PERMISSIONS + [
    "applications.approve", "applications.reject", "applications.hold",
    "applications.return", "applications.disburse", "applications.complete",
]

# name, display name, level, category, permission names (None means every permission)
SYSTEM_ROLES = [
    ("super_admin", "Super Administrator", 0, RoleCategory.ADMINISTRATIVE, None),
    ("state_admin", "State Administrator", 1, RoleCategory.ADMINISTRATIVE,
     _DECISION_PERMISSIONS + ["applications.read_all", "roles.read", "roles.assign",
                              "users.read", "schemes.manage"]),
    ("district_admin", "District Administrator", 2, RoleCategory.ADMINISTRATIVE,
     _DECISION_PERMISSIONS + ["roles.read", "roles.assign", "users.read"]),
    ("area_admin", "Area Administrator", 3, RoleCategory.ADMINISTRATIVE,
     _REVIEWER_PERMISSIONS + ["applications.hold", "applications.return", "users.read"]),
    ("unit_admin", "Unit Administrator", 4, RoleCategory.OPERATIONAL, _REVIEWER_PERMISSIONS),
    ("scheme_coordinator", "Scheme Coordinator", 5, RoleCategory.OPERATIONAL,
     ["applications.read_all", "applications.disburse", "applications.complete"]),
    ("beneficiary", "Beneficiary", 6, RoleCategory.BENEFICIARY,
     ["applications.create", "applications.read_own", "users.update_own"]),
]


def build_system_roles(catalog: PermissionCatalog) -> List[Role]:
    """
    Build the locked system roles against a catalog.

    Args:
        catalog: Catalog holding the built-in permissions

    Returns:
        List of system roles; ids equal role names
    """
    roles = []
    for name, display_name, level, category, permission_names in SYSTEM_ROLES:
        if permission_names is None:
            permission_ids = {p.id for p in catalog.all()}
        else:
            permission_ids = catalog.ids_for(permission_names)

        roles.append(Role(
            id=name,
            name=name,
            display_name=display_name,
            level=level,
            kind=RoleKind.SYSTEM,
            category=category,
            permission_ids=permission_ids,
            is_deletable=False,
            is_modifiable=False
        ))
    return roles


def validate_role_permissions(role: Role, catalog: PermissionCatalog) -> None:
    """Every permission id on the role must exist in the catalog."""
    unknown = catalog.unknown_ids(role.permission_ids)
    if unknown:
        raise ConstraintViolation(
            "unknown_permission",
            f"Role {role.name} references unknown permissions: {', '.join(unknown)}"
        )


RoleLookup = Callable[[str], Role]


def inherited_permission_ids(role: Role, get_role: RoleLookup) -> Set[str]:
    """
    Permissions a role receives through ``inherits_from``, transitively.

    Inactive roles pass nothing on, not even what they inherit themselves.

    Args:
        role: Role whose ancestors are walked
        get_role: Lookup returning a role by id

    Returns:
        Union of the ancestors' direct permission ids

    Raises:
        IntegrityError: If an inherited role does not exist
    """
    inherited: Set[str] = set()
    seen = {role.id}
    pending = list(role.inherits_from)
    while pending:
        parent_id = pending.pop()
        if parent_id in seen:
            continue
        seen.add(parent_id)
        parent = get_role(parent_id)
        if parent is None:
            raise IntegrityError("role", parent_id)
        if not parent.is_active:
            continue
        inherited |= parent.permission_ids
        pending.extend(parent.inherits_from)
    return inherited


def validate_role_inheritance(role: Role, get_role: RoleLookup) -> None:
    """
    Check the inheritance edges of a new or changed role.

    A role may only inherit from roles at its own level or below it in
    privilege, and following the edges must never lead back to the role.

    Args:
        role: New or updated role
        get_role: Lookup returning a role by id, or None when it does not exist

    Raises:
        ConstraintViolation: ``unknown_role``, ``inherited_role_too_privileged``
            or ``circular_inheritance``
    """
    for parent_id in sorted(role.inherits_from):
        if parent_id == role.id:
            raise ConstraintViolation("circular_inheritance", f"Role {role.name} cannot inherit from itself")
        parent = get_role(parent_id)
        if parent is None:
            raise ConstraintViolation("unknown_role", f"Role {role.name} inherits from unknown role {parent_id}")
        if parent.level < role.level:
            raise ConstraintViolation(
                "inherited_role_too_privileged",
                f"Role {role.name} (level {role.level}) cannot inherit from {parent.name} (level {parent.level})"
            )

    seen = set()
    pending = list(role.inherits_from)
    while pending:
        current_id = pending.pop()
        if current_id == role.id:
            raise ConstraintViolation("circular_inheritance", f"Inheritance of role {role.name} forms a cycle")
        if current_id in seen:
            continue
        seen.add(current_id)
        current = get_role(current_id)
        if current is not None:
            pending.extend(current.inherits_from)


def can_grant_role(granter_level: Optional[int], role: Role) -> bool:
    """
    Check the no-escalation rule.

    Args:
        granter_level: Effective level of the granting user, None if they hold no role
        role: Role being granted or created

    Returns:
        True if the role's level is strictly greater than the granter's
    """
    return granter_level is not None and role.level > granter_level


def effective_level(
    bindings: Iterable[UserRoleBinding],
    roles: Mapping[str, Role],
    now: datetime
) -> Optional[int]:
    """
    Most privileged (lowest) role level across the active bindings.

    Raises:
        IntegrityError: If a binding references an unknown role
    """
    levels = []
    for binding in bindings:
        if not binding.is_active_at(now):
            continue
        role = roles.get(binding.role_id)
        if role is None:
            raise IntegrityError("role", binding.role_id)
        levels.append(role.level)
    return min(levels) if levels else None


def has_reached_user_limit(role: Role, active_holders: int) -> bool:
    return role.max_assignable_users is not None and active_holders >= role.max_assignable_users


def create_custom_role(
    name: str,
    display_name: str,
    level: int,
    permission_names: Iterable[str],
    catalog: PermissionCatalog,
    created_by: str,
    granter_level: Optional[int],
    description: Optional[str] = None,
    category: RoleCategory = RoleCategory.OPERATIONAL,
    max_assignable_users: Optional[int] = None,
    inherits_from: Iterable[str] = ()
) -> Role:
    """
    Create a custom role below the creator's own level.

    Raises:
        ConstraintViolation: On unknown permissions or a level at or above the creator's
    """
    role = Role(
        name=name,
        display_name=display_name,
        description=description,
        level=level,
        kind=RoleKind.CUSTOM,
        category=category,
        permission_ids=catalog.ids_for(permission_names),
        max_assignable_users=max_assignable_users,
        inherits_from=set(inherits_from),
        created_by=created_by,
        updated_by=created_by
    )
    if not can_grant_role(granter_level, role):
        raise ConstraintViolation(
            "role_level_too_high",
            f"Cannot create a role at level {level} from level {granter_level}"
        )
    return role


def update_role(
    role: Role,
    changes: Dict[str, Any],
    updated_by: str,
    granter_level: Optional[int],
    catalog: PermissionCatalog
) -> Role:
    """
    Apply changes to a modifiable role and return the updated copy.

    Raises:
        ConstraintViolation: If the role is locked, a field is not editable,
            the level would escalate, or a permission is unknown
    """
    if not role.is_modifiable or role.is_system_role():
        raise ConstraintViolation("role_not_modifiable", f"Role {role.name} cannot be modified")

    if not can_grant_role(granter_level, role):
        raise ConstraintViolation(
            "role_level_too_high",
            f"Role {role.name} is not below the editor's level"
        )

    invalid = set(changes) - MODIFIABLE_ROLE_FIELDS
    if invalid:
        raise ConstraintViolation(
            "invalid_role_update",
            f"Fields cannot be changed: {', '.join(sorted(invalid))}"
        )

    data = role.model_dump()
    data.update(changes)
    updated = Role.model_validate(data)
    if not can_grant_role(granter_level, updated):
        raise ConstraintViolation(
            "role_level_too_high",
            f"Cannot raise role {role.name} to level {updated.level}"
        )
    validate_role_permissions(updated, catalog)
    updated.update_timestamp(updated_by)
    return updated


def ensure_role_deletable(role: Role, active_holders: int, inheriting_roles: Iterable[str] = ()) -> None:
    """
    Check that a role can be deleted.

    Args:
        role: Role to delete
        active_holders: Users holding the role now or from a later start date
        inheriting_roles: Names of roles that list this role in ``inherits_from``

    Raises:
        ConstraintViolation: For locked roles, roles still assigned to someone
            or roles other roles inherit from
    """
    if role.is_system_role() or not role.is_deletable:
        raise ConstraintViolation("role_not_deletable", f"Role {role.name} cannot be deleted")
    if active_holders > 0:
        raise ConstraintViolation(
            "role_in_use",
            f"Role {role.name} is still assigned to {active_holders} users"
        )
    dependents = sorted(inheriting_roles)
    if dependents:
        raise ConstraintViolation(
            "role_inherited",
            f"Role {role.name} is inherited by: {', '.join(dependents)}"
        )

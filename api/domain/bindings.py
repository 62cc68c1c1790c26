# SPDX-License-Identifier: Apache-2.0

"""
User-role binding domain logic.

Bindings are never hard-deleted. Revocation and expiry flip ``is_active``
and keep the record for the audit trail. All functions return updated
copies and leave their inputs untouched.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from models.base import utcnow
from models.entities import Role, UserRoleBinding
from domain.errors import ConstraintViolation
from domain.roles import can_grant_role, has_reached_user_limit


def is_binding_active(binding: UserRoleBinding, now: datetime) -> bool:
    """Check whether a binding contributes permissions at ``now``."""
    return binding.is_active_at(now)


def binding_permission_ids(binding: UserRoleBinding, role: Role,
                           inherited_ids: Iterable[str] = ()) -> Set[str]:
    """
    Compute the permission set a binding contributes.

    Args:
        binding: The user's binding
        role: Role referenced by the binding
        inherited_ids: Permissions the role inherits from other roles

    Returns:
        (role permissions | inherited | granted) - restricted; empty for an inactive role
    """
    if not role.is_active:
        return set()
    granted = set(role.permission_ids) | set(inherited_ids) | binding.granted_permission_ids
    return granted - binding.restricted_permission_ids


def create_binding(
    user_id: str,
    role: Role,
    assigned_by: str,
    granter_level: Optional[int],
    existing_bindings: Iterable[UserRoleBinding],
    active_holders: int,
    scope_region_id: Optional[str] = None,
    is_primary: bool = False,
    valid_from: Optional[datetime] = None,
    valid_until: Optional[datetime] = None,
    is_temporary: bool = False,
    assignment_reason: Optional[str] = None,
    now: Optional[datetime] = None
) -> Tuple[UserRoleBinding, List[UserRoleBinding]]:
    """
    Assign a role to a user.

    Args:
        user_id: User receiving the role
        role: Role being assigned
        assigned_by: User making the assignment
        granter_level: Effective level of ``assigned_by``
        existing_bindings: Current bindings of ``user_id``
        active_holders: Number of users actively holding ``role``
        scope_region_id: Region the binding is restricted to, None for unscoped
        is_primary: Make this the user's primary binding
        valid_from: Start of validity window, defaults to now
        valid_until: End of validity window
        is_temporary: Mark as a temporary assignment
        assignment_reason: Free-text reason
        now: Evaluation time

    Returns:
        Tuple of (new binding, previously primary bindings now demoted)

    Raises:
        ConstraintViolation: On escalation, user limit, inactive role or duplicate assignment
    """
    now = now or utcnow()
    existing = list(existing_bindings)
    current = [b for b in existing if b.is_active_at(now)]

    if not role.is_active:
        raise ConstraintViolation("role_inactive", f"Role {role.name} is not active")

    if not can_grant_role(granter_level, role):
        raise ConstraintViolation(
            "role_level_too_high",
            f"Cannot assign role {role.name} (level {role.level}) from level {granter_level}"
        )

    if has_reached_user_limit(role, active_holders):
        raise ConstraintViolation(
            "role_user_limit_reached",
            f"Role {role.name} already has {active_holders} of {role.max_assignable_users} holders"
        )

    duplicate = any(
        b.role_id == role.id and b.scope_region_id == scope_region_id
        for b in current
    )
    if duplicate:
        raise ConstraintViolation(
            "duplicate_assignment",
            f"User {user_id} already holds role {role.name} for this scope"
        )

    # First active binding of a user becomes primary
    make_primary = is_primary or not current

    binding = UserRoleBinding(
        user_id=user_id,
        role_id=role.id,
        scope_region_id=scope_region_id,
        is_primary=make_primary,
        is_temporary=is_temporary,
        valid_from=valid_from or now,
        valid_until=valid_until,
        assigned_by=assigned_by,
        assignment_reason=assignment_reason,
        created_by=assigned_by,
        updated_by=assigned_by
    )

    demoted = demote_primary(existing, assigned_by, now) if make_primary else []
    return binding, demoted


def demote_primary(bindings: Iterable[UserRoleBinding], updated_by: str, now: datetime) -> List[UserRoleBinding]:
    """Copies of the currently primary bindings with the flag cleared."""
    return [
        b.model_copy(update={"is_primary": False, "updated_at": now, "updated_by": updated_by})
        for b in bindings
        if b.is_primary and b.is_active
    ]


def revoke_binding(
    binding: UserRoleBinding,
    revoked_by: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None
) -> UserRoleBinding:
    """
    Soft-deactivate a binding.

    Raises:
        ConstraintViolation: If the binding was already revoked
    """
    if not binding.is_active or binding.revoked_at is not None:
        raise ConstraintViolation("binding_already_revoked", f"Binding {binding.id} is already revoked")

    now = now or utcnow()
    return binding.model_copy(update={
        "is_active": False,
        "is_primary": False,
        "revoked_at": now,
        "revoked_by": revoked_by,
        "revocation_reason": reason,
        "updated_at": now,
        "updated_by": revoked_by
    })


def grant_permission(binding: UserRoleBinding, permission_id: str, updated_by: str,
                     now: Optional[datetime] = None) -> UserRoleBinding:
    """Add a per-binding grant, lifting any restriction on the same permission."""
    now = now or utcnow()
    return binding.model_copy(update={
        "granted_permission_ids": binding.granted_permission_ids | {permission_id},
        "restricted_permission_ids": binding.restricted_permission_ids - {permission_id},
        "updated_at": now,
        "updated_by": updated_by
    })


def restrict_permission(binding: UserRoleBinding, permission_id: str, updated_by: str,
                        now: Optional[datetime] = None) -> UserRoleBinding:
    """Withhold a permission on one binding, dropping any grant of it."""
    now = now or utcnow()
    return binding.model_copy(update={
        "restricted_permission_ids": binding.restricted_permission_ids | {permission_id},
        "granted_permission_ids": binding.granted_permission_ids - {permission_id},
        "updated_at": now,
        "updated_by": updated_by
    })


def expire_bindings(bindings: Iterable[UserRoleBinding], now: datetime,
                    revoked_by: str = "system") -> List[UserRoleBinding]:
    """Revoked copies of every still-flagged binding whose window has closed."""
    return [
        revoke_binding(b, revoked_by, "expired", now)
        for b in bindings
        if b.is_active and b.revoked_at is None and b.is_expired(now)
    ]

# SPDX-License-Identifier: Apache-2.0

"""
Authorization domain logic for scope-aware role-based access control.

The resolver combines a user's active bindings, the roles they reference and
the per-binding overrides into one permission set, then checks the requested
permission's scope class against the resolution context. Permissions are a
union across bindings: any binding that covers the context wins.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from models.base import utcnow
from models.entities import Permission, ResolutionContext, UserRoleBinding
from models.enums import DenialReason, ScopeClass
from domain.bindings import binding_permission_ids
from domain.catalog import PermissionCatalog
from domain.errors import IntegrityError
from domain.regions import is_same_or_descendant
from domain.roles import inherited_permission_ids

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""
    allowed: bool
    reason: Optional[str] = None
    permission: Optional[str] = None
    matched_binding_id: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def allow(cls, permission: str, binding_id: Optional[str] = None) -> "AuthorizationResult":
        return cls(allowed=True, permission=permission, matched_binding_id=binding_id)

    @classmethod
    def deny(cls, reason: DenialReason, permission: str, detail: Optional[str] = None) -> "AuthorizationResult":
        return cls(allowed=False, reason=DenialReason(reason).value, permission=permission, detail=detail)


class BindingSnapshot:
    """A user's active bindings and their permission sets, read once."""

    def __init__(self, user_id: str, entries: List[Tuple[UserRoleBinding, Set[str]]]):
        self.user_id = user_id
        self.entries = entries

    def carriers(self, permission_id: str) -> List[UserRoleBinding]:
        """Bindings whose effective set contains the permission."""
        return [binding for binding, permission_ids in self.entries if permission_id in permission_ids]

    def permission_ids(self) -> Set[str]:
        result: Set[str] = set()
        for _, permission_ids in self.entries:
            result |= permission_ids
        return result


class PermissionResolver:
    """
    Decides whether a user may use a permission in a given context.

    The store must provide ``get_active_bindings(user_id, now)``,
    ``get_role(role_id)`` and ``get_region_ancestors(region_id)``. Missing
    users, roles or regions surface as IntegrityError; a missing permission
    is a normal denied result.
    """

    def __init__(self, store, catalog: PermissionCatalog):
        self.store = store
        self.catalog = catalog

    def snapshot(self, user_id: str, now: Optional[datetime] = None) -> BindingSnapshot:
        """
        Read the user's bindings once and compute each binding's permission set,
        including what its role inherits.

        Raises:
            IntegrityError: If a binding references a missing role
        """
        now = now or utcnow()
        entries = []
        for binding in self.store.get_active_bindings(user_id, now):
            if not binding.is_active_at(now):
                continue
            role = self.store.get_role(binding.role_id)
            if role is None:
                raise IntegrityError("role", binding.role_id)
            inherited = inherited_permission_ids(role, self.store.get_role) if role.is_active else set()
            entries.append((binding, binding_permission_ids(binding, role, inherited)))
        return BindingSnapshot(user_id, entries)

    def resolve(
        self,
        user_id: str,
        permission_name: str,
        context: Optional[ResolutionContext] = None,
        now: Optional[datetime] = None
    ) -> AuthorizationResult:
        """
        Resolve a single permission for a user.

        Args:
            user_id: Acting user
            permission_name: Permission to check, e.g. ``applications.approve``
            context: Region and resource owner the action targets
            now: Evaluation time, defaults to the current time

        Returns:
            AuthorizationResult, allowed or denied with a reason code
        """
        return self.evaluate(self.snapshot(user_id, now), permission_name, context)

    def resolve_any(
        self,
        user_id: str,
        permission_names: Iterable[str],
        context: Optional[ResolutionContext] = None,
        now: Optional[datetime] = None
    ) -> AuthorizationResult:
        """First allowed result among the names, else the last denial."""
        snapshot = self.snapshot(user_id, now)
        result = None
        for name in permission_names:
            result = self.evaluate(snapshot, name, context)
            if result.allowed:
                return result
        return result or AuthorizationResult.deny(DenialReason.NOT_GRANTED, "")

    def resolve_all(
        self,
        user_id: str,
        permission_names: Iterable[str],
        context: Optional[ResolutionContext] = None,
        now: Optional[datetime] = None
    ) -> AuthorizationResult:
        """Allowed only if every name is allowed; returns the first denial otherwise."""
        snapshot = self.snapshot(user_id, now)
        result = AuthorizationResult(allowed=True)
        for name in permission_names:
            result = self.evaluate(snapshot, name, context)
            if not result.allowed:
                return result
        return result

    def effective_permissions(self, user_id: str, now: Optional[datetime] = None) -> List[str]:
        """Names of every permission the user holds somewhere, ignoring scope."""
        snapshot = self.snapshot(user_id, now)
        names = []
        for permission_id in snapshot.permission_ids():
            permission = self.catalog.get(permission_id)
            if permission is not None and permission.is_active:
                names.append(permission.name)
        return sorted(names)

    def evaluate(
        self,
        snapshot: BindingSnapshot,
        permission_name: str,
        context: Optional[ResolutionContext] = None
    ) -> AuthorizationResult:
        """Check one permission against an already-read snapshot."""
        context = context or ResolutionContext()
        permission = self.catalog.get_by_name(permission_name)
        if permission is None or not permission.is_active:
            return self._denied(snapshot, permission_name, DenialReason.NOT_GRANTED, "unknown or inactive permission")

        carriers = snapshot.carriers(permission.id)
        if not carriers:
            return self._denied(snapshot, permission_name, DenialReason.NOT_GRANTED)

        return self._check_scope(snapshot, permission, carriers, context)

    def _check_scope(
        self,
        snapshot: BindingSnapshot,
        permission: Permission,
        carriers: List[UserRoleBinding],
        context: ResolutionContext
    ) -> AuthorizationResult:
        scope_class = ScopeClass(permission.scope_class)

        if scope_class == ScopeClass.ALL:
            return AuthorizationResult.allow(permission.name, carriers[0].id)

        if scope_class == ScopeClass.OWN:
            if context.resource_owner_id is not None and context.resource_owner_id == snapshot.user_id:
                return AuthorizationResult.allow(permission.name, carriers[0].id)
            return self._denied(snapshot, permission.name, DenialReason.OUT_OF_SCOPE, "resource not owned by user")

        # Regional: an unscoped binding covers every region
        for binding in carriers:
            if binding.scope_region_id is None:
                return AuthorizationResult.allow(permission.name, binding.id)

        if context.region_id is None:
            return self._denied(snapshot, permission.name, DenialReason.OUT_OF_SCOPE, "no region in context")

        ancestor_ids = [region.id for region in self.store.get_region_ancestors(context.region_id)]
        for binding in carriers:
            if is_same_or_descendant(context.region_id, binding.scope_region_id, ancestor_ids):
                return AuthorizationResult.allow(permission.name, binding.id)

        return self._denied(snapshot, permission.name, DenialReason.OUT_OF_SCOPE)

    def _denied(self, snapshot: BindingSnapshot, permission_name: str, reason: DenialReason,
                detail: Optional[str] = None) -> AuthorizationResult:
        logger.debug(
            "Permission denied",
            extra={
                "user_id": snapshot.user_id,
                "permission": permission_name,
                "reason": DenialReason(reason).value,
                "active_bindings": len(snapshot.entries)
            }
        )
        return AuthorizationResult.deny(reason, permission_name, detail)

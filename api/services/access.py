# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Access control administration.

Role assignment, per-binding overrides and custom role management. Every
operation is checked by the permission resolver first; refusals raise
AccessDenied and are written to the audit trail, as are the changes that go
through.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from opentelemetry import trace

from models.base import utcnow
from models.entities import ResolutionContext, Role, UserRoleBinding
from models.enums import DenialReason, RoleCategory
from domain import bindings as binding_rules
from domain import roles as role_rules
from domain.authorization import AuthorizationResult, PermissionResolver
from domain.catalog import PermissionCatalog
from domain.errors import AccessDenied, ConstraintViolation

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system"


class AccessControlService:
    """Administers roles and user-role bindings."""

    def __init__(self, store, resolver: PermissionResolver, catalog: PermissionCatalog, audit_service):
        self.store = store
        self.resolver = resolver
        self.catalog = catalog
        self.audit_service = audit_service

    def _require(self, actor_id: str, permission_name: str, context: ResolutionContext,
                 entity: str, entity_id: str, action: str, now: datetime) -> AuthorizationResult:
        result = self.resolver.resolve(actor_id, permission_name, context, now)
        if not result.allowed:
            self._refuse(actor_id, entity, entity_id, action, result)
        return result

    def _refuse(self, actor_id: str, entity: str, entity_id: str, action: str,
                result: AuthorizationResult) -> None:
        self.audit_service.record_denial(actor_id, entity, entity_id, action, result)
        logger.warning(
            "Access control change denied",
            extra={
                "actor_id": actor_id,
                "entity": entity,
                "entity_id": entity_id,
                "action": action,
                "permission": result.permission,
                "reason": result.reason
            }
        )
        raise AccessDenied(result)

    def _granter_level(self, actor_id: str, now: datetime) -> Optional[int]:
        bindings = self.store.get_active_bindings(actor_id, now)
        roles = {b.role_id: self.store.get_role(b.role_id) for b in bindings}
        return role_rules.effective_level(bindings, roles, now)

    def _rejected(self, action: str, error: ConstraintViolation, **context) -> None:
        logger.warning(
            "Access control change rejected",
            extra={"action": action, "code": error.code, "error": error.message, **context}
        )

    def assign_role(
        self,
        actor_id: str,
        user_id: str,
        role_id: str,
        scope_region_id: Optional[str] = None,
        is_primary: bool = False,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        is_temporary: bool = False,
        assignment_reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> UserRoleBinding:
        """
        Bind a role to a user, optionally restricted to a region.

        Args:
            actor_id: User making the assignment
            user_id: User receiving the role
            role_id: Role to assign
            scope_region_id: Region the binding covers, None for every region
            is_primary: Make this the user's primary binding
            valid_from: Start of the validity window
            valid_until: End of the validity window
            is_temporary: Mark as a temporary assignment
            assignment_reason: Free-text reason
            now: Evaluation time

        Returns:
            The stored binding

        Raises:
            AccessDenied: If the actor lacks ``roles.assign`` over the scope region
            ConstraintViolation: On escalation, user limit, inactive role or duplicate
            IntegrityError: If the user, role or region does not exist
        """
        now = now or utcnow()
        with tracer.start_as_current_span("access.assign_role") as span:
            span.set_attributes({
                "access.actor_id": actor_id,
                "access.user_id": user_id,
                "access.role_id": role_id,
                "access.scope_region_id": scope_region_id or ""
            })

            self._require(actor_id, "roles.assign", ResolutionContext(region_id=scope_region_id),
                          "user_role_binding", user_id, "assign_role", now)

            self.store.ensure_user(user_id)
            if scope_region_id is not None:
                self.store.get_region(scope_region_id)
            role = self.store.get_role(role_id)

            try:
                binding, demoted = binding_rules.create_binding(
                    user_id, role, actor_id,
                    granter_level=self._granter_level(actor_id, now),
                    existing_bindings=self.store.get_bindings(user_id),
                    active_holders=self.store.count_active_holders(role_id, now),
                    scope_region_id=scope_region_id,
                    is_primary=is_primary,
                    valid_from=valid_from,
                    valid_until=valid_until,
                    is_temporary=is_temporary,
                    assignment_reason=assignment_reason,
                    now=now
                )
            except ConstraintViolation as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                self._rejected("assign_role", e, user_id=user_id, role_id=role_id)
                raise

            for previous in demoted:
                self.store.save_binding(previous, actor_id)
            self.store.save_binding(binding, actor_id)

            self.audit_service.record_change(
                actor_id, "user_role_binding", binding.id, "assign_role",
                after={
                    "user_id": user_id,
                    "role_id": role_id,
                    "scope_region_id": scope_region_id,
                    "is_primary": binding.is_primary,
                    "valid_until": binding.valid_until.isoformat() if binding.valid_until else None
                }
            )

            logger.info(
                "Role assigned",
                extra={
                    "binding_id": binding.id,
                    "user_id": user_id,
                    "role_id": role_id,
                    "scope_region_id": scope_region_id,
                    "assigned_by": actor_id,
                    "demoted": len(demoted)
                }
            )
            return binding

    def revoke_role(self, actor_id: str, binding_id: str, reason: Optional[str] = None,
                    now: Optional[datetime] = None) -> UserRoleBinding:
        """
        Revoke a binding. The record is kept with its revocation details.

        Raises:
            AccessDenied: If the actor lacks ``roles.assign`` over the binding's region
            ConstraintViolation: If the binding is already revoked or outranks the actor
        """
        now = now or utcnow()
        binding = self.store.get_binding(binding_id)
        self._require(actor_id, "roles.assign", ResolutionContext(region_id=binding.scope_region_id),
                      "user_role_binding", binding_id, "revoke_role", now)

        role = self.store.get_role(binding.role_id)
        try:
            if not role_rules.can_grant_role(self._granter_level(actor_id, now), role):
                raise ConstraintViolation(
                    "role_level_too_high",
                    f"Cannot revoke role {role.name} (level {role.level})"
                )
            revoked = binding_rules.revoke_binding(binding, actor_id, reason, now)
        except ConstraintViolation as e:
            self._rejected("revoke_role", e, binding_id=binding_id)
            raise

        self.store.save_binding(revoked, actor_id)
        self.audit_service.record_change(
            actor_id, "user_role_binding", binding_id, "revoke_role",
            before={"is_active": True},
            after={"is_active": False, "revocation_reason": reason}
        )
        logger.info(
            "Role revoked",
            extra={"binding_id": binding_id, "user_id": binding.user_id, "revoked_by": actor_id}
        )
        return revoked

    def grant_permission(self, actor_id: str, binding_id: str, permission_name: str,
                         now: Optional[datetime] = None) -> UserRoleBinding:
        """Add an extra permission to one binding."""
        return self._override(actor_id, binding_id, permission_name, "grant_permission",
                              binding_rules.grant_permission, now)

    def restrict_permission(self, actor_id: str, binding_id: str, permission_name: str,
                            now: Optional[datetime] = None) -> UserRoleBinding:
        """Withhold a permission on one binding."""
        return self._override(actor_id, binding_id, permission_name, "restrict_permission",
                              binding_rules.restrict_permission, now)

    def _override(self, actor_id: str, binding_id: str, permission_name: str, action: str,
                  apply, now: Optional[datetime]) -> UserRoleBinding:
        now = now or utcnow()
        binding = self.store.get_binding(binding_id)
        self._require(actor_id, "roles.assign", ResolutionContext(region_id=binding.scope_region_id),
                      "user_role_binding", binding_id, action, now)

        try:
            permission_ids = self.catalog.ids_for([permission_name])
            role = self.store.get_role(binding.role_id)
            if not role_rules.can_grant_role(self._granter_level(actor_id, now), role):
                raise ConstraintViolation(
                    "role_level_too_high",
                    f"Cannot change bindings of role {role.name} (level {role.level})"
                )
        except ConstraintViolation as e:
            self._rejected(action, e, binding_id=binding_id, permission=permission_name)
            raise

        # Nobody hands out a permission they do not hold themselves
        if permission_name not in self.resolver.effective_permissions(actor_id, now):
            self._refuse(actor_id, "user_role_binding", binding_id, action, AuthorizationResult.deny(
                DenialReason.NOT_GRANTED, permission_name, "actor does not hold the permission"
            ))

        updated = apply(binding, next(iter(permission_ids)), actor_id, now)
        self.store.save_binding(updated, actor_id)
        self.audit_service.record_change(
            actor_id, "user_role_binding", binding_id, action,
            before={
                "granted": sorted(binding.granted_permission_ids),
                "restricted": sorted(binding.restricted_permission_ids)
            },
            after={
                "granted": sorted(updated.granted_permission_ids),
                "restricted": sorted(updated.restricted_permission_ids)
            }
        )
        return updated

    def create_custom_role(
        self,
        actor_id: str,
        name: str,
        display_name: str,
        level: int,
        permission_names: Iterable[str],
        description: Optional[str] = None,
        category: RoleCategory = RoleCategory.OPERATIONAL,
        max_assignable_users: Optional[int] = None,
        inherits_from: Iterable[str] = (),
        now: Optional[datetime] = None
    ) -> Role:
        """
        Create a custom role below the actor's own level.

        Raises:
            AccessDenied: If the actor lacks ``roles.create``
            ConstraintViolation: On unknown permissions or roles, escalation
                or an inheritance cycle
        """
        now = now or utcnow()
        with tracer.start_as_current_span("access.create_custom_role") as span:
            span.set_attributes({"access.actor_id": actor_id, "role.name": name, "role.level": level})
            self._require(actor_id, "roles.create", ResolutionContext(), "role", name, "create_role", now)

            try:
                role = role_rules.create_custom_role(
                    name, display_name, level, permission_names, self.catalog,
                    created_by=actor_id,
                    granter_level=self._granter_level(actor_id, now),
                    description=description,
                    category=category,
                    max_assignable_users=max_assignable_users,
                    inherits_from=inherits_from
                )
                role_rules.validate_role_inheritance(role, self.store.find_role)
            except ConstraintViolation as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                self._rejected("create_role", e, role_name=name)
                raise

            if any(existing.name == role.name for existing in self.store.list_roles()):
                error = ConstraintViolation("duplicate_role", f"Role {name} already exists")
                self._rejected("create_role", error, role_name=name)
                raise error

            self.store.save_role(role, actor_id)
            self.audit_service.record_change(
                actor_id, "role", role.id, "create_role",
                after={
                    "name": role.name,
                    "level": role.level,
                    "permissions": sorted(role.permission_ids),
                    "inherits_from": sorted(role.inherits_from)
                }
            )
            logger.info("Custom role created", extra={"role_id": role.id, "role_name": name, "level": level})
            return role

    def update_role(self, actor_id: str, role_id: str, changes: Dict[str, Any],
                    now: Optional[datetime] = None) -> Role:
        """
        Change the editable fields of a custom role.

        Raises:
            AccessDenied: If the actor lacks ``roles.update``
            ConstraintViolation: If the role is locked or the change is invalid
        """
        now = now or utcnow()
        self._require(actor_id, "roles.update", ResolutionContext(), "role", role_id, "update_role", now)
        role = self.store.get_role(role_id)

        try:
            updated = role_rules.update_role(role, changes, actor_id, self._granter_level(actor_id, now), self.catalog)
            role_rules.validate_role_inheritance(updated, self.store.find_role)
        except ConstraintViolation as e:
            self._rejected("update_role", e, role_id=role_id)
            raise

        self.store.save_role(updated, actor_id)
        self.audit_service.record_change(
            actor_id, "role", role_id, "update_role",
            before={field: _plain(getattr(role, field)) for field in changes},
            after={field: _plain(getattr(updated, field)) for field in changes}
        )
        return updated

    def delete_role(self, actor_id: str, role_id: str, now: Optional[datetime] = None) -> Role:
        """
        Soft-delete a custom role nobody holds any more.

        Raises:
            AccessDenied: If the actor lacks ``roles.delete``
            ConstraintViolation: If the role is locked or something still depends on it
        """
        now = now or utcnow()
        self._require(actor_id, "roles.delete", ResolutionContext(), "role", role_id, "delete_role", now)
        role = self.store.get_role(role_id)

        try:
            dependents = [r.name for r in self.store.list_roles() if role_id in r.inherits_from]
            role_rules.ensure_role_deletable(role, self.store.count_active_holders(role_id, now), dependents)
        except ConstraintViolation as e:
            self._rejected("delete_role", e, role_id=role_id)
            raise

        role.soft_delete(actor_id)
        self.store.save_role(role, actor_id)
        self.audit_service.record_change(actor_id, "role", role_id, "delete_role",
                                         before={"name": role.name}, after=None)
        logger.info("Role deleted", extra={"role_id": role_id, "deleted_by": actor_id})
        return role

    def cleanup_expired_bindings(self, now: Optional[datetime] = None,
                                 actor_id: str = SYSTEM_ACTOR) -> List[UserRoleBinding]:
        """
        Revoke every binding whose validity window has closed.

        Returns:
            The revoked bindings
        """
        now = now or utcnow()
        with tracer.start_as_current_span("access.cleanup_expired_bindings") as span:
            expired = binding_rules.expire_bindings(self.store.list_flagged_bindings(), now, actor_id)
            for binding in expired:
                self.store.save_binding(binding, actor_id)
                self.audit_service.record_change(
                    actor_id, "user_role_binding", binding.id, "expire_binding",
                    before={"is_active": True},
                    after={"is_active": False, "revocation_reason": binding.revocation_reason}
                )

            span.set_attribute("access.expired_bindings", len(expired))
            if expired:
                logger.info("Expired role bindings revoked", extra={"count": len(expired)})
            return expired

    def ensure_system_roles(self, actor_id: str = SYSTEM_ACTOR) -> List[Role]:
        """Store any built-in role that is missing. Returns the roles created."""
        created = []
        for role in role_rules.build_system_roles(self.catalog):
            if self.store.find_role(role.id) is None:
                self.store.save_role(role, actor_id)
                created.append(role)

        if created:
            logger.info("System roles seeded", extra={"roles": [r.name for r in created]})
        return created


def _plain(value):
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return getattr(value, "value", value)

# SPDX-License-Identifier: Apache-2.0

"""
Permission catalog: the registry of named capabilities.

Also maps workflow target statuses to the permission name that gates them.
"""

from typing import Dict, Iterable, List, Optional, Set

from models.entities import Permission
from models.enums import ApplicationStatus, ScopeClass, SecurityLevel
from domain.errors import ConstraintViolation, InvalidTransition


APPLICATIONS_MODULE = "applications"
RESCHEDULE_PERMISSION = "interview.reschedule"

# Action suffix of the permission that gates entering each status
TRANSITION_ACTIONS = {
    ApplicationStatus.UNDER_REVIEW: "review",
    ApplicationStatus.FIELD_VERIFICATION: "verify",
    ApplicationStatus.INTERVIEW_SCHEDULED: "schedule_interview",
    ApplicationStatus.APPROVED: "approve",
    ApplicationStatus.REJECTED: "reject",
    ApplicationStatus.DISBURSING: "disburse",
    ApplicationStatus.COMPLETED: "complete",
    ApplicationStatus.ON_HOLD: "hold",
    ApplicationStatus.RETURNED: "return",
}

# name, scope class, security level, description
SYSTEM_PERMISSIONS = [
    ("applications.create", ScopeClass.OWN, SecurityLevel.INTERNAL, "Submit an application"),
    ("applications.read_own", ScopeClass.OWN, SecurityLevel.INTERNAL, "View own applications"),
    ("applications.read", ScopeClass.REGIONAL, SecurityLevel.CONFIDENTIAL, "View applications in region"),
    ("applications.read_all", ScopeClass.ALL, SecurityLevel.CONFIDENTIAL, "View every application"),
    ("applications.review", ScopeClass.REGIONAL, SecurityLevel.CONFIDENTIAL, "Move an application under review"),
    ("applications.verify", ScopeClass.REGIONAL, SecurityLevel.CONFIDENTIAL, "Send an application to field verification"),
    ("applications.schedule_interview", ScopeClass.REGIONAL, SecurityLevel.CONFIDENTIAL, "Schedule an interview"),
    ("applications.approve", ScopeClass.REGIONAL, SecurityLevel.RESTRICTED, "Approve an application"),
    ("applications.reject", ScopeClass.REGIONAL, SecurityLevel.RESTRICTED, "Reject an application"),
    ("applications.disburse", ScopeClass.REGIONAL, SecurityLevel.RESTRICTED, "Disburse approved funds"),
    ("applications.complete", ScopeClass.REGIONAL, SecurityLevel.RESTRICTED, "Close a fully disbursed application"),
    ("applications.hold", ScopeClass.REGIONAL, SecurityLevel.CONFIDENTIAL, "Put an application on hold"),
    ("applications.return", ScopeClass.REGIONAL, SecurityLevel.CONFIDENTIAL, "Return an application for changes"),
    ("interview.reschedule", ScopeClass.REGIONAL, SecurityLevel.CONFIDENTIAL, "Reschedule an interview"),
    ("roles.create", ScopeClass.ALL, SecurityLevel.RESTRICTED, "Create custom roles"),
    ("roles.read", ScopeClass.ALL, SecurityLevel.INTERNAL, "View roles"),
    ("roles.update", ScopeClass.ALL, SecurityLevel.RESTRICTED, "Edit custom roles"),
    ("roles.delete", ScopeClass.ALL, SecurityLevel.RESTRICTED, "Delete custom roles"),
    ("roles.assign", ScopeClass.REGIONAL, SecurityLevel.RESTRICTED, "Assign roles to users"),
    ("users.read", ScopeClass.REGIONAL, SecurityLevel.CONFIDENTIAL, "View users in region"),
    ("users.update_own", ScopeClass.OWN, SecurityLevel.INTERNAL, "Edit own profile"),
    ("regions.manage", ScopeClass.ALL, SecurityLevel.RESTRICTED, "Create and delete regions"),
    ("schemes.manage", ScopeClass.ALL, SecurityLevel.RESTRICTED, "Publish scheme configuration"),
]


def transition_permission_name(target_status, module: str = APPLICATIONS_MODULE) -> str:
    """
    Derive the permission name that gates entering ``target_status``.

    Args:
        target_status: Status being entered
        module: Module prefix of the permission

    Returns:
        Permission name such as ``applications.approve``

    Raises:
        InvalidTransition: If no transition can ever enter the status
    """
    status = ApplicationStatus(target_status)
    action = TRANSITION_ACTIONS.get(status)
    if action is None:
        raise InvalidTransition("*", status.value, f"No transition enters {status.value}")
    return f"{module}.{action}"


class PermissionCatalog:
    """Registry of permissions indexed by id and name."""

    def __init__(self, permissions: Iterable[Permission] = ()):
        self._by_id: Dict[str, Permission] = {}
        self._by_name: Dict[str, Permission] = {}
        for permission in permissions:
            self.register(permission)

    def __len__(self) -> int:
        return len(self._by_id)

    def register(self, permission: Permission) -> Permission:
        """Add a permission; ids and names must be unique."""
        if permission.id in self._by_id or permission.name in self._by_name:
            raise ConstraintViolation(
                "duplicate_permission",
                f"Permission already registered: {permission.name}"
            )
        self._by_id[permission.id] = permission
        self._by_name[permission.name] = permission
        return permission

    def get(self, permission_id: str) -> Optional[Permission]:
        return self._by_id.get(permission_id)

    def get_by_name(self, name: str) -> Optional[Permission]:
        return self._by_name.get(name)

    def all(self) -> List[Permission]:
        return sorted(self._by_id.values(), key=lambda p: p.name)

    def by_module(self, module: str) -> List[Permission]:
        return [p for p in self.all() if p.module == module]

    def by_security_level(self, level) -> List[Permission]:
        return [p for p in self.all() if p.security_level == SecurityLevel(level)]

    def ids_for(self, names: Iterable[str]) -> Set[str]:
        """
        Resolve permission names to ids.

        Raises:
            ConstraintViolation: If any name is unknown
        """
        ids = set()
        unknown = []
        for name in names:
            permission = self._by_name.get(name)
            if permission is None:
                unknown.append(name)
            else:
                ids.add(permission.id)
        if unknown:
            raise ConstraintViolation(
                "unknown_permission",
                f"Unknown permissions: {', '.join(sorted(unknown))}"
            )
        return ids

    def unknown_ids(self, permission_ids: Iterable[str]) -> List[str]:
        return sorted(pid for pid in permission_ids if pid not in self._by_id)


def build_default_catalog() -> PermissionCatalog:
    """Catalog holding the built-in permissions. Built-in ids equal their names."""
    catalog = PermissionCatalog()
    for name, scope_class, security_level, description in SYSTEM_PERMISSIONS:
        catalog.register(Permission(
            id=name,
            name=name,
            module=name.split(".", 1)[0],
            scope_class=scope_class,
            security_level=security_level,
            description=description
        ))
    return catalog

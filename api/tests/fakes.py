# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
In-memory collaborators shared by the unit and acceptance suites.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional

from models.base import utcnow
from models.entities import Application, Region, Role, SchemeWorkflowConfig, UserRoleBinding
from models.enums import RegionLevel
from domain.errors import ConcurrencyConflict, IntegrityError
from domain.regions import RegionHierarchy


def kerala_regions() -> List[Region]:
    """Kerala > {Kollam, Ernakulam} > one area each > one unit each."""
    return [
        Region(id="kerala", name="Kerala", code="KL", level=RegionLevel.STATE),
        Region(id="kollam", name="Kollam", code="KLM", level=RegionLevel.DISTRICT, parent_id="kerala"),
        Region(id="ernakulam", name="Ernakulam", code="EKM", level=RegionLevel.DISTRICT, parent_id="kerala"),
        Region(id="kollam-city", name="Kollam City", code="KLM-C", level=RegionLevel.AREA, parent_id="kollam"),
        Region(id="ernakulam-city", name="Ernakulam City", code="EKM-C", level=RegionLevel.AREA,
               parent_id="ernakulam"),
        Region(id="pettah", name="Pettah", code="PTH", level=RegionLevel.UNIT, parent_id="kollam-city"),
        Region(id="edappally", name="Edappally", code="EDP", level=RegionLevel.UNIT, parent_id="ernakulam-city"),
    ]


class InMemoryStore:
    """Dictionary-backed stand-in for MongoWorkflowStore."""

    def __init__(self):
        self.users = set()
        self.regions: Dict[str, Region] = {}
        self.roles: Dict[str, Role] = {}
        self.bindings: Dict[str, UserRoleBinding] = {}
        self.applications: Dict[str, Application] = {}
        self.sequences: Dict[int, int] = {}
        self.save_attempts = 0
        self._lock = threading.Lock()

    def add_user(self, user_id: str) -> None:
        self.users.add(user_id)

    # Users and bindings

    def ensure_user(self, user_id: str) -> None:
        if user_id not in self.users:
            raise IntegrityError("user", user_id)

    def get_bindings(self, user_id: str) -> List[UserRoleBinding]:
        return [b.model_copy(deep=True) for b in self.bindings.values() if b.user_id == user_id]

    def get_active_bindings(self, user_id: str, now: Optional[datetime] = None) -> List[UserRoleBinding]:
        self.ensure_user(user_id)
        now = now or utcnow()
        return [b for b in self.get_bindings(user_id) if b.is_active_at(now)]

    def get_binding(self, binding_id: str) -> UserRoleBinding:
        if binding_id not in self.bindings:
            raise IntegrityError("user_role_binding", binding_id)
        return self.bindings[binding_id].model_copy(deep=True)

    def list_flagged_bindings(self) -> List[UserRoleBinding]:
        return [b.model_copy(deep=True) for b in self.bindings.values() if b.is_active]

    def save_binding(self, binding: UserRoleBinding, user_id: Optional[str] = None) -> None:
        self.bindings[binding.id] = binding.model_copy(deep=True)

    def count_active_holders(self, role_id: str, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return len({
            b.user_id for b in self.bindings.values()
            if b.role_id == role_id and b.is_live(now)
        })

    # Roles

    def get_role(self, role_id: str) -> Role:
        role = self.roles.get(role_id)
        if role is None or role.is_deleted():
            raise IntegrityError("role", role_id)
        return role.model_copy(deep=True)

    def find_role(self, role_id: str) -> Optional[Role]:
        try:
            return self.get_role(role_id)
        except IntegrityError:
            return None

    def list_roles(self) -> List[Role]:
        return [r.model_copy(deep=True) for r in self.roles.values() if not r.is_deleted()]

    def save_role(self, role: Role, user_id: Optional[str] = None) -> None:
        self.roles[role.id] = role.model_copy(deep=True)

    # Regions

    def get_region(self, region_id: str) -> Region:
        region = self.regions.get(region_id)
        if region is None or region.is_deleted():
            raise IntegrityError("region", region_id)
        return region.model_copy(deep=True)

    def get_region_ancestors(self, region_id: str) -> List[Region]:
        return self.load_hierarchy().ancestors(region_id)

    def load_hierarchy(self) -> RegionHierarchy:
        return RegionHierarchy(r.model_copy(deep=True) for r in self.regions.values() if not r.is_deleted())

    def save_region(self, region: Region, user_id: Optional[str] = None) -> None:
        self.regions[region.id] = region.model_copy(deep=True)

    # Applications

    def get_application(self, application_id: str) -> Application:
        if application_id not in self.applications:
            raise IntegrityError("application", application_id)
        return self.applications[application_id].model_copy(deep=True)

    def insert_application(self, application: Application, user_id: Optional[str] = None) -> str:
        self.applications[application.id] = application.model_copy(deep=True)
        return application.id

    def save_application(self, application: Application, expected_version: int,
                         user_id: Optional[str] = None) -> None:
        with self._lock:
            self.save_attempts += 1
            stored = self.applications.get(application.id)
            if stored is None or stored.version != expected_version:
                raise ConcurrencyConflict(application.id, expected_version)
            self.applications[application.id] = application.model_copy(deep=True)

    def next_application_sequence(self, year: int) -> int:
        with self._lock:
            self.sequences[year] = self.sequences.get(year, 0) + 1
            return self.sequences[year]


class InMemorySchemes:
    """Stand-in for SchemeConfigService keyed by scheme id."""

    def __init__(self, *configs: SchemeWorkflowConfig):
        self.configs = {config.scheme_id: config for config in configs}
        self.committed = []
        self.released = []
        self._lock = threading.Lock()

    def get_config(self, scheme_id: str) -> SchemeWorkflowConfig:
        if scheme_id not in self.configs:
            raise IntegrityError("scheme_config", scheme_id)
        return self.configs[scheme_id]

    def get_remaining_budget(self, scheme_id: str) -> int:
        return self.get_config(scheme_id).remaining_budget()

    def requires_interview(self, scheme_id: str) -> bool:
        return self.get_config(scheme_id).requires_interview

    def commit_budget(self, scheme_id: str, amount: int, actor_id: str) -> bool:
        with self._lock:
            config = self.get_config(scheme_id)
            if config.remaining_budget() < amount:
                return False
            config.budget_spent = config.budget_spent + amount
            self.committed.append((scheme_id, amount, actor_id))
            return True

    def release_budget(self, scheme_id: str, amount: int, actor_id: str) -> None:
        with self._lock:
            config = self.get_config(scheme_id)
            config.budget_spent = config.budget_spent - amount
            self.released.append((scheme_id, amount, actor_id))

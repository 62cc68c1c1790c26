# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB-backed persistence for the authorization and workflow domain.

Roles and region ancestor chains are cached in Redis when a RedisService is
available. Missing users, roles and regions raise IntegrityError.
"""

import logging
import os
from datetime import datetime
from typing import List, Optional

from opentelemetry import trace

from models.base import utcnow
from models.entities import Application, Region, Role, UserRoleBinding
from domain.errors import IntegrityError
from domain.regions import RegionHierarchy
from .mongodb import MongoDBService, to_document, from_document
from .redis import RedisService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class MongoWorkflowStore:
    """Persistence lookups consumed by the resolver and workflow services."""

    USERS = "users"
    REGIONS = "regions"
    ROLES = "roles"
    BINDINGS = "user_role_bindings"
    APPLICATIONS = "applications"

    def __init__(self, mongo_service: MongoDBService, redis_service: Optional[RedisService] = None,
                 cache_ttl_seconds: Optional[int] = None):
        self.mongo_service = mongo_service
        self.redis_service = redis_service
        self.cache_ttl_seconds = cache_ttl_seconds or int(os.getenv('ROLE_CACHE_TTL_SECONDS', '900'))

    def _cache_enabled(self) -> bool:
        return self.redis_service is not None and self.redis_service.is_available()

    # Users and bindings

    def ensure_user(self, user_id: str) -> None:
        """Raise IntegrityError if the user record is missing."""
        if self.mongo_service.find_one(self.USERS, user_id) is None:
            raise IntegrityError("user", user_id)

    def get_bindings(self, user_id: str) -> List[UserRoleBinding]:
        """Every binding of a user, including revoked ones."""
        documents = self.mongo_service.find(self.BINDINGS, {"userId": user_id})
        return [UserRoleBinding.model_validate(from_document(doc)) for doc in documents]

    def get_active_bindings(self, user_id: str, now: Optional[datetime] = None) -> List[UserRoleBinding]:
        """
        Bindings of a user that are active at ``now``.

        Raises:
            IntegrityError: If the user does not exist
        """
        now = now or utcnow()
        with tracer.start_as_current_span("store.get_active_bindings") as span:
            self.ensure_user(user_id)
            documents = self.mongo_service.find(self.BINDINGS, {"userId": user_id, "isActive": True})
            bindings = [UserRoleBinding.model_validate(from_document(doc)) for doc in documents]
            active = [b for b in bindings if b.is_active_at(now)]
            span.set_attributes({
                "user.id": user_id,
                "bindings.total": len(bindings),
                "bindings.active": len(active)
            })
            return active

    def get_binding(self, binding_id: str) -> UserRoleBinding:
        document = self.mongo_service.find_one(self.BINDINGS, binding_id)
        if document is None:
            raise IntegrityError("user_role_binding", binding_id)
        return UserRoleBinding.model_validate(from_document(document))

    def list_flagged_bindings(self) -> List[UserRoleBinding]:
        """Bindings still flagged active, whatever their validity window."""
        documents = self.mongo_service.find(self.BINDINGS, {"isActive": True})
        return [UserRoleBinding.model_validate(from_document(doc)) for doc in documents]

    def save_binding(self, binding: UserRoleBinding, user_id: str) -> None:
        self.mongo_service.upsert(self.BINDINGS, to_document(binding), user_id)

    def count_active_holders(self, role_id: str, now: Optional[datetime] = None) -> int:
        """
        Number of distinct users holding a role at ``now`` or from a later start date.

        Bindings that are revoked or already expired do not count.
        """
        now = now or utcnow()
        documents = self.mongo_service.find(self.BINDINGS, {"roleId": role_id, "isActive": True})
        bindings = [UserRoleBinding.model_validate(from_document(doc)) for doc in documents]
        return len({b.user_id for b in bindings if b.is_live(now)})

    # Roles

    def get_role(self, role_id: str) -> Role:
        """
        Get a role, from cache when possible.

        Raises:
            IntegrityError: If the role does not exist
        """
        if self._cache_enabled():
            cached = self.redis_service.get_cached_role(role_id)
            if cached is not None:
                return Role.model_validate(cached)

        document = self.mongo_service.find_one(self.ROLES, role_id)
        if document is None:
            raise IntegrityError("role", role_id)

        role = Role.model_validate(from_document(document))
        if self._cache_enabled():
            self.redis_service.cache_role(role_id, role.model_dump(mode="json"), self.cache_ttl_seconds)
        return role

    def find_role(self, role_id: str) -> Optional[Role]:
        try:
            return self.get_role(role_id)
        except IntegrityError:
            return None

    def list_roles(self) -> List[Role]:
        return [Role.model_validate(from_document(doc)) for doc in self.mongo_service.find(self.ROLES)]

    def save_role(self, role: Role, user_id: str) -> None:
        self.mongo_service.upsert(self.ROLES, to_document(role), user_id)
        if self._cache_enabled():
            self.redis_service.invalidate_role(role.id)

    # Regions

    def get_region(self, region_id: str) -> Region:
        document = self.mongo_service.find_one(self.REGIONS, region_id)
        if document is None:
            raise IntegrityError("region", region_id)
        return Region.model_validate(from_document(document))

    def get_region_ancestors(self, region_id: str) -> List[Region]:
        """
        Ancestors of a region, nearest first.

        Raises:
            IntegrityError: If the region or one of its ancestors is missing
        """
        if self._cache_enabled():
            cached = self.redis_service.get_cached_region_ancestors(region_id)
            if cached is not None:
                return [Region.model_validate(data) for data in cached]

        ancestors = []
        seen = {region_id}
        current = self.get_region(region_id)
        while current.parent_id:
            if current.parent_id in seen:
                raise IntegrityError("region", current.parent_id, "Region parent chain contains a cycle")
            seen.add(current.parent_id)
            current = self.get_region(current.parent_id)
            ancestors.append(current)

        if self._cache_enabled():
            self.redis_service.cache_region_ancestors(
                region_id, [r.model_dump(mode="json") for r in ancestors], self.cache_ttl_seconds
            )
        return ancestors

    def load_hierarchy(self) -> RegionHierarchy:
        """Index every live region."""
        regions = [Region.model_validate(from_document(doc)) for doc in self.mongo_service.find(self.REGIONS)]
        return RegionHierarchy(regions)

    def save_region(self, region: Region, user_id: str) -> None:
        self.mongo_service.upsert(self.REGIONS, to_document(region), user_id)
        if self._cache_enabled():
            self.redis_service.invalidate_region_ancestors(region.id)

    # Applications

    def get_application(self, application_id: str) -> Application:
        document = self.mongo_service.find_one(self.APPLICATIONS, application_id)
        if document is None:
            raise IntegrityError("application", application_id)
        return Application.model_validate(from_document(document))

    def insert_application(self, application: Application, user_id: str) -> str:
        return self.mongo_service.create(self.APPLICATIONS, to_document(application), user_id)

    def save_application(self, application: Application, expected_version: int, user_id: Optional[str] = None) -> None:
        """
        Store an application if nobody changed it since ``expected_version`` was read.

        Raises:
            ConcurrencyConflict: If the stored version moved on
        """
        self.mongo_service.compare_and_swap(
            self.APPLICATIONS,
            to_document(application),
            expected_version,
            user_id or application.updated_by
        )

    def next_application_sequence(self, year: int) -> int:
        return self.mongo_service.next_sequence(f"applications-{year}")

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""Region tree administration."""

import logging
from datetime import datetime
from typing import Optional

from opentelemetry import trace

from models.base import utcnow
from models.entities import Region, ResolutionContext
from domain.errors import AccessDenied, ConstraintViolation

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RegionService:
    """Creates and retires regions. Both need ``regions.manage``."""

    PERMISSION = "regions.manage"

    def __init__(self, store, resolver, audit_service):
        self.store = store
        self.resolver = resolver
        self.audit_service = audit_service

    def _require(self, actor_id: str, region_id: str, action: str, now: datetime) -> None:
        result = self.resolver.resolve(actor_id, self.PERMISSION, ResolutionContext(), now)
        if not result.allowed:
            self.audit_service.record_denial(actor_id, "region", region_id, action, result)
            raise AccessDenied(result)

    def create_region(self, region: Region, actor_id: str, now: Optional[datetime] = None) -> Region:
        """
        Add a region under an existing parent.

        Raises:
            AccessDenied: If the actor may not manage regions
            ConstraintViolation: On a level mismatch or duplicate code
            IntegrityError: If the parent does not exist
        """
        now = now or utcnow()
        with tracer.start_as_current_span("regions.create") as span:
            span.set_attributes({"region.code": region.code, "region.level": str(region.level)})
            self._require(actor_id, region.id, "create_region", now)

            hierarchy = self.store.load_hierarchy()
            try:
                hierarchy.add(region)
            except ConstraintViolation as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                logger.warning("Region rejected", extra={"code": e.code, "region_code": region.code})
                raise

            region.created_by = actor_id
            region.update_timestamp(actor_id)
            self.store.save_region(region, actor_id)
            self.audit_service.record_change(
                actor_id, "region", region.id, "create_region",
                after={"name": region.name, "code": region.code, "level": str(region.level),
                       "parent_id": region.parent_id}
            )
            logger.info("Region created", extra={"region_id": region.id, "region_code": region.code})
            return region

    def delete_region(self, region_id: str, actor_id: str, now: Optional[datetime] = None) -> Region:
        """
        Soft-delete a leaf region.

        Raises:
            ConstraintViolation: If the region still has children
        """
        now = now or utcnow()
        self._require(actor_id, region_id, "delete_region", now)

        hierarchy = self.store.load_hierarchy()
        region = hierarchy.get(region_id)
        try:
            hierarchy.ensure_deletable(region_id)
        except ConstraintViolation as e:
            logger.warning("Region deletion rejected", extra={"region_id": region_id, "code": e.code})
            raise

        region.soft_delete(actor_id)
        self.store.save_region(region, actor_id)
        self.audit_service.record_change(actor_id, "region", region_id, "delete_region",
                                         before={"code": region.code}, after=None)
        logger.info("Region deleted", extra={"region_id": region_id, "deleted_by": actor_id})
        return region

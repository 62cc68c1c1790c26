# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Scheme configuration provider.

Distribution templates are validated when a configuration is published, so
approvals can apply them without re-checking.
"""

import logging
from typing import List, Optional

from opentelemetry import trace

from models.entities import DistributionStep, ResolutionContext, SchemeWorkflowConfig
from domain.distribution import validate_distribution_template
from domain.errors import AccessDenied, ConstraintViolation, IntegrityError
from .mongodb import MongoDBService, to_document, from_document

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SchemeConfigService:
    """Stores scheme workflow configuration and tracks budget use."""

    PUBLISH_PERMISSION = "schemes.manage"

    def __init__(self, mongo_service: MongoDBService, resolver=None):
        self.mongo_service = mongo_service
        self.resolver = resolver
        self.collection_name = "scheme_configs"

    def publish_config(self, config: SchemeWorkflowConfig, actor_id: str) -> SchemeWorkflowConfig:
        """
        Validate and store a scheme configuration.

        Args:
            config: Configuration to publish
            actor_id: User publishing it

        Returns:
            The stored configuration

        Raises:
            AccessDenied: If the actor may not manage schemes
            ConstraintViolation: If the distribution template is malformed
        """
        with tracer.start_as_current_span("schemes.publish_config") as span:
            span.set_attributes({
                "scheme.id": config.scheme_id,
                "scheme.requires_interview": config.requires_interview,
                "scheme.template_steps": len(config.distribution_template)
            })

            if self.resolver is not None:
                result = self.resolver.resolve(actor_id, self.PUBLISH_PERMISSION, ResolutionContext())
                if not result.allowed:
                    raise AccessDenied(result)

            try:
                validate_distribution_template(config.distribution_template)
            except ConstraintViolation as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                logger.warning(
                    "Rejected scheme configuration",
                    extra={"scheme_id": config.scheme_id, "errors": e.details.get("errors")}
                )
                raise

            existing = self._find(config.scheme_id)
            if existing is not None:
                # Keep the stored id and spent figure; budget use is tracked separately
                config = config.model_copy(update={"id": existing.id, "budget_spent": existing.budget_spent})

            config.update_timestamp(actor_id)
            self.mongo_service.upsert(self.collection_name, to_document(config), actor_id)

            logger.info(
                "Scheme configuration published",
                extra={
                    "scheme_id": config.scheme_id,
                    "requires_interview": config.requires_interview,
                    "budget_allocated": config.budget_allocated,
                    "actor_id": actor_id
                }
            )
            return config

    def _find(self, scheme_id: str) -> Optional[SchemeWorkflowConfig]:
        documents = self.mongo_service.find(self.collection_name, {"schemeId": scheme_id})
        if not documents:
            return None
        return SchemeWorkflowConfig.model_validate(from_document(documents[0]))

    def get_config(self, scheme_id: str) -> SchemeWorkflowConfig:
        """
        Get the published configuration of a scheme.

        Raises:
            IntegrityError: If the scheme has no published configuration
        """
        config = self._find(scheme_id)
        if config is None:
            raise IntegrityError("scheme_config", scheme_id)
        return config

    def get_distribution_template(self, scheme_id: str) -> List[DistributionStep]:
        return list(self.get_config(scheme_id).distribution_template)

    def get_remaining_budget(self, scheme_id: str) -> int:
        """Allocated minus spent, in minor currency units."""
        return self.get_config(scheme_id).remaining_budget()

    def requires_interview(self, scheme_id: str) -> bool:
        return self.get_config(scheme_id).requires_interview

    def commit_budget(self, scheme_id: str, amount: int, actor_id: str) -> bool:
        """
        Count an approved amount against the scheme budget if enough is left.

        The check and the increment are one conditional update, so concurrent
        approvals cannot overspend.

        Returns:
            True if the amount was committed, False if the remaining budget is too small

        Raises:
            IntegrityError: If the scheme has no published configuration
        """
        with tracer.start_as_current_span("schemes.commit_budget") as span:
            span.set_attributes({"scheme.id": scheme_id, "budget.amount": amount})
            collection = self.mongo_service.get_collection(self.collection_name)
            result = collection.update_one(
                {
                    "schemeId": scheme_id,
                    "deletedAt": None,
                    "$expr": {"$gte": [{"$subtract": ["$budgetAllocated", "$budgetSpent"]}, amount]}
                },
                {"$inc": {"budgetSpent": amount}, "$set": {"updatedBy": actor_id}}
            )
            if result.matched_count == 0:
                # Raises IntegrityError when the scheme itself is missing
                remaining = self.get_remaining_budget(scheme_id)
                span.set_attribute("budget.committed", False)
                logger.warning(
                    "Scheme budget exhausted",
                    extra={"scheme_id": scheme_id, "amount": amount, "remaining": remaining}
                )
                return False

            span.set_attribute("budget.committed", True)
            logger.info(
                "Scheme budget committed",
                extra={"scheme_id": scheme_id, "amount": amount, "actor_id": actor_id}
            )
            return True

    def release_budget(self, scheme_id: str, amount: int, actor_id: str) -> None:
        """Give back an amount committed for an approval that was not saved."""
        with tracer.start_as_current_span("schemes.release_budget") as span:
            span.set_attributes({"scheme.id": scheme_id, "budget.amount": amount})
            collection = self.mongo_service.get_collection(self.collection_name)
            result = collection.update_one(
                {"schemeId": scheme_id, "deletedAt": None},
                {"$inc": {"budgetSpent": -amount}, "$set": {"updatedBy": actor_id}}
            )
            if result.matched_count == 0:
                raise IntegrityError("scheme_config", scheme_id)

            logger.info(
                "Scheme budget released",
                extra={"scheme_id": scheme_id, "amount": amount, "actor_id": actor_id}
            )

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for compliance logging with OpenTelemetry correlation.

Every denied authorization and every successful transition ends up here,
together with administrative changes to roles, bindings and regions.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Any
from opentelemetry import trace

from .mongodb import MongoDBService, PaginationResult, to_document
from models.entities import Application, AuditLog, TransitionEvent
from models.enums import AuditOutcome

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditFilters:
    """Filters for audit log queries."""

    def __init__(
        self,
        actor_id: Optional[str] = None,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[str] = None,
        outcome: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        trace_id: Optional[str] = None
    ):
        self.actor_id = actor_id
        self.entity = entity
        self.entity_id = entity_id
        self.action = action
        self.outcome = outcome
        self.start_date = start_date
        self.end_date = end_date
        self.trace_id = trace_id

    def to_mongo_query(self) -> Dict[str, Any]:
        """Convert filters to MongoDB query."""
        query = {}

        if self.actor_id:
            query["actorId"] = self.actor_id

        if self.entity:
            query["entity"] = self.entity

        if self.entity_id:
            query["entityId"] = self.entity_id

        if self.action:
            query["action"] = self.action

        if self.outcome:
            query["outcome"] = self.outcome

        if self.trace_id:
            query["traceId"] = self.trace_id

        # Date range filter
        if self.start_date or self.end_date:
            date_filter = {}
            if self.start_date:
                date_filter["$gte"] = self.start_date
            if self.end_date:
                date_filter["$lte"] = self.end_date
            query["timestamp"] = date_filter

        return query


class AuditService:
    """Audit sink with MongoDB persistence."""

    def __init__(self, mongo_service: MongoDBService):
        """Initialize audit service with MongoDB dependency."""
        self.mongo_service = mongo_service
        self.collection_name = "audit_logs"
        logger.info("Audit service initialized")

    def record(self, entry: AuditLog) -> str:
        """
        Store an audit entry with trace correlation and structured logging.

        Args:
            entry: Entry to store

        Returns:
            str: ID of the created audit log entry

        Raises:
            Exception: Storage failures are logged and re-raised
        """
        with tracer.start_as_current_span("audit.record") as span:
            try:
                span_context = span.get_span_context()
                if span_context.is_valid and entry.trace_id is None:
                    entry = entry.model_copy(update={
                        "trace_id": format(span_context.trace_id, "032x"),
                        "span_id": format(span_context.span_id, "016x")
                    })

                span.set_attributes({
                    "audit.entity": entry.entity,
                    "audit.entity_id": entry.entity_id,
                    "audit.action": entry.action,
                    "audit.outcome": entry.outcome,
                    "audit.actor_id": entry.actor_id
                })

                audit_id = self.mongo_service.create(self.collection_name, to_document(entry), entry.actor_id)

                changes_count = 0
                if entry.before and entry.after:
                    changes_count = len(self._calculate_changes(entry.before, entry.after))

                logger.info(
                    "Audit trail entry created",
                    extra={
                        "audit_id": audit_id,
                        "entity": entry.entity,
                        "entity_id": entry.entity_id,
                        "action": entry.action,
                        "outcome": entry.outcome,
                        "actor_id": entry.actor_id,
                        "trace_id": entry.trace_id,
                        "changes_count": changes_count,
                        "audit_category": "business_action"
                    }
                )

                return audit_id

            except Exception as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to create audit trail entry",
                    extra={
                        "entity": entry.entity,
                        "entity_id": entry.entity_id,
                        "action": entry.action,
                        "actor_id": entry.actor_id,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

    def record_transition(self, application: Application, event: TransitionEvent) -> str:
        """Audit a successful status transition."""
        return self.record(AuditLog(
            timestamp=event.timestamp,
            actor_id=event.actor_id,
            entity="application",
            entity_id=application.id,
            action=f"transition.{event.to_status}",
            before={"status": event.from_status},
            after={"status": event.to_status},
            details={
                "number": application.number,
                "version": application.version,
                "comment": event.comment
            }
        ))

    def record_denial(self, actor_id: str, entity: str, entity_id: str, action: str,
                      result, details: Optional[Dict[str, Any]] = None) -> str:
        """Audit a refused authorization."""
        return self.record(AuditLog(
            actor_id=actor_id,
            entity=entity,
            entity_id=entity_id,
            action=action,
            outcome=AuditOutcome.DENIED,
            reason=result.reason,
            details={
                "permission": result.permission,
                "detail": result.detail,
                **(details or {})
            }
        ))

    def record_change(self, actor_id: str, entity: str, entity_id: str, action: str,
                      before: Optional[Dict[str, Any]] = None,
                      after: Optional[Dict[str, Any]] = None) -> str:
        """Audit an administrative change."""
        return self.record(AuditLog(
            actor_id=actor_id,
            entity=entity,
            entity_id=entity_id,
            action=action,
            before=before,
            after=after
        ))

    def query_audit_logs(
        self,
        filters: AuditFilters,
        page: int = 1,
        page_size: int = 20,
        sort_by: str = "timestamp",
        sort_order: int = -1
    ) -> PaginationResult:
        """
        Query audit logs with filtering and pagination.

        Args:
            filters: Audit log filters
            page: Page number (1-based)
            page_size: Number of items per page
            sort_by: Field to sort by
            sort_order: Sort order (1 for ascending, -1 for descending)

        Returns:
            PaginationResult: Paginated audit log results
        """
        with tracer.start_as_current_span("audit.query_logs") as span:
            try:
                mongo_filters = filters.to_mongo_query()

                span.set_attributes({
                    "audit.query.page": page,
                    "audit.query.page_size": page_size,
                    "audit.query.sort_by": sort_by,
                    "audit.query.filters_count": len(mongo_filters)
                })

                result = self.mongo_service.paginate(
                    collection=self.collection_name,
                    page=page,
                    page_size=page_size,
                    filters=mongo_filters,
                    sort_by=sort_by,
                    sort_order=sort_order
                )

                logger.info(
                    "Audit logs queried successfully",
                    extra={
                        "page": page,
                        "page_size": page_size,
                        "total_results": result.total,
                        "returned_items": len(result.items)
                    }
                )

                return result

            except Exception as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to query audit logs",
                    extra={
                        "page": page,
                        "page_size": page_size,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

    def _calculate_changes(self, before: Dict[str, Any], after: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Calculate field-level changes for detailed audit trail.

        Args:
            before: State before the change
            after: State after the change

        Returns:
            List[Dict]: List of field changes
        """
        changes = []

        all_keys = set(before.keys()) | set(after.keys())

        for key in all_keys:
            old_value = before.get(key)
            new_value = after.get(key)

            # Skip timestamp fields and internal fields
            if key in ["updatedAt", "updatedBy", "updated_at", "updated_by", "_id", "id"]:
                continue

            if old_value != new_value:
                changes.append({
                    "field": key,
                    "old_value": old_value,
                    "new_value": new_value
                })

        return changes

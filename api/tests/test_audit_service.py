# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the audit trail.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from models.entities import AuditLog, TransitionEvent
from domain.authorization import AuthorizationResult
from services.audit import AuditFilters, AuditService


@pytest.fixture
def mongo():
    service = Mock()
    service.create.return_value = "audit-1"
    return service


@pytest.fixture
def audit(mongo):
    return AuditService(mongo)


def stored_document(mongo):
    collection, document, actor_id = mongo.create.call_args[0]
    assert collection == "audit_logs"
    return document


class TestRecording:
    """Test audit entry creation."""

    def test_record_transition(self, audit, mongo, make_application, now):
        application = make_application(version=2)
        event = TransitionEvent(from_status="submitted", to_status="under_review",
                                actor_id="unit-pettah", timestamp=now, comment="Looks complete")

        assert audit.record_transition(application, event) == "audit-1"

        document = stored_document(mongo)
        assert document["action"] == "transition.under_review"
        assert document["entityId"] == application.id
        assert document["before"] == {"status": "submitted"}
        assert document["after"] == {"status": "under_review"}
        assert document["details"]["version"] == 2
        assert document["outcome"] == "success"

    def test_record_denial(self, audit, mongo):
        result = AuthorizationResult.deny("out_of_scope", "applications.approve", "region not covered")

        audit.record_denial("dist-ekm", "application", "app-1", "transition.approved", result, {"number": "APP2024000001"})

        document = stored_document(mongo)
        assert document["outcome"] == "denied"
        assert document["reason"] == "out_of_scope"
        assert document["actorId"] == "dist-ekm"
        assert document["details"]["permission"] == "applications.approve"
        assert document["details"]["number"] == "APP2024000001"

    def test_record_change(self, audit, mongo):
        audit.record_change("root", "role", "role-1", "update_role",
                            before={"display_name": "Field Officer"}, after={"display_name": "Field Staff"})

        document = stored_document(mongo)
        assert document["entity"] == "role"
        assert document["before"] == {"displayName": "Field Officer"}

    def test_storage_failures_propagate(self, audit, mongo):
        mongo.create.side_effect = RuntimeError("disk full")

        with pytest.raises(RuntimeError):
            audit.record(AuditLog(actor_id="root", entity="region", entity_id="pettah", action="delete_region"))

    def test_unknown_entity_rejected(self):
        with pytest.raises(ValueError):
            AuditLog(actor_id="root", entity="spaceship", entity_id="x", action="launch")

    def test_calculate_changes_skips_bookkeeping(self, audit):
        changes = audit._calculate_changes(
            {"status": "submitted", "updatedAt": 1, "version": 1},
            {"status": "under_review", "updatedAt": 2, "version": 1}
        )

        assert changes == [{"field": "status", "old_value": "submitted", "new_value": "under_review"}]


class TestQueries:
    """Test audit log queries."""

    def test_filters_to_mongo_query(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        filters = AuditFilters(actor_id="dist-kollam", entity="application", outcome="denied", start_date=start)

        assert filters.to_mongo_query() == {
            "actorId": "dist-kollam",
            "entity": "application",
            "outcome": "denied",
            "timestamp": {"$gte": start}
        }

    def test_query_audit_logs_paginates(self, audit, mongo):
        mongo.paginate.return_value = Mock(total=1, items=[{"_id": "audit-1"}])

        result = audit.query_audit_logs(AuditFilters(entity_id="app-1"), page=2, page_size=10)

        assert result.total == 1
        kwargs = mongo.paginate.call_args[1]
        assert kwargs["collection"] == "audit_logs"
        assert kwargs["filters"] == {"entityId": "app-1"}
        assert kwargs["page"] == 2
        assert kwargs["sort_by"] == "timestamp"

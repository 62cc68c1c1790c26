# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for MongoDB service layer.
"""

import pytest
from unittest.mock import MagicMock, Mock, patch
from pymongo.errors import DuplicateKeyError

from models.entities import Region, UserRoleBinding
from models.enums import RegionLevel
from domain.errors import ConcurrencyConflict
from services.mongodb import MongoDBService, PaginationResult, from_document, to_document


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def mongodb_service(collection):
    """MongoDB service whose collections are mocks."""
    service = MongoDBService("mongodb://localhost:27017/welfare_test", "welfare_test")
    with patch.object(MongoDBService, "get_collection", return_value=collection):
        yield service


class TestDocumentMapping:
    """Test model to document conversion."""

    def test_to_document_uses_camel_case_and_id(self):
        binding = UserRoleBinding(
            user_id="user-1",
            role_id="unit_admin",
            scope_region_id="pettah",
            assigned_by="admin",
            granted_permission_ids={"applications.hold", "applications.approve"}
        )

        document = to_document(binding)

        assert document["_id"] == binding.id
        assert "id" not in document
        assert document["userId"] == "user-1"
        assert document["scopeRegionId"] == "pettah"
        assert document["grantedPermissionIds"] == ["applications.approve", "applications.hold"]

    def test_from_document_restores_field_names(self):
        region = Region(id="pettah", name="Pettah", code="PTH", level=RegionLevel.UNIT, parent_id="kollam-city")

        restored = Region.model_validate(from_document(to_document(region)))

        assert restored.id == "pettah"
        assert restored.parent_id == "kollam-city"
        assert restored.level == "unit"


class TestMongoDBService:
    """Test MongoDB service functionality."""

    def test_create_document(self, mongodb_service, collection):
        """Test document creation stamps audit fields."""
        collection.insert_one.return_value = Mock(inserted_id="doc-1")

        doc_id = mongodb_service.create("regions", {"_id": "doc-1", "name": "Pettah"}, "user-1")

        assert doc_id == "doc-1"
        inserted = collection.insert_one.call_args[0][0]
        assert inserted["createdBy"] == "user-1"
        assert inserted["updatedBy"] == "user-1"
        assert "createdAt" in inserted

    def test_create_duplicate(self, mongodb_service, collection):
        collection.insert_one.side_effect = DuplicateKeyError("duplicate")

        with pytest.raises(ValueError):
            mongodb_service.create("regions", {"_id": "doc-1"}, "user-1")

    def test_find_excludes_soft_deleted(self, mongodb_service, collection):
        collection.find.return_value = [{"_id": "a"}]

        assert mongodb_service.find("roles", {"name": "beneficiary"}) == [{"_id": "a"}]
        collection.find.assert_called_once_with({"deletedAt": None, "name": "beneficiary"})

        mongodb_service.find("roles", include_deleted=True)
        assert collection.find.call_args[0][0] == {}

    def test_upsert_replaces_by_id(self, mongodb_service, collection):
        mongodb_service.upsert("roles", {"_id": "role-1", "name": "x"}, "user-1")

        query, document = collection.replace_one.call_args[0]
        assert query == {"_id": "role-1"}
        assert document["updatedBy"] == "user-1"
        assert collection.replace_one.call_args[1] == {"upsert": True}

    def test_compare_and_swap_matches_version(self, mongodb_service, collection):
        collection.replace_one.return_value = Mock(matched_count=1)

        mongodb_service.compare_and_swap("applications", {"_id": "app-1", "version": 3}, 2, "user-1")

        query = collection.replace_one.call_args[0][0]
        assert query == {"_id": "app-1", "version": 2, "deletedAt": None}

    def test_compare_and_swap_conflict(self, mongodb_service, collection):
        collection.replace_one.return_value = Mock(matched_count=0)

        with pytest.raises(ConcurrencyConflict) as exc_info:
            mongodb_service.compare_and_swap("applications", {"_id": "app-1", "version": 3}, 2, "user-1")

        assert exc_info.value.entity_id == "app-1"
        assert exc_info.value.expected_version == 2

    def test_next_sequence(self, mongodb_service, collection):
        collection.find_one_and_update.return_value = {"_id": "applications-2024", "seq": 7}

        assert mongodb_service.next_sequence("applications-2024") == 7
        args, kwargs = collection.find_one_and_update.call_args
        assert args[1] == {"$inc": {"seq": 1}}
        assert kwargs["upsert"] is True

    def test_paginate(self, mongodb_service, collection):
        collection.count_documents.return_value = 45
        cursor = collection.find.return_value
        cursor.sort.return_value.skip.return_value.limit.return_value = [{"_id": str(i)} for i in range(20)]

        result = mongodb_service.paginate("audit_logs", page=2, page_size=20, sort_by="timestamp")

        assert isinstance(result, PaginationResult)
        assert result.total == 45
        assert result.total_pages == 3
        assert result.has_next and result.has_prev
        cursor.sort.return_value.skip.assert_called_once_with(20)


class TestConnection:
    """Test client configuration."""

    @patch('services.mongodb.MongoClient')
    def test_client_is_timezone_aware(self, mock_client):
        service = MongoDBService("mongodb://localhost:27017/welfare_test", "welfare_test")

        service.client

        assert mock_client.call_args[1]["tz_aware"] is True
        mock_client.return_value.admin.command.assert_called_once_with('ping')

    @patch('services.mongodb.MongoClient')
    def test_health_check_failure(self, mock_client):
        mock_client.return_value.admin.command.side_effect = Exception("down")
        service = MongoDBService("mongodb://localhost:27017/welfare_test", "welfare_test")

        health = service.health_check()

        assert health['status'] == 'unhealthy'
        assert health['database'] == 'welfare_test'

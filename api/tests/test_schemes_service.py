# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for scheme configuration and budget tracking.
"""

import pytest
from unittest.mock import Mock

from models.entities import DistributionStep
from domain.authorization import AuthorizationResult
from domain.errors import AccessDenied, ConstraintViolation, IntegrityError
from services.mongodb import to_document
from services.schemes import SchemeConfigService


@pytest.fixture
def mongo():
    service = Mock()
    service.find.return_value = []
    return service


@pytest.fixture
def schemes(mongo):
    return SchemeConfigService(mongo)


class TestPublishConfig:
    """Test configuration publication."""

    def test_publish_valid_config(self, schemes, mongo, housing_scheme):
        published = schemes.publish_config(housing_scheme, "coordinator")

        assert published.updated_by == "coordinator"
        collection, document, user_id = mongo.upsert.call_args[0]
        assert collection == "scheme_configs"
        assert document["schemeId"] == "housing"
        assert [s["percentage"] for s in document["distributionTemplate"]] == [50, 30, 20]

    def test_rejects_template_not_summing_to_100(self, schemes, mongo, housing_scheme):
        broken = housing_scheme.model_copy(update={
            "distribution_template": [DistributionStep(percentage=60, days_from_approval=0)]
        })

        with pytest.raises(ConstraintViolation) as exc_info:
            schemes.publish_config(broken, "coordinator")

        assert exc_info.value.details["total_percentage"] == 60
        mongo.upsert.assert_not_called()

    def test_republish_keeps_id_and_spent_budget(self, schemes, mongo, housing_scheme):
        stored = housing_scheme.model_copy(update={"budget_spent": 250_000})
        mongo.find.return_value = [to_document(stored)]
        revised = housing_scheme.model_copy(update={"id": "other-id", "budget_allocated": 12_000_000})

        published = schemes.publish_config(revised, "coordinator")

        assert published.id == housing_scheme.id
        assert published.budget_spent == 250_000
        assert published.remaining_budget() == 11_750_000

    def test_resolver_gate(self, mongo, housing_scheme):
        resolver = Mock()
        resolver.resolve.return_value = AuthorizationResult.deny("not_granted", "schemes.manage")

        with pytest.raises(AccessDenied):
            SchemeConfigService(mongo, resolver).publish_config(housing_scheme, "unit-pettah")

        mongo.upsert.assert_not_called()


class TestQueries:
    """Test configuration reads."""

    def test_get_config(self, schemes, mongo, housing_scheme):
        mongo.find.return_value = [to_document(housing_scheme)]

        config = schemes.get_config("housing")

        assert config.requires_interview is True
        assert schemes.requires_interview("housing") is True
        assert len(schemes.get_distribution_template("housing")) == 3
        assert schemes.get_remaining_budget("housing") == 10_000_000
        mongo.find.assert_called_with("scheme_configs", {"schemeId": "housing"})

    def test_unknown_scheme(self, schemes):
        with pytest.raises(IntegrityError) as exc_info:
            schemes.get_config("space-program")
        assert exc_info.value.entity == "scheme_config"


class TestCommitBudget:
    """Test budget commits."""

    def test_commit_increments_spent(self, schemes, mongo):
        collection = mongo.get_collection.return_value
        collection.update_one.return_value = Mock(matched_count=1)

        assert schemes.commit_budget("housing", 150_000, "dist-kollam") is True

        query, update = collection.update_one.call_args[0]
        assert query["schemeId"] == "housing"
        assert query["deletedAt"] is None
        assert update["$inc"] == {"budgetSpent": 150_000}

    def test_commit_is_conditional_on_remaining_budget(self, schemes, mongo):
        collection = mongo.get_collection.return_value
        collection.update_one.return_value = Mock(matched_count=1)

        schemes.commit_budget("housing", 150_000, "dist-kollam")

        query = collection.update_one.call_args[0][0]
        assert query["$expr"] == {
            "$gte": [{"$subtract": ["$budgetAllocated", "$budgetSpent"]}, 150_000]
        }

    def test_commit_refused_when_budget_exhausted(self, schemes, mongo, housing_scheme):
        exhausted = housing_scheme.model_copy(update={"budget_spent": 9_950_000})
        mongo.find.return_value = [to_document(exhausted)]
        mongo.get_collection.return_value.update_one.return_value = Mock(matched_count=0)

        assert schemes.commit_budget("housing", 100_000, "dist-kollam") is False

    def test_commit_unknown_scheme(self, schemes, mongo):
        mongo.get_collection.return_value.update_one.return_value = Mock(matched_count=0)

        with pytest.raises(IntegrityError):
            schemes.commit_budget("space-program", 1, "dist-kollam")


class TestReleaseBudget:
    """Test giving back committed amounts."""

    def test_release_decrements_spent(self, schemes, mongo):
        collection = mongo.get_collection.return_value
        collection.update_one.return_value = Mock(matched_count=1)

        schemes.release_budget("housing", 150_000, "dist-kollam")

        query, update = collection.update_one.call_args[0]
        assert query == {"schemeId": "housing", "deletedAt": None}
        assert update["$inc"] == {"budgetSpent": -150_000}

    def test_release_unknown_scheme(self, schemes, mongo):
        mongo.get_collection.return_value.update_one.return_value = Mock(matched_count=0)

        with pytest.raises(IntegrityError):
            schemes.release_budget("space-program", 1, "dist-kollam")

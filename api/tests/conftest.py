# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
from datetime import datetime, timezone
from typing import Optional
from unittest.mock import Mock

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["MONGODB_DATABASE"] = "welfare_test"

from models.entities import Application, DistributionStep, SchemeWorkflowConfig, UserRoleBinding
from domain.authorization import PermissionResolver
from domain.catalog import build_default_catalog
from domain.regions import RegionHierarchy
from domain.roles import build_system_roles
from fakes import InMemorySchemes, InMemoryStore, kerala_regions


@pytest.fixture
def now():
    """Fixed evaluation time."""
    return datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def regions():
    """Kerala > {Kollam, Ernakulam} > areas > units."""
    return kerala_regions()


@pytest.fixture
def hierarchy(regions):
    return RegionHierarchy(regions)


@pytest.fixture
def catalog():
    return build_default_catalog()


@pytest.fixture
def system_roles(catalog):
    return {role.id: role for role in build_system_roles(catalog)}


@pytest.fixture
def store(regions, system_roles):
    """In-memory store seeded with the region tree and the system roles."""
    memory = InMemoryStore()
    for region in regions:
        memory.save_region(region)
    for role in system_roles.values():
        memory.save_role(role)
    return memory


@pytest.fixture
def resolver(store, catalog):
    return PermissionResolver(store, catalog)


@pytest.fixture
def bind(store):
    """Create a user (if needed) and give them a role binding."""
    def _bind(user_id: str, role_id: str, scope_region_id: Optional[str] = None, **fields) -> UserRoleBinding:
        store.add_user(user_id)
        binding = UserRoleBinding(
            user_id=user_id,
            role_id=role_id,
            scope_region_id=scope_region_id,
            assigned_by=fields.pop("assigned_by", "seed"),
            valid_from=fields.pop("valid_from", datetime(2024, 1, 1, tzinfo=timezone.utc)),
            **fields
        )
        store.save_binding(binding)
        return binding
    return _bind


@pytest.fixture
def housing_scheme():
    """Scheme that needs an interview before a decision."""
    return SchemeWorkflowConfig(
        id="housing-config",
        scheme_id="housing",
        name="Housing Assistance",
        requires_interview=True,
        distribution_template=[
            DistributionStep(percentage=50, days_from_approval=0, description="Foundation"),
            DistributionStep(percentage=30, days_from_approval=30, description="Walls"),
            DistributionStep(percentage=20, days_from_approval=60, description="Roof"),
        ],
        budget_allocated=10_000_000
    )


@pytest.fixture
def education_scheme():
    """Scheme decided without an interview, paid in one tranche."""
    return SchemeWorkflowConfig(
        id="education-config",
        scheme_id="education",
        name="Education Grant",
        requires_interview=False,
        distribution_template=[DistributionStep(percentage=100, days_from_approval=7)],
        budget_allocated=500_000
    )


@pytest.fixture
def schemes(housing_scheme, education_scheme):
    return InMemorySchemes(housing_scheme, education_scheme)


@pytest.fixture
def make_application(hierarchy, now):
    """Build an application filed from a unit."""
    def _make(scheme_id: str = "housing", unit: str = "pettah", beneficiary_id: str = "ben-1",
              requested_amount: int = 200_000, **fields) -> Application:
        return Application(
            number=fields.pop("number", "APP2024000001"),
            beneficiary_id=beneficiary_id,
            scheme_id=scheme_id,
            region_path=hierarchy.path_for(unit),
            requested_amount=requested_amount,
            created_at=now,
            updated_at=now,
            **fields
        )
    return _make


@pytest.fixture
def audit_service():
    return Mock()


@pytest.fixture
def dispatcher():
    return Mock()

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Acceptance fixtures: the services wired to in-memory collaborators.
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from models.entities import DistributionStep, SchemeWorkflowConfig, UserRoleBinding
from domain.authorization import PermissionResolver
from domain.catalog import build_default_catalog
from fakes import InMemorySchemes, InMemoryStore, kerala_regions
from services.access import AccessControlService
from services.regions import RegionService
from services.workflow import ApplicationWorkflowService, WorkflowConfig


@pytest.fixture
def now():
    return datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def catalog():
    return build_default_catalog()


@pytest.fixture
def store():
    memory = InMemoryStore()
    for region in kerala_regions():
        memory.save_region(region)
    return memory


@pytest.fixture
def audit_service():
    return Mock()


@pytest.fixture
def dispatcher():
    return Mock()


@pytest.fixture
def resolver(store, catalog):
    return PermissionResolver(store, catalog)


@pytest.fixture
def access(store, resolver, catalog, audit_service):
    service = AccessControlService(store, resolver, catalog, audit_service)
    service.ensure_system_roles()
    return service


@pytest.fixture
def regions_service(store, resolver, audit_service):
    return RegionService(store, resolver, audit_service)


@pytest.fixture
def root(store, access):
    """Bootstrap super admin, seeded directly."""
    store.add_user("root")
    store.save_binding(UserRoleBinding(
        user_id="root",
        role_id="super_admin",
        assigned_by="system",
        is_primary=True,
        valid_from=datetime(2024, 1, 1, tzinfo=timezone.utc)
    ))
    return "root"


@pytest.fixture
def schemes():
    return InMemorySchemes(
        SchemeWorkflowConfig(
            scheme_id="housing",
            name="Housing Assistance",
            requires_interview=True,
            distribution_template=[
                DistributionStep(percentage=40, days_from_approval=0),
                DistributionStep(percentage=60, days_from_approval=45),
            ],
            budget_allocated=1_000_000
        ),
        SchemeWorkflowConfig(
            scheme_id="education",
            name="Education Grant",
            requires_interview=False,
            distribution_template=[DistributionStep(percentage=100, days_from_approval=7)],
            budget_allocated=100_000
        ),
    )


@pytest.fixture
def workflow(store, schemes, resolver, audit_service, dispatcher):
    return ApplicationWorkflowService(store, schemes, resolver, audit_service, dispatcher,
                                      WorkflowConfig(max_save_retries=3, max_reschedules=2))

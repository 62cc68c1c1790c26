# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the welfare case engine.
"""

# Base models
from .base import BaseEntity, generate_object_id, utcnow

# Enumerations
from .enums import (
    RegionLevel,
    ScopeClass,
    SecurityLevel,
    RoleKind,
    RoleCategory,
    ApplicationStatus,
    DenialReason,
    InterviewType,
    AuditOutcome
)

# Core entities
from .entities import (
    Region,
    Permission,
    Role,
    UserRoleBinding,
    ResolutionContext,
    RegionPath,
    TransitionEvent,
    InterviewRef,
    DistributionStep,
    Tranche,
    SchemeWorkflowConfig,
    Application,
    AuditLog
)

__all__ = [
    # Base models
    "BaseEntity",
    "generate_object_id",
    "utcnow",

    # Enumerations
    "RegionLevel",
    "ScopeClass",
    "SecurityLevel",
    "RoleKind",
    "RoleCategory",
    "ApplicationStatus",
    "DenialReason",
    "InterviewType",
    "AuditOutcome",

    # Core entities
    "Region",
    "Permission",
    "Role",
    "UserRoleBinding",
    "ResolutionContext",
    "RegionPath",
    "TransitionEvent",
    "InterviewRef",
    "DistributionStep",
    "Tranche",
    "SchemeWorkflowConfig",
    "Application",
    "AuditLog"
]

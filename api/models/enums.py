# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the welfare case engine.
"""

from enum import Enum


class RegionLevel(str, Enum):
    """Administrative region levels, from root to leaf."""
    STATE = "state"
    DISTRICT = "district"
    AREA = "area"
    UNIT = "unit"


# Depth of each level in the region tree (state is the root)
REGION_LEVEL_DEPTH = {
    RegionLevel.STATE: 0,
    RegionLevel.DISTRICT: 1,
    RegionLevel.AREA: 2,
    RegionLevel.UNIT: 3,
}


class ScopeClass(str, Enum):
    """How far a permission reaches once granted."""
    OWN = "own"
    REGIONAL = "regional"
    ALL = "all"


class SecurityLevel(str, Enum):
    """Data sensitivity classification of a permission."""
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"
    TOP_SECRET = "top_secret"


class RoleKind(str, Enum):
    """Origin of a role definition."""
    SYSTEM = "system"
    CUSTOM = "custom"


class RoleCategory(str, Enum):
    """Functional grouping of roles."""
    ADMINISTRATIVE = "administrative"
    OPERATIONAL = "operational"
    BENEFICIARY = "beneficiary"


class ApplicationStatus(str, Enum):
    """Application lifecycle status enumeration."""
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    FIELD_VERIFICATION = "field_verification"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSING = "disbursing"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    RETURNED = "returned"


TERMINAL_STATUSES = frozenset({ApplicationStatus.REJECTED, ApplicationStatus.COMPLETED})


class DenialReason(str, Enum):
    """Reason codes carried by a denied authorization."""
    NOT_GRANTED = "not_granted"
    OUT_OF_SCOPE = "out_of_scope"
    UNAUTHORIZED = "unauthorized"


class InterviewType(str, Enum):
    """Interview delivery mode."""
    OFFLINE = "offline"
    ONLINE = "online"


class AuditOutcome(str, Enum):
    """Outcome recorded on an audit entry."""
    SUCCESS = "success"
    DENIED = "denied"

# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the welfare case engine.
"""

import re
from datetime import datetime
from typing import List, Optional, Dict, Any, Set
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, generate_object_id, utcnow, ensure_utc
from .enums import (
    RegionLevel,
    ScopeClass,
    SecurityLevel,
    RoleKind,
    RoleCategory,
    ApplicationStatus,
    InterviewType,
    AuditOutcome,
    TERMINAL_STATUSES,
)


PERMISSION_NAME_PATTERN = re.compile(r'^[a-z][a-z_]*(\.[a-z_]+)+$')
ROLE_NAME_PATTERN = re.compile(r'^[a-z][a-z0-9_]*$')


class Region(BaseEntity):
    """Node of the administrative region tree (state > district > area > unit)."""

    name: str = Field(..., min_length=1, max_length=200, description="Region name")
    code: str = Field(..., min_length=1, max_length=20, description="Short region code")
    level: RegionLevel = Field(..., description="Level in the region tree")
    parent_id: Optional[str] = Field(None, description="Parent region ID")
    is_active: bool = Field(default=True, description="Whether region accepts new records")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate region name."""
        if not v.strip():
            raise ValueError('Region name cannot be empty')
        return v.strip()

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        """Region codes are stored uppercase."""
        code = v.strip().upper()
        if not re.match(r'^[A-Z0-9_-]+$', code):
            raise ValueError('Region code must contain only letters, numbers, hyphens and underscores')
        return code

    @model_validator(mode='after')
    def validate_parent(self):
        """Roots are states; every other level needs a parent."""
        if self.level == RegionLevel.STATE and self.parent_id:
            raise ValueError('A state region cannot have a parent')
        if self.level != RegionLevel.STATE and not self.parent_id:
            raise ValueError(f'A {self.level} region requires a parent')
        if self.parent_id and self.parent_id == self.id:
            raise ValueError('Region cannot be parent of itself')
        return self


class Permission(BaseModel):
    """Named capability with its scope class and security level."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(default_factory=generate_object_id, description="Permission identifier")
    name: str = Field(..., description="Dotted permission name, e.g. applications.approve")
    module: str = Field(..., description="Owning module")
    scope_class: ScopeClass = Field(..., description="How far the permission reaches")
    security_level: SecurityLevel = Field(default=SecurityLevel.INTERNAL, description="Sensitivity")
    description: str = Field(default="", description="Human-readable description")
    is_active: bool = Field(default=True, description="Inactive permissions never resolve")

    @model_validator(mode='after')
    def validate_permission_name(self):
        """Validate permission name format."""
        if not PERMISSION_NAME_PATTERN.match(self.name):
            raise ValueError(f'Invalid permission name: {self.name}')
        if not self.name.startswith(f"{self.module}."):
            raise ValueError(f'Permission name must start with "{self.module}."')
        return self


class Role(BaseEntity):
    """Named set of permissions with a privilege level."""

    name: str = Field(..., min_length=1, max_length=100, description="Role name")
    display_name: str = Field(..., min_length=1, max_length=200, description="Role display name")
    description: Optional[str] = Field(None, max_length=500, description="Role description")
    level: int = Field(..., ge=0, le=10, description="Privilege level, lower is more privileged")
    kind: RoleKind = Field(default=RoleKind.CUSTOM, description="System or custom role")
    category: RoleCategory = Field(default=RoleCategory.OPERATIONAL, description="Role category")
    permission_ids: Set[str] = Field(default_factory=set, description="Permission IDs held by the role")
    inherits_from: Set[str] = Field(default_factory=set, description="Role IDs whose permissions are inherited")
    is_deletable: bool = Field(default=True, description="Whether the role may be deleted")
    is_modifiable: bool = Field(default=True, description="Whether the role may be edited")
    max_assignable_users: Optional[int] = Field(None, ge=1, description="Maximum active holders")
    is_active: bool = Field(default=True, description="Whether the role can be assigned")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate role name."""
        name = v.strip().lower()
        if not ROLE_NAME_PATTERN.match(name):
            raise ValueError('Role name must contain only lowercase letters, numbers and underscores')
        return name

    @model_validator(mode='after')
    def validate_system_constraints(self):
        """System roles are locked."""
        if self.kind == RoleKind.SYSTEM and (self.is_deletable or self.is_modifiable):
            raise ValueError('System roles must be non-deletable and non-modifiable')
        return self

    def is_system_role(self) -> bool:
        return self.kind == RoleKind.SYSTEM


class UserRoleBinding(BaseEntity):
    """Time-bounded, optionally region-scoped assignment of a role to a user."""

    user_id: str = Field(..., description="User holding the role")
    role_id: str = Field(..., description="Assigned role")
    scope_region_id: Optional[str] = Field(None, description="Region the binding is scoped to")
    is_primary: bool = Field(default=False, description="Primary binding of the user")
    is_temporary: bool = Field(default=False, description="Temporary assignment")
    valid_from: datetime = Field(default_factory=utcnow, description="Start of validity window")
    valid_until: Optional[datetime] = Field(None, description="End of validity window (exclusive)")
    granted_permission_ids: Set[str] = Field(default_factory=set, description="Extra permissions")
    restricted_permission_ids: Set[str] = Field(default_factory=set, description="Withheld permissions")
    assigned_by: str = Field(..., description="User who made the assignment")
    assignment_reason: Optional[str] = Field(None, max_length=500, description="Reason for assignment")
    is_active: bool = Field(default=True, description="False once revoked")
    revoked_at: Optional[datetime] = Field(None, description="Revocation timestamp")
    revoked_by: Optional[str] = Field(None, description="User who revoked the binding")
    revocation_reason: Optional[str] = Field(None, description="Reason for revocation")

    @field_validator('valid_from', 'valid_until', 'revoked_at')
    @classmethod
    def normalize_dates(cls, v):
        return ensure_utc(v)

    @model_validator(mode='after')
    def validate_binding(self):
        """Validate override sets and validity window."""
        overlap = self.granted_permission_ids & self.restricted_permission_ids
        if overlap:
            raise ValueError(f'Permissions cannot be both granted and restricted: {sorted(overlap)}')
        if self.valid_until is not None and self.valid_until <= self.valid_from:
            raise ValueError('valid_until must be after valid_from')
        if self.is_temporary and self.valid_until is None:
            raise ValueError('Temporary bindings require valid_until')
        return self

    def is_active_at(self, now: datetime) -> bool:
        """Check whether the binding contributes permissions at ``now``."""
        if not self.is_active or self.revoked_at is not None or self.is_deleted():
            return False
        now = ensure_utc(now)
        if now < self.valid_from:
            return False
        if self.valid_until is not None and now >= self.valid_until:
            return False
        return True

    def is_expired(self, now: datetime) -> bool:
        return self.valid_until is not None and ensure_utc(now) >= self.valid_until

    def is_live(self, now: datetime) -> bool:
        """Not revoked and not expired; includes bindings that start later."""
        if not self.is_active or self.revoked_at is not None or self.is_deleted():
            return False
        return not self.is_expired(now)


class ResolutionContext(BaseModel):
    """Region and ownership facts an authorization decision is evaluated against."""

    model_config = ConfigDict(frozen=True)

    region_id: Optional[str] = None
    resource_owner_id: Optional[str] = None


class RegionPath(BaseModel):
    """Region IDs of an application, copied at submission."""

    model_config = ConfigDict(frozen=True)

    state: str
    district: str
    area: str
    unit: str

    def for_level(self, level: RegionLevel) -> str:
        """Region ID at the given level."""
        return getattr(self, RegionLevel(level).value)

    def as_list(self) -> List[str]:
        """Region IDs from root to leaf."""
        return [self.state, self.district, self.area, self.unit]


class TransitionEvent(BaseModel):
    """Immutable record of one status change."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    from_status: ApplicationStatus
    to_status: ApplicationStatus
    actor_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    comment: Optional[str] = Field(None, max_length=1000)

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


class InterviewRef(BaseModel):
    """Scheduled interview for an application."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    scheduled_at: datetime
    type: InterviewType = InterviewType.OFFLINE
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    interviewer_ids: List[str] = Field(default_factory=list)
    scheduled_by: str
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator('scheduled_at')
    @classmethod
    def normalize_scheduled_at(cls, v):
        return ensure_utc(v)

    @model_validator(mode='after')
    def validate_venue(self):
        """Online interviews need a link, offline ones a location."""
        if self.type == InterviewType.ONLINE and not self.meeting_link:
            raise ValueError('Online interviews require a meeting link')
        if self.type == InterviewType.OFFLINE and not self.location:
            raise ValueError('Offline interviews require a location')
        return self


class DistributionStep(BaseModel):
    """One step of a scheme's disbursement template."""

    model_config = ConfigDict(frozen=True)

    percentage: int = Field(..., strict=True)
    days_from_approval: int = Field(..., strict=True)
    description: Optional[str] = None


class Tranche(BaseModel):
    """Scheduled partial disbursement of an approved amount."""

    model_config = ConfigDict(validate_assignment=True)

    number: int = Field(..., ge=1)
    percentage: int = Field(..., ge=1, le=100)
    amount: int = Field(..., ge=0, strict=True, description="Minor currency units")
    due_date: datetime
    description: Optional[str] = None
    paid_at: Optional[datetime] = None
    paid_by: Optional[str] = None

    @field_validator('due_date', 'paid_at')
    @classmethod
    def normalize_dates(cls, v):
        return ensure_utc(v)

    def is_paid(self) -> bool:
        return self.paid_at is not None


class SchemeWorkflowConfig(BaseEntity):
    """Workflow-relevant configuration of a welfare scheme."""

    scheme_id: str = Field(..., description="Scheme identifier")
    name: Optional[str] = Field(None, max_length=200, description="Scheme name")
    requires_interview: bool = Field(default=False, description="Interview gate before decision")
    distribution_template: List[DistributionStep] = Field(default_factory=list)
    budget_allocated: int = Field(default=0, ge=0, strict=True, description="Minor currency units")
    budget_spent: int = Field(default=0, ge=0, strict=True, description="Minor currency units")

    def remaining_budget(self) -> int:
        return self.budget_allocated - self.budget_spent


class Application(BaseEntity):
    """Welfare application moving through the review and disbursement workflow."""

    number: str = Field(..., description="Human-facing application number")
    beneficiary_id: str = Field(..., description="Applicant user ID")
    scheme_id: str = Field(..., description="Scheme applied to")
    region_path: RegionPath = Field(..., description="Region path copied at submission")
    status: ApplicationStatus = Field(default=ApplicationStatus.SUBMITTED)
    requested_amount: int = Field(..., gt=0, strict=True, description="Minor currency units")
    approved_amount: Optional[int] = Field(None, gt=0, strict=True, description="Minor currency units")
    approved_at: Optional[datetime] = Field(None, description="Approval timestamp")
    timeline: List[TransitionEvent] = Field(default_factory=list, description="Append-only status history")
    interview: Optional[InterviewRef] = Field(None, description="Current interview")
    interview_history: List[InterviewRef] = Field(default_factory=list,
                                                  description="Interviews replaced by a reschedule, oldest first")
    reschedule_count: int = Field(default=0, ge=0)
    tranches: List[Tranche] = Field(default_factory=list)
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")

    @field_validator('number')
    @classmethod
    def validate_number(cls, v):
        """Validate application number format."""
        if not re.match(r'^APP\d{4}\d{6,}$', v):
            raise ValueError('Application number must look like APP<year><sequence>')
        return v

    @field_validator('approved_at')
    @classmethod
    def normalize_approved_at(cls, v):
        return ensure_utc(v)

    def current_status(self) -> ApplicationStatus:
        return ApplicationStatus(self.status)

    def is_terminal(self) -> bool:
        """Check if no further transition is defined."""
        return self.current_status() in TERMINAL_STATUSES

    def outstanding_tranches(self) -> List[Tranche]:
        return [t for t in self.tranches if not t.is_paid()]

    def disbursed_amount(self) -> int:
        return sum(t.amount for t in self.tranches if t.is_paid())


class AuditLog(BaseModel):
    """Audit log entry for compliance and accountability."""

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    timestamp: datetime = Field(default_factory=utcnow, description="Action timestamp")
    actor_id: str = Field(..., description="User who performed or attempted the action")
    entity: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity identifier")
    action: str = Field(..., description="Action performed")
    outcome: AuditOutcome = Field(default=AuditOutcome.SUCCESS, description="Action outcome")
    reason: Optional[str] = Field(None, description="Denial or violation reason")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    details: Dict[str, Any] = Field(default_factory=dict, description="Additional context")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")
    schema_version: int = Field(default=1, description="Schema version")

    model_config = ConfigDict(
        use_enum_values=True
    )

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = [
            'application', 'role', 'user_role_binding', 'region', 'scheme_config'
        ]
        if v not in valid_entities:
            raise ValueError(f'Invalid entity type: {v}')
        return v

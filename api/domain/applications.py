# SPDX-License-Identifier: Apache-2.0

"""
Application workflow domain logic.

This module contains the application state machine. Every operation checks
the actor's permission against the application's unit first, returns
authorization refusals and business-rule violations as ``WorkflowResult``
values, and raises ``InvalidTransition`` for edges that do not exist.
Applications are never modified in place; a successful operation returns
an updated copy with its version bumped.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Set

from models.base import utcnow
from models.entities import (
    Application, InterviewRef, ResolutionContext, SchemeWorkflowConfig, TransitionEvent
)
from models.enums import ApplicationStatus, DenialReason, TERMINAL_STATUSES
from domain.authorization import AuthorizationResult
from domain.catalog import APPLICATIONS_MODULE, RESCHEDULE_PERMISSION, transition_permission_name
from domain.distribution import compute_tranches
from domain.errors import ConstraintViolation, InvalidTransition
from domain.regions import RegionHierarchy


Status = ApplicationStatus

# Edges that exist regardless of scheme configuration
BASE_TRANSITIONS: Dict[ApplicationStatus, Set[ApplicationStatus]] = {
    Status.SUBMITTED: {Status.UNDER_REVIEW},
    Status.UNDER_REVIEW: {Status.FIELD_VERIFICATION},
    Status.FIELD_VERIFICATION: set(),
    Status.INTERVIEW_SCHEDULED: {Status.APPROVED, Status.REJECTED},
    Status.APPROVED: {Status.DISBURSING},
    Status.DISBURSING: {Status.COMPLETED},
    Status.ON_HOLD: {Status.UNDER_REVIEW},
    Status.RETURNED: {Status.UNDER_REVIEW},
    Status.REJECTED: set(),
    Status.COMPLETED: set(),
}

# Statuses from which a decision (or the interview that precedes it) can be taken
DECISION_SOURCES = {Status.SUBMITTED, Status.UNDER_REVIEW, Status.FIELD_VERIFICATION}

PAUSE_STATUSES = {Status.ON_HOLD, Status.RETURNED}

DISBURSEMENT_STATUSES = {Status.APPROVED, Status.DISBURSING}


@dataclass
class TransitionPayload:
    """Data supplied with a transition request."""
    comment: Optional[str] = None
    approved_amount: Optional[int] = None
    interview: Optional[InterviewRef] = None


@dataclass
class WorkflowResult:
    """Result of an application workflow operation."""
    success: bool
    application: Optional[Application] = None
    event: Optional[TransitionEvent] = None
    denial: Optional[AuthorizationResult] = None
    violation: Optional[ConstraintViolation] = None
    error_message: Optional[str] = None


def allowed_transitions(status, requires_interview: bool) -> Set[ApplicationStatus]:
    """
    Statuses reachable from ``status`` in one step.

    Args:
        status: Current status
        requires_interview: Scheme's interview flag

    Returns:
        Set of target statuses
    """
    status = ApplicationStatus(status)
    targets = set(BASE_TRANSITIONS[status])

    if status in DECISION_SOURCES:
        if requires_interview:
            targets.add(Status.INTERVIEW_SCHEDULED)
            if status == Status.FIELD_VERIFICATION:
                targets.add(Status.REJECTED)
        else:
            targets |= {Status.APPROVED, Status.REJECTED}

    if status not in TERMINAL_STATUSES and status not in PAUSE_STATUSES:
        targets |= PAUSE_STATUSES

    return targets


def validate_status_transition(current_status, target_status, requires_interview: bool) -> bool:
    """Check whether a single edge exists."""
    return ApplicationStatus(target_status) in allowed_transitions(current_status, requires_interview)


def available_transitions(application: Application, requires_interview: bool) -> List[str]:
    """Reachable target statuses of an application, sorted by name."""
    return sorted(s.value for s in allowed_transitions(application.status, requires_interview))


def generate_application_number(year: int, sequence: int) -> str:
    """Format an application number such as ``APP2024000042``."""
    if sequence < 1:
        raise ValueError("Application sequence must start at 1")
    return f"APP{year}{sequence:06d}"


def submit_application(
    beneficiary_id: str,
    scheme_id: str,
    unit_region_id: str,
    requested_amount: int,
    hierarchy: RegionHierarchy,
    sequence: int,
    now: Optional[datetime] = None
) -> Application:
    """
    Build a freshly submitted application.

    The region path is copied from the beneficiary's unit and is never
    recomputed afterwards.

    Raises:
        IntegrityError: If the unit or one of its ancestors is missing
        ConstraintViolation: If the region is not a unit
    """
    now = now or utcnow()
    return Application(
        number=generate_application_number(now.year, sequence),
        beneficiary_id=beneficiary_id,
        scheme_id=scheme_id,
        region_path=hierarchy.path_for(unit_region_id),
        status=Status.SUBMITTED,
        requested_amount=requested_amount,
        created_at=now,
        updated_at=now,
        created_by=beneficiary_id,
        updated_by=beneficiary_id
    )


def application_context(application: Application) -> ResolutionContext:
    """Resolution context of an application: its unit and its beneficiary."""
    return ResolutionContext(
        region_id=application.region_path.unit,
        resource_owner_id=application.beneficiary_id
    )


def _authorize(resolver, actor_id: str, permission_name: str, application: Application,
               now: datetime) -> AuthorizationResult:
    result = resolver.resolve(actor_id, permission_name, application_context(application), now)
    if result.allowed:
        return result
    return AuthorizationResult.deny(DenialReason.UNAUTHORIZED, permission_name, detail=result.reason)


def _denied(application: Application, denial: AuthorizationResult) -> WorkflowResult:
    return WorkflowResult(
        success=False,
        application=application,
        denial=denial,
        error_message=f"Not authorized: {denial.permission} ({denial.detail})"
    )


def _violated(application: Application, code: str, message: str) -> WorkflowResult:
    violation = ConstraintViolation(code, message)
    return WorkflowResult(
        success=False,
        application=application,
        violation=violation,
        error_message=message
    )


def _approval_updates(application: Application, payload: TransitionPayload,
                      scheme: SchemeWorkflowConfig, remaining_budget: int, now: datetime):
    """Fields set on approval, or a (code, message) violation."""
    # An approval fixes the amount and the tranche schedule; resuming a paused
    # application must not replace either
    if application.approved_amount is not None:
        return None, (
            "already_approved",
            f"Application {application.number} was already approved for {application.approved_amount}"
        )
    amount = payload.approved_amount
    if amount is None:
        return None, ("approved_amount_required", "Approval requires an approved amount")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return None, ("invalid_amount", "Approved amount must be a positive integer in minor units")
    if amount > remaining_budget:
        return None, (
            "budget_exceeded",
            f"Approved amount {amount} exceeds remaining scheme budget {remaining_budget}"
        )
    if amount > application.requested_amount:
        return None, (
            "amount_exceeds_request",
            f"Approved amount {amount} exceeds requested amount {application.requested_amount}"
        )

    return {
        "approved_amount": amount,
        "approved_at": now,
        "tranches": compute_tranches(amount, scheme.distribution_template, now),
    }, None


def transition(
    application: Application,
    target_status,
    actor_id: str,
    resolver,
    scheme: SchemeWorkflowConfig,
    payload: Optional[TransitionPayload] = None,
    remaining_budget: Optional[int] = None,
    now: Optional[datetime] = None,
    module: str = APPLICATIONS_MODULE
) -> WorkflowResult:
    """
    Move an application to ``target_status``.

    Args:
        application: Current application state
        target_status: Status to enter
        actor_id: Acting user
        resolver: PermissionResolver used for the permission check
        scheme: Workflow configuration of the application's scheme
        payload: Comment, approved amount or interview details
        remaining_budget: Remaining scheme budget, defaults to the scheme's own figure
        now: Transition time
        module: Module prefix of the gating permission

    Returns:
        WorkflowResult holding the updated copy and the appended event on success,
        or the denial / violation with the application unchanged

    Raises:
        InvalidTransition: If the edge does not exist
        IntegrityError: If the resolver hits missing reference data
    """
    now = now or utcnow()
    payload = payload or TransitionPayload()
    try:
        target = ApplicationStatus(target_status)
    except ValueError:
        raise InvalidTransition(str(application.status), str(target_status), f"Unknown status: {target_status}") from None
    current = application.current_status()

    # No permission gates re-entering submitted
    if target == Status.SUBMITTED:
        raise InvalidTransition(current.value, target.value)

    permission_name = transition_permission_name(target, module)
    authorization = _authorize(resolver, actor_id, permission_name, application, now)
    if not authorization.allowed:
        return _denied(application, authorization)

    if not validate_status_transition(current, target, scheme.requires_interview):
        raise InvalidTransition(current.value, target.value)

    updates = {}
    if target == Status.INTERVIEW_SCHEDULED:
        if payload.interview is None:
            return _violated(application, "interview_details_required",
                             "Scheduling an interview requires interview details")
        updates["interview"] = payload.interview

    elif target == Status.APPROVED:
        budget = scheme.remaining_budget() if remaining_budget is None else remaining_budget
        approval, violation = _approval_updates(application, payload, scheme, budget, now)
        if violation:
            return _violated(application, *violation)
        updates.update(approval)

    elif target == Status.COMPLETED:
        outstanding = application.outstanding_tranches()
        if outstanding:
            return _violated(application, "tranches_outstanding",
                             f"{len(outstanding)} tranches are still unpaid")

    event = TransitionEvent(
        from_status=current,
        to_status=target,
        actor_id=actor_id,
        timestamp=now,
        comment=payload.comment
    )
    updates.update({
        "status": target.value,
        "timeline": [*application.timeline, event],
        "version": application.version + 1,
        "updated_at": now,
        "updated_by": actor_id,
    })
    return WorkflowResult(success=True, application=application.model_copy(update=updates), event=event)


def reschedule_interview(
    application: Application,
    interview: InterviewRef,
    actor_id: str,
    resolver,
    max_reschedules: Optional[int] = None,
    now: Optional[datetime] = None
) -> WorkflowResult:
    """
    Replace the scheduled interview without changing status.

    No timeline event is appended; the reschedule counter is incremented and
    the replaced interview is kept in ``interview_history``.

    Raises:
        InvalidTransition: If no interview is currently scheduled
    """
    now = now or utcnow()
    authorization = _authorize(resolver, actor_id, RESCHEDULE_PERMISSION, application, now)
    if not authorization.allowed:
        return _denied(application, authorization)

    current = application.current_status()
    if current != Status.INTERVIEW_SCHEDULED:
        raise InvalidTransition(current.value, current.value, "Only scheduled interviews can be rescheduled")

    if max_reschedules is not None and application.reschedule_count >= max_reschedules:
        return _violated(application, "reschedule_limit_reached",
                         f"Interview already rescheduled {application.reschedule_count} times")

    history = list(application.interview_history)
    if application.interview is not None:
        history.append(application.interview)

    updated = application.model_copy(update={
        "interview": interview,
        "interview_history": history,
        "reschedule_count": application.reschedule_count + 1,
        "version": application.version + 1,
        "updated_at": now,
        "updated_by": actor_id,
    })
    return WorkflowResult(success=True, application=updated)


def record_tranche_payment(
    application: Application,
    tranche_number: int,
    actor_id: str,
    resolver,
    now: Optional[datetime] = None,
    module: str = APPLICATIONS_MODULE
) -> WorkflowResult:
    """
    Mark one tranche as paid.

    Raises:
        InvalidTransition: If the application is not approved or disbursing
    """
    now = now or utcnow()
    authorization = _authorize(resolver, actor_id, f"{module}.disburse", application, now)
    if not authorization.allowed:
        return _denied(application, authorization)

    current = application.current_status()
    if current not in DISBURSEMENT_STATUSES:
        raise InvalidTransition(current.value, current.value, f"Cannot record payments while {current.value}")

    tranche = next((t for t in application.tranches if t.number == tranche_number), None)
    if tranche is None:
        return _violated(application, "tranche_not_found", f"Tranche {tranche_number} does not exist")
    if tranche.is_paid():
        return _violated(application, "tranche_already_paid", f"Tranche {tranche_number} is already paid")

    tranches = [
        t.model_copy(update={"paid_at": now, "paid_by": actor_id}) if t.number == tranche_number else t
        for t in application.tranches
    ]
    updated = application.model_copy(update={
        "tranches": tranches,
        "version": application.version + 1,
        "updated_at": now,
        "updated_by": actor_id,
    })
    return WorkflowResult(success=True, application=updated)

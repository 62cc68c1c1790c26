# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Application workflow service.

Wraps the domain state machine with persistence, optimistic concurrency,
auditing and event dispatch. Each write is a compare-and-swap on the
application version; a lost race re-reads the application and re-runs the
operation a bounded number of times before the conflict reaches the caller.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from opentelemetry import trace

from models.base import utcnow
from models.entities import Application, InterviewRef, ResolutionContext
from models.enums import ApplicationStatus, DenialReason
from domain import applications as workflow
from domain.applications import TransitionPayload, WorkflowResult
from domain.authorization import AuthorizationResult
from domain.errors import ConcurrencyConflict, ConstraintViolation, IntegrityError, InvalidTransition

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class WorkflowConfig:
    """Workflow settings."""
    max_save_retries: int = 3
    max_reschedules: Optional[int] = None

    @classmethod
    def from_env(cls) -> "WorkflowConfig":
        max_reschedules = os.getenv('INTERVIEW_MAX_RESCHEDULES')
        return cls(
            max_save_retries=int(os.getenv('WORKFLOW_MAX_SAVE_RETRIES', '3')),
            max_reschedules=int(max_reschedules) if max_reschedules else None
        )


class ApplicationWorkflowService:
    """Runs workflow operations against stored applications."""

    def __init__(self, store, schemes, resolver, audit_service, dispatcher,
                 config: Optional[WorkflowConfig] = None):
        self.store = store
        self.schemes = schemes
        self.resolver = resolver
        self.audit_service = audit_service
        self.dispatcher = dispatcher
        self.config = config or WorkflowConfig.from_env()

    def submit(self, beneficiary_id: str, scheme_id: str, unit_region_id: str,
               requested_amount: int, actor_id: Optional[str] = None,
               now: Optional[datetime] = None) -> WorkflowResult:
        """
        File a new application for a beneficiary.

        The actor needs ``applications.create`` for the beneficiary, which the
        beneficiary role holds for their own applications.
        """
        now = now or utcnow()
        actor_id = actor_id or beneficiary_id
        with tracer.start_as_current_span("workflow.submit") as span:
            span.set_attributes({
                "application.scheme_id": scheme_id,
                "application.unit": unit_region_id,
                "workflow.actor_id": actor_id
            })
            try:
                context = ResolutionContext(region_id=unit_region_id, resource_owner_id=beneficiary_id)
                authorization = self.resolver.resolve(actor_id, "applications.create", context, now)
                if not authorization.allowed:
                    self.audit_service.record_denial(
                        actor_id, "application", "new", "submit", authorization,
                        {"scheme_id": scheme_id, "unit": unit_region_id}
                    )
                    denial = AuthorizationResult.deny(
                        DenialReason.UNAUTHORIZED, "applications.create", detail=authorization.reason
                    )
                    return WorkflowResult(success=False, denial=denial,
                                          error_message="Not authorized to submit this application")

                self.schemes.get_config(scheme_id)
                hierarchy = self.store.load_hierarchy()
                sequence = self.store.next_application_sequence(now.year)
                application = workflow.submit_application(
                    beneficiary_id, scheme_id, unit_region_id, requested_amount, hierarchy, sequence, now
                )
                self.store.insert_application(application, actor_id)
                self.audit_service.record_change(
                    actor_id, "application", application.id, "submit",
                    after={"status": application.status, "number": application.number}
                )

                logger.info(
                    "Application submitted",
                    extra={
                        "application_id": application.id,
                        "number": application.number,
                        "scheme_id": scheme_id,
                        "requested_amount": requested_amount
                    }
                )
                return WorkflowResult(success=True, application=application)

            except IntegrityError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error("Integrity error while submitting application",
                             extra={"scheme_id": scheme_id, "unit": unit_region_id, "error": str(e)},
                             exc_info=True)
                raise

    def transition(self, application_id: str, target_status, actor_id: str,
                   payload: Optional[TransitionPayload] = None,
                   now: Optional[datetime] = None) -> WorkflowResult:
        """
        Move a stored application to ``target_status``.

        Args:
            application_id: Application to move
            target_status: Status to enter
            actor_id: Acting user
            payload: Comment, approved amount or interview details
            now: Transition time

        Returns:
            WorkflowResult from the state machine

        Raises:
            InvalidTransition: If the edge does not exist
            IntegrityError: If reference data is missing
            ConcurrencyConflict: If the retries are exhausted
        """
        target = getattr(target_status, "value", target_status)

        def operation(application: Application, scheme, at: datetime) -> WorkflowResult:
            remaining = None
            if target == ApplicationStatus.APPROVED:
                remaining = self.schemes.get_remaining_budget(application.scheme_id)
            return workflow.transition(
                application, target_status, actor_id, self.resolver, scheme,
                payload=payload, remaining_budget=remaining, now=at
            )

        return self._run(application_id, actor_id, f"transition.{target}", operation, now)

    def reschedule_interview(self, application_id: str, interview: InterviewRef, actor_id: str,
                             now: Optional[datetime] = None) -> WorkflowResult:
        """Replace the scheduled interview of a stored application."""
        def operation(application: Application, scheme, at: datetime) -> WorkflowResult:
            return workflow.reschedule_interview(
                application, interview, actor_id, self.resolver,
                max_reschedules=self.config.max_reschedules, now=at
            )

        return self._run(application_id, actor_id, "reschedule_interview", operation, now)

    def record_tranche_payment(self, application_id: str, tranche_number: int, actor_id: str,
                               now: Optional[datetime] = None) -> WorkflowResult:
        """Mark one tranche of a stored application as paid."""
        def operation(application: Application, scheme, at: datetime) -> WorkflowResult:
            return workflow.record_tranche_payment(application, tranche_number, actor_id, self.resolver, now=at)

        return self._run(application_id, actor_id, "record_tranche_payment", operation, now)

    def available_transitions(self, application_id: str):
        application = self.store.get_application(application_id)
        return workflow.available_transitions(
            application, self.schemes.requires_interview(application.scheme_id)
        )

    def _run(self, application_id: str, actor_id: str, action: str,
             operation: Callable[..., WorkflowResult], now: Optional[datetime]) -> WorkflowResult:
        with tracer.start_as_current_span("workflow.run") as span:
            span.set_attributes({
                "application.id": application_id,
                "workflow.action": action,
                "workflow.actor_id": actor_id
            })
            try:
                attempt = 0
                while True:
                    at = now or utcnow()
                    application = self.store.get_application(application_id)
                    scheme = self.schemes.get_config(application.scheme_id)
                    result = operation(application, scheme, at)

                    if not result.success:
                        self._report_failure(application, actor_id, action, result)
                        return result

                    # Approvals reserve their amount before the save and give it back if the save fails
                    reserved = self._approved_amount(result)
                    if reserved and not self.schemes.commit_budget(application.scheme_id, reserved, actor_id):
                        result = self._budget_exhausted(application, reserved)
                        self._report_failure(application, actor_id, action, result)
                        return result

                    try:
                        self.store.save_application(result.application, application.version, actor_id)
                    except ConcurrencyConflict:
                        if reserved:
                            self.schemes.release_budget(application.scheme_id, reserved, actor_id)
                        attempt += 1
                        span.set_attribute("workflow.conflicts", attempt)
                        if attempt > self.config.max_save_retries:
                            logger.error(
                                "Giving up after repeated version conflicts",
                                extra={"application_id": application_id, "action": action, "attempts": attempt}
                            )
                            raise
                        logger.warning(
                            "Version conflict, retrying",
                            extra={"application_id": application_id, "action": action, "attempt": attempt}
                        )
                        continue
                    except Exception:
                        if reserved:
                            self.schemes.release_budget(application.scheme_id, reserved, actor_id)
                        raise

                    self._after_commit(application, result, actor_id, action)
                    span.set_attribute("workflow.success", True)
                    return result

            except InvalidTransition as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                logger.warning(
                    "Invalid workflow operation",
                    extra={"application_id": application_id, "action": action, "error": e.message}
                )
                raise
            except IntegrityError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "Integrity error in workflow operation",
                    extra={"application_id": application_id, "action": action, "error": str(e)},
                    exc_info=True
                )
                raise

    @staticmethod
    def _approved_amount(result: WorkflowResult) -> int:
        if result.event is None or result.event.to_status != ApplicationStatus.APPROVED:
            return 0
        return result.application.approved_amount

    @staticmethod
    def _budget_exhausted(application: Application, amount: int) -> WorkflowResult:
        violation = ConstraintViolation(
            "budget_exceeded",
            f"Approved amount {amount} no longer fits the remaining scheme budget"
        )
        return WorkflowResult(success=False, application=application, violation=violation,
                              error_message=violation.message)

    def _report_failure(self, application: Application, actor_id: str, action: str,
                        result: WorkflowResult) -> None:
        if result.denial is not None:
            self.audit_service.record_denial(
                actor_id, "application", application.id, action, result.denial,
                {"status": application.status}
            )
            logger.info(
                "Workflow operation denied",
                extra={
                    "application_id": application.id,
                    "action": action,
                    "actor_id": actor_id,
                    "reason": result.denial.detail
                }
            )
        elif result.violation is not None:
            logger.info(
                "Workflow operation rejected by business rule",
                extra={
                    "application_id": application.id,
                    "action": action,
                    "code": result.violation.code
                }
            )

    def _after_commit(self, before: Application, result: WorkflowResult, actor_id: str,
                      action: str) -> None:
        application = result.application
        event = result.event

        if event is None:
            self.audit_service.record_change(
                actor_id, "application", application.id, action,
                before=_operation_state(before),
                after=_operation_state(application)
            )
            return

        self.audit_service.record_transition(application, event)
        self.dispatcher.dispatch(application, event)

        logger.info(
            "Application transitioned",
            extra={
                "application_id": application.id,
                "from_status": event.from_status,
                "to_status": event.to_status,
                "actor_id": event.actor_id,
                "version": application.version
            }
        )


def _operation_state(application: Application) -> dict:
    interview = application.interview
    return {
        "version": application.version,
        "reschedule_count": application.reschedule_count,
        "interview_at": interview.scheduled_at.isoformat() if interview else None,
        "paid_tranches": len(application.tranches) - len(application.outstanding_tranches())
    }

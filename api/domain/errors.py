# SPDX-License-Identifier: Apache-2.0

"""
Exception hierarchy shared by the authorization and workflow domain.

Authorization refusals are not exceptions; they come back as
``AuthorizationResult`` values. The classes below cover the cases the
caller cannot simply present to an end user.
"""

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidTransition(WorkflowError):
    """Target status is not reachable from the current status."""

    def __init__(self, from_status: str, to_status: str, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid transition from {from_status} to {to_status}",
            {"from_status": from_status, "to_status": to_status}
        )
        self.from_status = from_status
        self.to_status = to_status


class ConstraintViolation(WorkflowError):
    """A business constraint rejected the operation; ``code`` is machine-readable."""

    def __init__(self, code: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or code, details)
        self.code = code


class IntegrityError(WorkflowError):
    """A referenced user, role or region is missing. Never retried."""

    def __init__(self, entity: str, entity_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Referenced {entity} not found: {entity_id}",
            {"entity": entity, "entity_id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class ConcurrencyConflict(WorkflowError):
    """The stored version changed between read and write."""

    def __init__(self, entity_id: str, expected_version: int, message: Optional[str] = None):
        super().__init__(
            message or f"Version conflict on {entity_id} (expected version {expected_version})",
            {"entity_id": entity_id, "expected_version": expected_version}
        )
        self.entity_id = entity_id
        self.expected_version = expected_version


class AccessDenied(WorkflowError):
    """An administrative action was refused by the permission resolver."""

    def __init__(self, result, message: Optional[str] = None):
        super().__init__(
            message or f"Access denied: {result.reason}",
            {"permission": result.permission, "reason": result.reason}
        )
        self.result = result

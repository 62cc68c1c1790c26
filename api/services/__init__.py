# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Persistence, integrations and side effects.
"""

from .mongodb import MongoDBService, PaginationResult
from .amqp import AMQPService, AMQPConfig, PublishResult, NotificationDispatcher, create_amqp_service
from .audit import AuditService, AuditFilters
from .store import MongoWorkflowStore
from .schemes import SchemeConfigService
from .workflow import ApplicationWorkflowService, WorkflowConfig
from .access import AccessControlService
from .regions import RegionService

__all__ = [
    "MongoDBService",
    "PaginationResult",
    "AMQPService",
    "AMQPConfig",
    "PublishResult",
    "NotificationDispatcher",
    "create_amqp_service",
    "AuditService",
    "AuditFilters",
    "MongoWorkflowStore",
    "SchemeConfigService",
    "ApplicationWorkflowService",
    "WorkflowConfig",
    "AccessControlService",
    "RegionService"
]

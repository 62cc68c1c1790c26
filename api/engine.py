# SPDX-License-Identifier: Apache-2.0

"""
Welfare Case Engine - service wiring

This module initializes observability and connects the MongoDB store, the
Redis cache, the AMQP event publisher and the audit trail to the workflow,
access control and region services.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from opentelemetry import trace

from observability.config import setup_observability
from domain.authorization import PermissionResolver
from domain.catalog import PermissionCatalog, build_default_catalog
from services.access import AccessControlService
from services.amqp import AMQPService, NotificationDispatcher, create_amqp_service
from services.audit import AuditService
from services.mongodb import MongoDBService
from services.redis import RedisService
from services.regions import RegionService
from services.schemes import SchemeConfigService
from services.store import MongoWorkflowStore
from services.workflow import ApplicationWorkflowService, WorkflowConfig

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class Engine:
    """Wired services of one engine instance."""
    mongodb_service: MongoDBService
    redis_service: RedisService
    amqp_service: AMQPService
    catalog: PermissionCatalog
    store: MongoWorkflowStore
    resolver: PermissionResolver
    audit_service: AuditService
    schemes: SchemeConfigService
    workflow: ApplicationWorkflowService
    access: AccessControlService
    regions: RegionService

    def health(self) -> Dict[str, Any]:
        """
        Check every backing service.

        The overall status is healthy if every checked dependency is and
        degraded if only some are. An unconfigured cache is reported but
        not counted.
        """
        with tracer.start_as_current_span("engine.health") as span:
            dependencies = {
                "mongodb": self.mongodb_service.health_check(),
                "redis": self.redis_service.health_check(),
                "amqp": {"status": "healthy" if self.amqp_service.health_check() else "unhealthy"}
            }
            statuses = [
                result["status"] for result in dependencies.values()
                if result["status"] != "unavailable"
            ]
            if all(status == "healthy" for status in statuses):
                overall = "healthy"
            elif any(status == "healthy" for status in statuses):
                overall = "degraded"
            else:
                overall = "unhealthy"

            span.set_attributes({
                "health.overall_status": overall,
                **{f"health.{name}_status": result["status"] for name, result in dependencies.items()}
            })
            if overall != "healthy":
                logger.warning("Engine dependencies not healthy", extra={"status": overall})
            return {"status": overall, "dependencies": dependencies}

    def close(self) -> None:
        """Release the database connection."""
        self.mongodb_service.close_connection()


def build_engine(
    mongodb_service: Optional[MongoDBService] = None,
    redis_service: Optional[RedisService] = None,
    amqp_service: Optional[AMQPService] = None,
    workflow_config: Optional[WorkflowConfig] = None,
    init_observability: bool = True
) -> Engine:
    """
    Build the engine, reading any missing configuration from the environment.

    Args:
        mongodb_service: MongoDB service, created from MONGODB_URI if omitted
        redis_service: Cache, created from REDIS_URL if omitted
        amqp_service: Event publisher, created from AMQP_URL if omitted
        workflow_config: Workflow settings, read by WorkflowConfig.from_env if omitted
        init_observability: Configure tracing and logging first

    Returns:
        Engine holding every service
    """
    if init_observability:
        setup_observability()

    mongodb_service = mongodb_service or MongoDBService()
    redis_service = redis_service or RedisService()
    amqp_service = amqp_service or create_amqp_service()

    catalog = build_default_catalog()
    store = MongoWorkflowStore(mongodb_service, redis_service)
    resolver = PermissionResolver(store, catalog)
    audit_service = AuditService(mongodb_service)
    schemes = SchemeConfigService(mongodb_service, resolver)

    engine = Engine(
        mongodb_service=mongodb_service,
        redis_service=redis_service,
        amqp_service=amqp_service,
        catalog=catalog,
        store=store,
        resolver=resolver,
        audit_service=audit_service,
        schemes=schemes,
        workflow=ApplicationWorkflowService(
            store, schemes, resolver, audit_service,
            NotificationDispatcher(amqp_service),
            workflow_config or WorkflowConfig.from_env()
        ),
        access=AccessControlService(store, resolver, catalog, audit_service),
        regions=RegionService(store, resolver, audit_service)
    )

    logger.info(
        "Engine initialized",
        extra={
            "database": mongodb_service.database_name,
            "cache_enabled": redis_service.is_available(),
            "exchange": amqp_service.config.exchange,
            "permissions": len(catalog)
        }
    )
    return engine


def bootstrap(engine: Engine) -> None:
    """Create indexes, declare the event exchange and seed the system roles."""
    engine.mongodb_service.create_indexes()
    if not engine.amqp_service.setup_exchange():
        logger.warning("Event exchange could not be declared")
    created = engine.access.ensure_system_roles()
    logger.info("Engine bootstrap complete", extra={"seeded_roles": len(created)})

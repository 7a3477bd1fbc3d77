# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for governance action logging with OpenTelemetry correlation.
"""

import logging
from typing import Dict, List, Optional, Any
from opentelemetry import trace
from bson import ObjectId

from .mongodb import MongoDBService
from models.entities import AuditLog

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditService:
    """Service for audit logging with MongoDB persistence and organization scoping."""

    def __init__(self, mongo_service: MongoDBService):
        """Initialize audit service with MongoDB dependency."""
        self.mongo_service = mongo_service
        self.collection_name = "audit_logs"
        logger.info("Audit service initialized")

    def log_action(
        self,
        user_id: str,
        org_id: str,
        entity: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Record one governance action.

        The entry carries the current trace and span ids so the audit trail
        can be joined with request traces.

        Returns:
            ID of the stored audit entry
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            span.set_attributes({
                "audit.entity": entity,
                "audit.action": action,
                "audit.organization_id": org_id,
                "audit.entity_id": entity_id
            })

            span_context = span.get_span_context()
            entry = AuditLog(
                user_id=user_id,
                organization_id=org_id,
                entity=entity,
                entity_id=entity_id,
                action=action,
                before=before,
                after=after,
                trace_id=format(span_context.trace_id, "032x") if span_context.is_valid else None,
                span_id=format(span_context.span_id, "016x") if span_context.is_valid else None
            )

            document = entry.model_dump(by_alias=True, exclude={"id"})
            document["_id"] = ObjectId(entry.id)

            try:
                audit_id = self.mongo_service.create(self.collection_name, document, user_id)
            except Exception as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise

            logger.info(
                f"Audit: {entity}.{action}",
                extra={
                    "audit_id": audit_id,
                    "entity_id": entity_id,
                    "user_id": user_id,
                    "organization_id": org_id,
                    "trace_id": entry.trace_id
                }
            )
            return audit_id

    def log_action_best_effort(self, user_id: str, org_id: str, entity: str, entity_id: str,
                               action: str, **kwargs) -> Optional[str]:
        """Record an action; a failure is logged and never reaches the caller."""
        try:
            return self.log_action(user_id, org_id, entity, entity_id, action, **kwargs)
        except Exception:
            logger.warning(
                "Audit entry skipped",
                extra={"entity": entity, "entity_id": entity_id, "action": action, "organization_id": org_id},
                exc_info=True
            )
            return None

    def get_entity_history(self, org_id: str, entity_id: str) -> List[AuditLog]:
        """Return audit entries for one entity, newest first."""
        with tracer.start_as_current_span("audit.get_entity_history") as span:
            span.set_attributes({
                "audit.organization_id": org_id,
                "audit.entity_id": entity_id
            })

            documents = self.mongo_service.find_many(
                self.collection_name,
                {"organizationId": org_id, "entityId": entity_id},
                sort=[("timestamp", -1)]
            )
            return [AuditLog.model_validate(doc) for doc in documents]

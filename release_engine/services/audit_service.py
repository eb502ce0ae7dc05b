"""Audit Recorder — best-effort log of console mutations and its queries."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from release_engine.metrics import AUDIT_WRITE_FAILURES
from release_engine.models.audit_log import AuditLogEntry
from release_engine.observability import report_error
from release_engine.services.common import Actor, apply_pagination, isoformat

logger = logging.getLogger(__name__)

VALID_ACTIONS = {"create", "update", "delete", "toggle"}
VALID_ENTITIES = {"app", "deployment", "package"}


class AuditService:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: str,
        entity: str,
        entity_id: str | None,
        actor: Actor | None,
        details: dict | None = None,
    ) -> AuditLogEntry | None:
        """Write one entry after the primary mutation has committed.

        Failures are rolled back, logged and reported; they never propagate.
        """
        try:
            if action not in VALID_ACTIONS:
                raise ValueError(f"Unknown audit action: {action}")
            if entity not in VALID_ENTITIES:
                raise ValueError(f"Unknown audit entity: {entity}")
            entry = AuditLogEntry(
                user_id=actor.user_id if actor else None,
                user_email=actor.email if actor else None,
                action=action,
                entity=entity,
                entity_id=str(entity_id) if entity_id is not None else None,
                details=details,
                ip_address=actor.ip_address if actor else None,
                user_agent=actor.user_agent[:500] if actor and actor.user_agent else None,
            )
            self.db.add(entry)
            self.db.commit()
            return entry
        except Exception as exc:
            try:
                self.db.rollback()
            except Exception:
                logger.warning("Rollback after audit failure also failed", exc_info=True)
            AUDIT_WRITE_FAILURES.labels(entity=entity, action=action).inc()
            report_error(exc, source="audit", entity=entity, action=action)
            return None

    def list_entries(
        self,
        *,
        user_id: str | None = None,
        entity: str | None = None,
        entity_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        stmt = select(AuditLogEntry)
        if user_id:
            stmt = stmt.where(AuditLogEntry.user_id == user_id)
        if entity:
            stmt = stmt.where(AuditLogEntry.entity == entity)
        if entity_id:
            stmt = stmt.where(AuditLogEntry.entity_id == entity_id)
        stmt = apply_pagination(stmt.order_by(AuditLogEntry.created_at.desc()), limit, offset)
        return list(self.db.scalars(stmt).all())

    def list_by_user(self, user_id: str, limit: int = 100, offset: int = 0) -> list[AuditLogEntry]:
        return self.list_entries(user_id=user_id, limit=limit, offset=offset)

    def list_by_entity(self, entity: str, entity_id: str, limit: int = 100, offset: int = 0) -> list[AuditLogEntry]:
        return self.list_entries(entity=entity, entity_id=entity_id, limit=limit, offset=offset)

    def count_entries(self, user_id: str | None = None) -> int:
        stmt = select(func.count(AuditLogEntry.audit_id))
        if user_id:
            stmt = stmt.where(AuditLogEntry.user_id == user_id)
        return self.db.scalar(stmt) or 0

    @staticmethod
    def serialize_entry(entry: AuditLogEntry) -> dict:
        return {
            "id": str(entry.audit_id),
            "userId": entry.user_id,
            "userEmail": entry.user_email,
            "action": entry.action,
            "entity": entry.entity,
            "entityId": entry.entity_id,
            "details": entry.details,
            "ipAddress": entry.ip_address,
            "userAgent": entry.user_agent,
            "createdAt": isoformat(entry.created_at),
        }

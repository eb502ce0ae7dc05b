"""Audit log API — who changed what in the console."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from release_engine.api.deps import actor_from_auth, get_db, require_user_auth
from release_engine.errors import InvalidArgumentError, UnauthorizedError
from release_engine.services.audit_service import VALID_ENTITIES, AuditService

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


def _page(entries, total: int | None, limit: int, offset: int) -> dict:
    return {
        "items": [AuditService.serialize_entry(e) for e in entries],
        "count": len(entries),
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("")
def list_audit_logs(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    actor = actor_from_auth(auth)
    service = AuditService(db)
    user_id = None if actor.is_admin else actor.user_id
    entries = service.list_entries(user_id=user_id, limit=limit, offset=offset)
    return _page(entries, service.count_entries(user_id), limit, offset)


@router.get("/user/{user_id}")
def list_user_audit_logs(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    actor = actor_from_auth(auth)
    if not actor.is_admin and user_id != actor.user_id:
        raise UnauthorizedError("Forbidden")
    service = AuditService(db)
    return _page(service.list_by_user(user_id, limit=limit, offset=offset), service.count_entries(user_id), limit, offset)


@router.get("/entity/{entity}/{entity_id}")
def list_entity_audit_logs(
    entity: str,
    entity_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    if entity not in VALID_ENTITIES:
        raise InvalidArgumentError(f"Unknown entity: {entity}")
    actor = actor_from_auth(auth)
    entries = AuditService(db).list_by_entity(entity, entity_id, limit=limit, offset=offset)
    if not actor.is_admin:
        entries = [e for e in entries if e.user_id == actor.user_id]
    return _page(entries, None, limit, offset)

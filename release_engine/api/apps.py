"""Apps API — console CRUD for apps."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from release_engine.api.deps import actor_from_auth, get_db, require_user_auth
from release_engine.errors import ReleaseEngineError
from release_engine.schemas.apps import AppCreate, AppUpdate

router = APIRouter(prefix="/apps", tags=["apps"])


@router.get("")
def list_apps(
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    from release_engine.services.app_service import AppService

    apps = AppService(db).list_apps(actor_from_auth(auth))
    return [AppService.serialize_app(a) for a in apps]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_app(
    payload: AppCreate,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    from release_engine.services.app_service import AppService

    try:
        app = AppService(db).create_app(
            payload.app_name,
            payload.platform,
            actor_from_auth(auth),
            description=payload.description,
        )
        return AppService.serialize_app(app)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.get("/{app_id}")
def get_app(
    app_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    from release_engine.services.app_service import AppService

    return AppService.serialize_app(AppService(db).get_app(app_id, actor_from_auth(auth)))


@router.put("/{app_id}")
def update_app(
    app_id: UUID,
    payload: AppUpdate,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    from release_engine.services.app_service import AppService

    try:
        app = AppService(db).update_app(
            app_id,
            actor_from_auth(auth),
            name=payload.app_name,
            platform=payload.platform,
            description=payload.description,
        )
        return AppService.serialize_app(app)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.delete("/{app_id}")
def delete_app(
    app_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    from release_engine.services.app_service import AppService

    try:
        AppService(db).delete_app(app_id, actor_from_auth(auth))
        return {"deleted": str(app_id)}
    except ReleaseEngineError:
        db.rollback()
        raise

"""Deployments API — release channels and their keys."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from release_engine.api.deps import actor_from_auth, get_db, require_user_auth
from release_engine.errors import ReleaseEngineError
from release_engine.schemas.deployments import DeploymentCreate, DeploymentUpdate
from release_engine.services.deployment_service import DeploymentService

router = APIRouter(prefix="/deployments", tags=["deployments"])


@router.get("")
def list_deployments(
    app_id: UUID | None = Query(default=None, alias="appId"),
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    deployments = DeploymentService(db).list_deployments(actor_from_auth(auth), app_id=app_id)
    return [DeploymentService.serialize_deployment(d) for d in deployments]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_deployment(
    payload: DeploymentCreate,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        deployment = DeploymentService(db).create_deployment(
            payload.app_id,
            payload.deployment_name,
            actor_from_auth(auth),
            description=payload.description,
            mandatory=payload.mandatory,
        )
        return DeploymentService.serialize_deployment(deployment)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.get("/{deployment_id}")
def get_deployment(
    deployment_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    deployment = DeploymentService(db).get_deployment(deployment_id, actor_from_auth(auth))
    return DeploymentService.serialize_deployment(deployment)


@router.put("/{deployment_id}")
def update_deployment(
    deployment_id: UUID,
    payload: DeploymentUpdate,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        deployment = DeploymentService(db).update_deployment(
            deployment_id,
            actor_from_auth(auth),
            name=payload.deployment_name,
            description=payload.description,
            mandatory=payload.mandatory,
            status=payload.status,
        )
        return DeploymentService.serialize_deployment(deployment)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.post("/{deployment_id}/rotate-key")
def rotate_key(
    deployment_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        deployment = DeploymentService(db).rotate_key(deployment_id, actor_from_auth(auth))
        return DeploymentService.serialize_deployment(deployment)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.delete("/{deployment_id}")
def delete_deployment(
    deployment_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        DeploymentService(db).delete_deployment(deployment_id, actor_from_auth(auth))
        return {"deleted": str(deployment_id)}
    except ReleaseEngineError:
        db.rollback()
        raise

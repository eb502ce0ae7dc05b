"""Packages API — release, promote, roll back and manage packages."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

from release_engine.api.deps import actor_from_auth, get_db, require_user_auth
from release_engine.config import settings
from release_engine.errors import InvalidArgumentError, ReleaseEngineError
from release_engine.schemas.packages import PackagePromote, PackageRollback, PackageUpdate
from release_engine.services.package_service import PackageService

router = APIRouter(prefix="/packages", tags=["packages"])


@router.get("")
def list_packages(
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    packages = PackageService(db).list_all_packages(actor_from_auth(auth))
    return [PackageService.serialize_package(p) for p in packages]


@router.get("/deployment/{deployment_id}")
def list_deployment_packages(
    deployment_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    packages = PackageService(db).list_packages(deployment_id, actor_from_auth(auth))
    return [PackageService.serialize_package(p) for p in packages]


@router.get("/{package_id}")
def get_package(
    package_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    return PackageService.serialize_package(PackageService(db).get_package(package_id, actor_from_auth(auth)))


@router.post("/{deployment_id}/release", status_code=status.HTTP_201_CREATED)
async def release_package(
    deployment_id: UUID,
    file: UploadFile = File(...),
    app_version: str = Form(..., alias="appVersion"),
    description: str | None = Form(None),
    is_disabled: bool = Form(False, alias="isDisabled"),
    is_mandatory: bool | None = Form(None, alias="isMandatory"),
    rollout: int | None = Form(None),
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    content = await file.read(settings.package_max_size_bytes + 1)
    try:
        if len(content) > settings.package_max_size_bytes:
            raise InvalidArgumentError(
                f"Package too large. Maximum size: {settings.package_max_size_bytes // 1024 // 1024}MB"
            )
        package = PackageService(db).release_package(
            deployment_id,
            content,
            app_version,
            actor_from_auth(auth),
            description=description,
            is_disabled=is_disabled,
            is_mandatory=is_mandatory,
            rollout=rollout,
        )
        return PackageService.serialize_package(package)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.post("/{deployment_id}/promote", status_code=status.HTTP_201_CREATED)
def promote_package(
    deployment_id: UUID,
    payload: PackagePromote,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        package = PackageService(db).promote_package(
            deployment_id,
            payload.target_deployment_id,
            actor_from_auth(auth),
            label=payload.label,
            app_version=payload.app_version,
            description=payload.description,
            is_disabled=payload.is_disabled,
            is_mandatory=payload.is_mandatory,
            rollout=payload.rollout,
        )
        return PackageService.serialize_package(package)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.post("/{deployment_id}/rollback", status_code=status.HTTP_201_CREATED)
def rollback_package(
    deployment_id: UUID,
    payload: PackageRollback | None = None,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        package = PackageService(db).rollback_package(
            deployment_id,
            actor_from_auth(auth),
            target_label=payload.label if payload else None,
        )
        return PackageService.serialize_package(package)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.patch("/{package_id}")
def update_package(
    package_id: UUID,
    payload: PackageUpdate,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        package = PackageService(db).update_package(
            package_id,
            actor_from_auth(auth),
            app_version=payload.app_version,
            description=payload.description,
            is_disabled=payload.is_disabled,
            is_mandatory=payload.is_mandatory,
            rollout=payload.rollout,
        )
        return PackageService.serialize_package(package)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.patch("/{package_id}/toggle-status")
def toggle_package_status(
    package_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        package = PackageService(db).toggle_package_status(package_id, actor_from_auth(auth))
        return PackageService.serialize_package(package)
    except ReleaseEngineError:
        db.rollback()
        raise


@router.delete("/{package_id}")
def delete_package(
    package_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    try:
        PackageService(db).delete_package(package_id, actor_from_auth(auth))
        return {"deleted": str(package_id)}
    except ReleaseEngineError:
        db.rollback()
        raise

"""Deployment Service — release channels, their keys and status."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from release_engine.errors import ConflictError, InvalidArgumentError, NotFoundError
from release_engine.models.app import App
from release_engine.models.deployment import Deployment, DeploymentStatus
from release_engine.models.package import Package
from release_engine.models.status_report import DeviceActivePackage
from release_engine.services.audit_service import AuditService
from release_engine.services.common import Actor, ensure_owner, isoformat
from release_engine.services.hashing import generate_deployment_key

logger = logging.getLogger(__name__)


def _parse_status(value: str | DeploymentStatus) -> DeploymentStatus:
    if isinstance(value, DeploymentStatus):
        return value
    for status in DeploymentStatus:
        if value.strip().lower() in (status.value.lower(), status.name):
            return status
    raise InvalidArgumentError("Invalid status. Allowed: Active, Disabled")


class DeploymentService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    def create_deployment(
        self,
        app_id: UUID,
        name: str,
        actor: Actor,
        *,
        description: str | None = None,
        mandatory: bool = False,
    ) -> Deployment:
        from release_engine.services.app_service import AppService

        app = AppService(self.db).get_app(app_id, actor)
        name = (name or "").strip()
        if not name:
            raise InvalidArgumentError("Deployment name is required")
        self._ensure_name_available(app.app_id, name)
        deployment = Deployment(
            app_id=app.app_id,
            name=name,
            key=generate_deployment_key(),
            description=description,
            mandatory=bool(mandatory),
            status=DeploymentStatus.active,
        )
        self.db.add(deployment)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"Deployment '{name}' already exists for this app") from exc
        logger.info("Created deployment %s for app %s", deployment.deployment_id, app_id)
        self.audit.record(
            "create",
            "deployment",
            str(deployment.deployment_id),
            actor,
            {"name": name, "app_id": str(app_id)},
        )
        return deployment

    def list_deployments(self, actor: Actor | None = None, app_id: UUID | None = None) -> list[Deployment]:
        stmt = select(Deployment).join(App, App.app_id == Deployment.app_id)
        if actor is not None and not actor.is_admin:
            stmt = stmt.where(App.owner_id == actor.user_id)
        if app_id:
            stmt = stmt.where(Deployment.app_id == app_id)
        stmt = stmt.order_by(Deployment.created_at.desc())
        return list(self.db.scalars(stmt).all())

    def get_deployment(self, deployment_id: UUID, actor: Actor | None = None) -> Deployment:
        deployment = self.db.get(Deployment, deployment_id)
        if not deployment:
            raise NotFoundError("Deployment not found")
        ensure_owner(deployment.app.owner_id, actor)
        return deployment

    def get_by_key(self, key: str) -> Deployment | None:
        if not key:
            return None
        return self.db.scalar(select(Deployment).where(Deployment.key == key))

    def update_deployment(
        self,
        deployment_id: UUID,
        actor: Actor,
        *,
        name: str | None = None,
        description: str | None = None,
        mandatory: bool | None = None,
        status: str | None = None,
    ) -> Deployment:
        deployment = self.get_deployment(deployment_id, actor)
        changes: dict = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidArgumentError("Deployment name is required")
            if name != deployment.name:
                self._ensure_name_available(deployment.app_id, name)
                changes["name"] = {"from": deployment.name, "to": name}
                deployment.name = name
        if description is not None and description != deployment.description:
            changes["description"] = True
            deployment.description = description
        if mandatory is not None and bool(mandatory) != deployment.mandatory:
            changes["mandatory"] = bool(mandatory)
            deployment.mandatory = bool(mandatory)
        if status is not None:
            status_enum = _parse_status(status)
            if status_enum != deployment.status:
                changes["status"] = {"from": deployment.status.value, "to": status_enum.value}
                deployment.status = status_enum
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError("Deployment name already exists for this app") from exc
        self.audit.record("update", "deployment", str(deployment.deployment_id), actor, changes)
        return deployment

    def rotate_key(self, deployment_id: UUID, actor: Actor) -> Deployment:
        """Issue a new key; the old one stops resolving once this commits."""
        deployment = self.get_deployment(deployment_id, actor)
        deployment.key = generate_deployment_key()
        deployment.key_rotated_at = datetime.now(UTC)
        self.db.commit()
        logger.info("Rotated key for deployment %s", deployment_id)
        self.audit.record("update", "deployment", str(deployment_id), actor, {"rotated": "key"})
        return deployment

    def delete_deployment(self, deployment_id: UUID, actor: Actor) -> None:
        from release_engine.services.package_service import PackageService

        deployment = self.get_deployment(deployment_id, actor)
        name = deployment.name
        app_id = deployment.app_id
        hashes = set(self.db.scalars(select(Package.package_hash).where(Package.deployment_id == deployment_id)).all())
        self.db.execute(delete(DeviceActivePackage).where(DeviceActivePackage.deployment_id == deployment_id))
        self.db.delete(deployment)
        self.db.commit()
        PackageService(self.db).release_unreferenced_blobs(hashes)
        self.audit.record("delete", "deployment", str(deployment_id), actor, {"name": name, "app_id": str(app_id)})

    def _ensure_name_available(self, app_id: UUID, name: str) -> None:
        existing = self.db.scalar(
            select(Deployment.deployment_id).where(Deployment.app_id == app_id).where(Deployment.name == name)
        )
        if existing:
            raise ConflictError(f"Deployment '{name}' already exists for this app")

    @staticmethod
    def serialize_deployment(deployment: Deployment) -> dict:
        latest = deployment.packages[0] if deployment.packages else None
        return {
            "id": str(deployment.deployment_id),
            "appId": str(deployment.app_id),
            "appName": deployment.app.name if deployment.app else None,
            "deploymentName": deployment.name,
            "key": deployment.key,
            "description": deployment.description,
            "mandatory": deployment.mandatory,
            "status": deployment.status.value,
            "owner": (deployment.app.owner_email or deployment.app.owner_id) if deployment.app else None,
            "latestLabel": latest.label if latest else None,
            "releaseDate": isoformat(latest.created_at) if latest else None,
            "keyRotatedAt": isoformat(deployment.key_rotated_at),
            "createdAt": isoformat(deployment.created_at),
            "updatedAt": isoformat(deployment.updated_at),
        }

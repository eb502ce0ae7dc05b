"""App Service — create, update and delete apps owned by console users."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from release_engine.errors import ConflictError, InvalidArgumentError, NotFoundError
from release_engine.models.app import App, AppPlatform
from release_engine.models.package import Package
from release_engine.models.status_report import DeviceActivePackage
from release_engine.services.audit_service import AuditService
from release_engine.services.common import Actor, ensure_owner, isoformat

logger = logging.getLogger(__name__)


def _parse_platform(value: str | AppPlatform) -> AppPlatform:
    try:
        return AppPlatform(value)
    except ValueError as exc:
        allowed = ", ".join(p.value for p in AppPlatform)
        raise InvalidArgumentError(f"Invalid platform. Allowed: {allowed}") from exc


class AppService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    def create_app(
        self,
        name: str,
        platform: str,
        actor: Actor,
        description: str | None = None,
    ) -> App:
        name = (name or "").strip()
        if not name:
            raise InvalidArgumentError("App name is required")
        platform_enum = _parse_platform(platform)
        self._ensure_name_available(actor.user_id, name)
        app = App(
            name=name,
            platform=platform_enum,
            description=description,
            owner_id=actor.user_id,
            owner_email=actor.email,
        )
        self.db.add(app)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"App '{name}' already exists") from exc
        logger.info("Created app %s (%s)", app.app_id, name)
        self.audit.record("create", "app", str(app.app_id), actor, {"name": name, "platform": platform_enum.value})
        return app

    def list_apps(self, actor: Actor | None = None) -> list[App]:
        stmt = select(App)
        if actor is not None and not actor.is_admin:
            stmt = stmt.where(App.owner_id == actor.user_id)
        stmt = stmt.order_by(App.created_at.desc())
        return list(self.db.scalars(stmt).all())

    def get_app(self, app_id: UUID, actor: Actor | None = None) -> App:
        app = self.db.get(App, app_id)
        if not app:
            raise NotFoundError("App not found")
        ensure_owner(app.owner_id, actor)
        return app

    def update_app(
        self,
        app_id: UUID,
        actor: Actor,
        *,
        name: str | None = None,
        platform: str | None = None,
        description: str | None = None,
    ) -> App:
        app = self.get_app(app_id, actor)
        changes: dict = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidArgumentError("App name is required")
            if name != app.name:
                self._ensure_name_available(app.owner_id, name)
                changes["name"] = {"from": app.name, "to": name}
                app.name = name
        if platform is not None:
            platform_enum = _parse_platform(platform)
            if platform_enum != app.platform:
                changes["platform"] = {"from": app.platform.value, "to": platform_enum.value}
                app.platform = platform_enum
        if description is not None and description != app.description:
            changes["description"] = True
            app.description = description
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"App '{name}' already exists") from exc
        self.audit.record("update", "app", str(app.app_id), actor, changes)
        return app

    def delete_app(self, app_id: UUID, actor: Actor) -> None:
        from release_engine.services.package_service import PackageService

        app = self.get_app(app_id, actor)
        name = app.name
        deployment_ids = [d.deployment_id for d in app.deployments]
        hashes: set[str] = set()
        if deployment_ids:
            hashes = set(
                self.db.scalars(select(Package.package_hash).where(Package.deployment_id.in_(deployment_ids))).all()
            )
            self.db.execute(delete(DeviceActivePackage).where(DeviceActivePackage.deployment_id.in_(deployment_ids)))
        self.db.delete(app)
        self.db.commit()
        logger.info("Deleted app %s with %d deployments", app_id, len(deployment_ids))
        PackageService(self.db).release_unreferenced_blobs(hashes)
        self.audit.record(
            "delete",
            "app",
            str(app_id),
            actor,
            {"name": name, "deployments": [str(d) for d in deployment_ids]},
        )

    def _ensure_name_available(self, owner_id: str, name: str) -> None:
        existing = self.db.scalar(select(App.app_id).where(App.owner_id == owner_id).where(App.name == name))
        if existing:
            raise ConflictError(f"App '{name}' already exists")

    @staticmethod
    def serialize_app(app: App) -> dict:
        return {
            "id": str(app.app_id),
            "appName": app.name,
            "platform": app.platform.value,
            "description": app.description,
            "owner": app.owner_email or app.owner_id,
            "ownerId": app.owner_id,
            "deploymentCount": len(app.deployments),
            "createdAt": isoformat(app.created_at),
            "updatedAt": isoformat(app.updated_at),
        }


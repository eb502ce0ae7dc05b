"""Package Service — release, promote, roll back and retire packages.

Labels come from the deployment's ``last_label`` counter, advanced with a
compare-and-swap in the same transaction as the package insert. The unique
``(deployment_id, label_number)`` constraint is the final arbiter: a
collision rolls the whole release back and surfaces as ``ConflictError``.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from release_engine.config import settings
from release_engine.errors import ConflictError, InternalError, InvalidArgumentError, NotFoundError
from release_engine.metrics import LABEL_CONFLICTS, PACKAGES_RELEASED
from release_engine.models.app import App
from release_engine.models.deployment import Deployment
from release_engine.models.package import Package, PackageTombstone, ReleaseMethod, parse_label
from release_engine.observability import report_error
from release_engine.services.audit_service import AuditService
from release_engine.services.blob_store import BlobStore, get_blob_store
from release_engine.services.common import Actor, ensure_owner, isoformat
from release_engine.services.hashing import compute_package_hash
from release_engine.services.semver import is_valid_range

logger = logging.getLogger(__name__)

_LABEL_ALLOCATION_ATTEMPTS = 3


def validate_app_version(value: str | None) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidArgumentError("appVersion is required")
    if not is_valid_range(value):
        raise InvalidArgumentError(f"Invalid appVersion: {value!r}")
    return value


def validate_rollout(value: int | None) -> int:
    if value is None:
        return 100
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError("Rollout must be an integer between 1 and 100")
    if value < 1 or value > 100:
        raise InvalidArgumentError("Rollout must be an integer between 1 and 100")
    return value


class PackageService:
    def __init__(self, db: Session, blob_store: BlobStore | None = None):
        self.db = db
        self.blob_store = blob_store or get_blob_store()
        self.audit = AuditService(db)

    # Releases
    def release_package(
        self,
        deployment_id: UUID,
        content: bytes,
        app_version: str,
        actor: Actor,
        *,
        description: str | None = None,
        is_disabled: bool = False,
        is_mandatory: bool | None = None,
        rollout: int | None = None,
    ) -> Package:
        deployment = self._get_deployment(deployment_id, actor)
        if not content:
            raise InvalidArgumentError("Package file is required")
        if len(content) > settings.package_max_size_bytes:
            raise InvalidArgumentError(
                f"Package too large. Maximum size: {settings.package_max_size_bytes // 1024 // 1024}MB"
            )
        app_version = validate_app_version(app_version)
        rollout = validate_rollout(rollout)
        package_hash = compute_package_hash(content)
        self._ensure_not_identical_to_latest(deployment, package_hash)

        blob_url = self.blob_store.put(content, package_hash)
        try:
            package = self._create_package(
                deployment,
                actor,
                app_version=app_version,
                description=description,
                package_hash=package_hash,
                blob_url=blob_url,
                size=len(content),
                is_disabled=bool(is_disabled),
                is_mandatory=deployment.mandatory if is_mandatory is None else bool(is_mandatory),
                rollout=rollout,
                release_method=ReleaseMethod.upload,
            )
        except ConflictError:
            self.release_unreferenced_blobs({package_hash})
            raise
        return package

    def promote_package(
        self,
        source_deployment_id: UUID,
        target_deployment_id: UUID,
        actor: Actor,
        *,
        label: str | None = None,
        app_version: str | None = None,
        description: str | None = None,
        is_disabled: bool | None = None,
        is_mandatory: bool | None = None,
        rollout: int | None = None,
    ) -> Package:
        source = self._get_deployment(source_deployment_id, actor)
        target = self._get_deployment(target_deployment_id, actor)
        if source.deployment_id == target.deployment_id:
            raise InvalidArgumentError("Cannot promote a deployment to itself")
        if source.app_id != target.app_id:
            raise InvalidArgumentError("Deployments belong to different apps")

        if label:
            label_number = parse_label(label)
            if label_number is None:
                raise InvalidArgumentError(f"Invalid label: {label!r}")
            package = self._package_by_label(source.deployment_id, label_number)
        else:
            package = self._latest_package(source.deployment_id)
        if not package:
            raise NotFoundError("Source deployment has no package to promote")
        self._ensure_not_identical_to_latest(target, package.package_hash)

        return self._create_package(
            target,
            actor,
            app_version=validate_app_version(app_version) if app_version else package.app_version,
            description=description if description is not None else package.description,
            package_hash=package.package_hash,
            blob_url=package.blob_url,
            size=package.size,
            is_disabled=package.is_disabled if is_disabled is None else bool(is_disabled),
            is_mandatory=package.is_mandatory if is_mandatory is None else bool(is_mandatory),
            rollout=validate_rollout(rollout),
            release_method=ReleaseMethod.promote,
            released_from=f"{source.name}:{package.label}",
        )

    def rollback_package(
        self,
        deployment_id: UUID,
        actor: Actor,
        *,
        target_label: str | None = None,
    ) -> Package:
        """Re-release an earlier label's content as a new label."""
        deployment = self._get_deployment(deployment_id, actor)
        latest = self._latest_package(deployment.deployment_id)
        if not latest:
            raise NotFoundError("Deployment has no packages to roll back")

        if target_label:
            label_number = parse_label(target_label)
            if label_number is None:
                raise InvalidArgumentError(f"Invalid label: {target_label!r}")
            if label_number >= latest.label_number:
                raise InvalidArgumentError("Rollback target must be older than the latest release")
            target = self._package_by_label(deployment.deployment_id, label_number)
            if not target:
                raise NotFoundError(f"Package {target_label} not found")
        else:
            target = self.db.scalar(
                select(Package)
                .where(Package.deployment_id == deployment.deployment_id)
                .where(Package.label_number < latest.label_number)
                .order_by(Package.label_number.desc())
                .limit(1)
            )
            if not target:
                raise ConflictError("No earlier release to roll back to")
        if target.package_hash == latest.package_hash:
            raise ConflictError("Rollback target is identical to the latest release")

        return self._create_package(
            deployment,
            actor,
            app_version=target.app_version,
            description=target.description,
            package_hash=target.package_hash,
            blob_url=target.blob_url,
            size=target.size,
            is_disabled=False,
            is_mandatory=target.is_mandatory,
            rollout=100,
            release_method=ReleaseMethod.rollback,
            released_from=target.label,
        )

    # Queries
    def list_packages(self, deployment_id: UUID, actor: Actor | None = None) -> list[Package]:
        deployment = self._get_deployment(deployment_id, actor)
        stmt = (
            select(Package)
            .where(Package.deployment_id == deployment.deployment_id)
            .order_by(Package.label_number.desc())
        )
        return list(self.db.scalars(stmt).all())

    def list_all_packages(self, actor: Actor | None = None) -> list[Package]:
        stmt = (
            select(Package)
            .join(Deployment, Deployment.deployment_id == Package.deployment_id)
            .join(App, App.app_id == Deployment.app_id)
        )
        if actor is not None and not actor.is_admin:
            stmt = stmt.where(App.owner_id == actor.user_id)
        stmt = stmt.order_by(Package.created_at.desc())
        return list(self.db.scalars(stmt).all())

    def get_package(self, package_id: UUID, actor: Actor | None = None) -> Package:
        package = self.db.get(Package, package_id)
        if not package:
            raise NotFoundError("Package not found")
        ensure_owner(package.deployment.app.owner_id, actor)
        return package

    # Mutations
    def update_package(
        self,
        package_id: UUID,
        actor: Actor,
        *,
        app_version: str | None = None,
        description: str | None = None,
        is_disabled: bool | None = None,
        is_mandatory: bool | None = None,
        rollout: int | None = None,
    ) -> Package:
        package = self.get_package(package_id, actor)
        changes: dict = {}
        if app_version is not None:
            app_version = validate_app_version(app_version)
            if app_version != package.app_version:
                changes["appVersion"] = {"from": package.app_version, "to": app_version}
                package.app_version = app_version
        if description is not None and description != package.description:
            changes["description"] = True
            package.description = description
        if is_disabled is not None and bool(is_disabled) != package.is_disabled:
            changes["isDisabled"] = bool(is_disabled)
            package.is_disabled = bool(is_disabled)
        if is_mandatory is not None and bool(is_mandatory) != package.is_mandatory:
            changes["isMandatory"] = bool(is_mandatory)
            package.is_mandatory = bool(is_mandatory)
        if rollout is not None:
            rollout = validate_rollout(rollout)
            if rollout < package.rollout:
                raise InvalidArgumentError("Rollout cannot be decreased")
            if rollout != package.rollout:
                changes["rollout"] = {"from": package.rollout, "to": rollout}
                package.rollout = rollout
        self.db.commit()
        self.audit.record("update", "package", str(package.package_id), actor, {"label": package.label, **changes})
        return package

    def toggle_package_status(self, package_id: UUID, actor: Actor) -> Package:
        """Flip ``is_disabled``; only future update checks are affected."""
        package = self.get_package(package_id, actor)
        package.is_disabled = not package.is_disabled
        self.db.commit()
        logger.info("Package %s is_disabled=%s", package_id, package.is_disabled)
        self.audit.record(
            "toggle",
            "package",
            str(package.package_id),
            actor,
            {"label": package.label, "isDisabled": package.is_disabled},
        )
        return package

    def delete_package(self, package_id: UUID, actor: Actor) -> None:
        package = self.get_package(package_id, actor)
        package_hash = package.package_hash
        label = package.label
        tombstone = PackageTombstone(
            package_id=package.package_id,
            deployment_id=package.deployment_id,
            label_number=package.label_number,
            app_version=package.app_version,
            package_hash=package.package_hash,
            size=package.size,
            deleted_by=actor.email or actor.user_id,
        )
        self.db.add(tombstone)
        self.db.delete(package)
        self.db.commit()
        self.release_unreferenced_blobs({package_hash})
        self.audit.record("delete", "package", str(package_id), actor, {"label": label, "packageHash": package_hash})

    def release_unreferenced_blobs(self, hashes: set[str]) -> None:
        """Delete blobs no remaining package points at; failures are reported."""
        for package_hash in hashes:
            still_used = self.db.scalar(select(Package.package_id).where(Package.package_hash == package_hash).limit(1))
            if still_used:
                continue
            try:
                self.blob_store.delete(package_hash)
            except InternalError as exc:
                report_error(exc, source="blob_store", package_hash=package_hash)

    # Internals
    def _get_deployment(self, deployment_id: UUID, actor: Actor | None) -> Deployment:
        deployment = self.db.get(Deployment, deployment_id)
        if not deployment:
            raise NotFoundError("Deployment not found")
        ensure_owner(deployment.app.owner_id, actor)
        return deployment

    def _latest_package(self, deployment_id: UUID) -> Package | None:
        return self.db.scalar(
            select(Package)
            .where(Package.deployment_id == deployment_id)
            .order_by(Package.label_number.desc())
            .limit(1)
        )

    def _package_by_label(self, deployment_id: UUID, label_number: int) -> Package | None:
        return self.db.scalar(
            select(Package).where(Package.deployment_id == deployment_id).where(Package.label_number == label_number)
        )

    def _ensure_not_identical_to_latest(self, deployment: Deployment, package_hash: str) -> None:
        latest = self._latest_package(deployment.deployment_id)
        if latest and latest.package_hash == package_hash:
            raise ConflictError(
                f"Package is identical to the current release ({latest.label}) of deployment '{deployment.name}'"
            )

    def _allocate_label(self, deployment_id: UUID) -> int:
        for _ in range(_LABEL_ALLOCATION_ATTEMPTS):
            seen = self.db.scalar(select(Deployment.last_label).where(Deployment.deployment_id == deployment_id))
            if seen is None:
                raise NotFoundError("Deployment not found")
            result = self.db.execute(
                update(Deployment)
                .where(Deployment.deployment_id == deployment_id)
                .where(Deployment.last_label == seen)
                .values(last_label=seen + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return seen + 1
            LABEL_CONFLICTS.inc()
            logger.info("Label counter moved under us for deployment %s, retrying", deployment_id)
        self.db.rollback()
        raise ConflictError("Concurrent release in progress, retry the release")

    def _create_package(self, deployment: Deployment, actor: Actor, **fields) -> Package:
        deployment_id = deployment.deployment_id
        label_number = self._allocate_label(deployment_id)
        package = Package(
            deployment_id=deployment_id,
            label_number=label_number,
            uploaded_by=actor.email or actor.user_id,
            **fields,
        )
        self.db.add(package)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            LABEL_CONFLICTS.inc()
            raise ConflictError(f"Label v{label_number} is already taken in this deployment, retry the release") from exc
        PACKAGES_RELEASED.labels(release_method=package.release_method.value).inc()
        logger.info(
            "Released %s to deployment %s (%s)",
            package.label,
            deployment_id,
            package.release_method.value,
            extra={"deployment_id": str(deployment_id), "package_id": str(package.package_id)},
        )
        self.audit.record(
            "create",
            "package",
            str(package.package_id),
            actor,
            {
                "label": package.label,
                "appVersion": package.app_version,
                "releaseMethod": package.release_method.value,
                "rollout": package.rollout,
            },
        )
        return package

    @staticmethod
    def serialize_package(package: Package) -> dict:
        return {
            "id": str(package.package_id),
            "deployment": str(package.deployment_id),
            "label": package.label,
            "appVersion": package.app_version,
            "description": package.description,
            "packageHash": package.package_hash,
            "blobUrl": package.blob_url,
            "size": package.size,
            "releaseMethod": package.release_method.value,
            "releasedFrom": package.released_from,
            "isDisabled": package.is_disabled,
            "isMandatory": package.is_mandatory,
            "rollout": package.rollout,
            "uploadedBy": package.uploaded_by,
            "createdAt": isoformat(package.created_at),
            "updatedAt": isoformat(package.updated_at),
        }

"""Rollout Resolver — answers a device's update check."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from release_engine.errors import InvalidArgumentError, NotFoundError
from release_engine.metrics import UPDATE_CHECKS
from release_engine.models.deployment import DeploymentStatus
from release_engine.models.package import Package, parse_label
from release_engine.services.deployment_service import DeploymentService
from release_engine.services.hashing import compute_bucket, is_in_rollout
from release_engine.services.semver import Version, parse_version, satisfies

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateCheckResult:
    is_available: bool
    package: Package | None = None
    must_install: bool = False
    bucket: int | None = None


def _compatible(package: Package, device_version: Version) -> bool:
    try:
        return satisfies(device_version, package.app_version)
    except ValueError:
        logger.warning("Package %s has an unparseable appVersion %r", package.package_id, package.app_version)
        return False


class RolloutResolver:
    def __init__(self, db: Session):
        self.db = db

    def resolve(
        self,
        deployment_key: str,
        client_unique_id: str,
        current_package_hash: str | None,
        current_app_version: str,
        current_label: str | None = None,
    ) -> UpdateCheckResult:
        deployment = DeploymentService(self.db).get_by_key(deployment_key)
        if not deployment or deployment.status == DeploymentStatus.disabled:
            UPDATE_CHECKS.labels(outcome="not_found").inc()
            raise NotFoundError("Deployment not found")
        device_version = parse_version(current_app_version)
        if device_version is None:
            UPDATE_CHECKS.labels(outcome="invalid").inc()
            raise InvalidArgumentError(f"Invalid appVersion: {current_app_version!r}")
        if not client_unique_id:
            UPDATE_CHECKS.labels(outcome="invalid").inc()
            raise InvalidArgumentError("clientUniqueId is required")

        packages = self.db.scalars(
            select(Package)
            .where(Package.deployment_id == deployment.deployment_id)
            .where(Package.is_disabled.is_(False))
            .order_by(Package.label_number.desc())
        ).all()
        candidates = [p for p in packages if _compatible(p, device_version)]
        device_label = parse_label(current_label)

        def already_has(package: Package) -> bool:
            if current_package_hash and current_package_hash == package.package_hash:
                return True
            return device_label is not None and device_label >= package.label_number

        bucket = compute_bucket(deployment_key, client_unique_id)
        for package in candidates:
            if already_has(package):
                break
            if is_in_rollout(bucket, package.rollout):
                UPDATE_CHECKS.labels(outcome="update").inc()
                return UpdateCheckResult(
                    is_available=True,
                    package=package,
                    must_install=bool(package.is_mandatory),
                    bucket=bucket,
                )
        UPDATE_CHECKS.labels(outcome="no_update").inc()
        return UpdateCheckResult(is_available=False, bucket=bucket)


def serialize_update_check(result: UpdateCheckResult) -> dict:
    if not result.is_available or result.package is None:
        return {"isAvailable": False}
    package = result.package
    return {
        "isAvailable": True,
        "packageHash": package.package_hash,
        "downloadUrl": package.blob_url,
        "label": package.label,
        "isMandatory": result.must_install,
        "description": package.description,
        "rollout": package.rollout,
        "appVersion": package.app_version,
        "packageSize": package.size,
    }

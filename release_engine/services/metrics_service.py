"""Metrics Aggregator — read-only views over the report log and device pointers.

Nothing here is stored: every number is an aggregate query over
``status_reports`` or ``device_active_packages``. Reports and pointers are
keyed by ``(deployment_id, label_number)`` so that promoted and rolled-back
releases sharing a content hash are still counted per label.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from release_engine.config import settings
from release_engine.errors import NotFoundError
from release_engine.models.app import App
from release_engine.models.audit_log import AuditLogEntry
from release_engine.models.deployment import Deployment
from release_engine.models.package import Package, PackageTombstone, format_label
from release_engine.models.status_report import DeviceActivePackage, ReportStatus, StatusReport
from release_engine.services.common import Actor, ensure_owner, isoformat, percent

logger = logging.getLogger(__name__)

_PAST_TENSE = {"create": "created", "update": "updated", "delete": "deleted", "toggle": "toggled"}


@dataclass(frozen=True)
class _PackageView:
    package_id: UUID
    deployment_id: UUID
    label_number: int
    package_hash: str
    app_version: str
    deleted: bool


@dataclass(frozen=True)
class _Scope:
    """Which reports and pointers a summary covers."""

    deployment_ids: object | None = None
    label_number: int | None = None


def _empty_counts() -> dict[ReportStatus, int]:
    return {status: 0 for status in ReportStatus}


class MetricsService:
    def __init__(self, db: Session):
        self.db = db

    # Package
    def package_metrics(self, package_id: UUID, actor: Actor | None = None) -> dict:
        view = self._package_view(package_id, actor)
        counts = self._report_counts(view.deployment_id, view.label_number).get(view.label_number, _empty_counts())
        active = self._active_counts(view.deployment_id).get(view.label_number, 0)
        seen = self._devices_seen(view.deployment_id)
        return self._serialize_package_metrics(view, counts, active, seen)

    # Deployment
    def deployment_metrics(self, deployment_id: UUID, actor: Actor | None = None) -> dict:
        deployment = self.db.get(Deployment, deployment_id)
        if not deployment:
            raise NotFoundError("Deployment not found")
        ensure_owner(deployment.app.owner_id, actor)

        counts = self._report_counts(deployment.deployment_id)
        active = self._active_counts(deployment.deployment_id)
        seen = self._devices_seen(deployment.deployment_id)
        packages = self.db.scalars(
            select(Package)
            .where(Package.deployment_id == deployment.deployment_id)
            .order_by(Package.label_number.desc())
        ).all()

        total_active = sum(active.values())
        return {
            "deploymentId": str(deployment.deployment_id),
            "deploymentName": deployment.name,
            "deploymentKey": deployment.key,
            "totalActiveDevices": total_active,
            "packages": [
                self._serialize_package_metrics(
                    self._view_of(package),
                    counts.get(package.label_number, _empty_counts()),
                    active.get(package.label_number, 0),
                    seen,
                )
                for package in packages
            ],
            "versionDistribution": self._version_distribution(deployment.deployment_id, total_active),
        }

    def _version_distribution(self, deployment_id: UUID, total_active: int) -> list[dict]:
        stmt = (
            select(
                DeviceActivePackage.app_version,
                DeviceActivePackage.label_number,
                func.count(DeviceActivePackage.pointer_id),
            )
            .where(DeviceActivePackage.deployment_id == deployment_id)
            .where(DeviceActivePackage.label_number.is_not(None))
            .group_by(DeviceActivePackage.app_version, DeviceActivePackage.label_number)
        )
        rows = sorted(self.db.execute(stmt).all(), key=lambda r: (-r[2], -(r[1] or 0), r[0] or ""))
        return [
            {
                "appVersion": app_version,
                "packageLabel": format_label(label_number),
                "deviceCount": count,
                "percentage": percent(count, total_active) or 0,
            }
            for app_version, label_number, count in rows
        ]

    # Summary
    def summary(
        self,
        actor: Actor | None = None,
        *,
        deployment_id: UUID | None = None,
        package_id: UUID | None = None,
    ) -> dict:
        scope = self._scope(actor, deployment_id, package_id)

        counts_stmt = self._scoped(
            select(StatusReport.status, func.count(StatusReport.report_id)).group_by(StatusReport.status),
            StatusReport,
            scope,
        )
        counts = _empty_counts()
        for status, count in self.db.execute(counts_stmt).all():
            counts[ReportStatus(status)] = count

        unique_devices = self.db.scalar(
            self._scoped(select(func.count(func.distinct(StatusReport.client_unique_id))), StatusReport, scope)
        )
        active_devices = self.db.scalar(
            self._scoped(
                select(func.count(func.distinct(DeviceActivePackage.client_unique_id))).where(
                    DeviceActivePackage.label_number.is_not(None)
                ),
                DeviceActivePackage,
                scope,
            )
        )
        last_reported_at = self.db.scalar(self._scoped(select(func.max(StatusReport.reported_at)), StatusReport, scope))

        payload = {
            "totalDownloads": counts[ReportStatus.downloaded],
            "totalInstalls": counts[ReportStatus.deployed],
            "totalConfirmed": active_devices or 0,
            "totalFailed": counts[ReportStatus.failed],
            "totalRollbacks": counts[ReportStatus.rolled_back],
            "uniqueDevices": unique_devices or 0,
            "activeDevices": active_devices or 0,
        }
        if last_reported_at is not None:
            payload["lastReportedAt"] = isoformat(last_reported_at)
        return payload

    def _scope(self, actor: Actor | None, deployment_id: UUID | None, package_id: UUID | None) -> _Scope:
        if package_id is not None:
            view = self._package_view(package_id, actor)
            return _Scope(deployment_ids=[view.deployment_id], label_number=view.label_number)
        if deployment_id is not None:
            deployment = self.db.get(Deployment, deployment_id)
            if not deployment:
                raise NotFoundError("Deployment not found")
            ensure_owner(deployment.app.owner_id, actor)
            return _Scope(deployment_ids=[deployment.deployment_id])
        if actor is None or actor.is_admin:
            return _Scope()
        owned = select(Deployment.deployment_id).join(App, App.app_id == Deployment.app_id)
        return _Scope(deployment_ids=owned.where(App.owner_id == actor.user_id))

    @staticmethod
    def _scoped(stmt, model, scope: _Scope):
        if scope.deployment_ids is not None:
            stmt = stmt.where(model.deployment_id.in_(scope.deployment_ids))
        if scope.label_number is not None:
            stmt = stmt.where(model.label_number == scope.label_number)
        return stmt

    # Dashboard
    def dashboard(self, actor: Actor | None = None) -> dict:
        restrict = actor is not None and not actor.is_admin

        apps_stmt = select(func.count(App.app_id))
        deployments_stmt = select(func.count(Deployment.deployment_id)).join(App, App.app_id == Deployment.app_id)
        packages_stmt = (
            select(func.count(Package.package_id))
            .join(Deployment, Deployment.deployment_id == Package.deployment_id)
            .join(App, App.app_id == Deployment.app_id)
        )
        active_stmt = (
            select(func.count(DeviceActivePackage.pointer_id))
            .join(Deployment, Deployment.deployment_id == DeviceActivePackage.deployment_id)
            .join(App, App.app_id == Deployment.app_id)
            .where(DeviceActivePackage.label_number.is_not(None))
        )
        activity_stmt = select(AuditLogEntry)
        if restrict:
            apps_stmt = apps_stmt.where(App.owner_id == actor.user_id)
            deployments_stmt = deployments_stmt.where(App.owner_id == actor.user_id)
            packages_stmt = packages_stmt.where(App.owner_id == actor.user_id)
            active_stmt = active_stmt.where(App.owner_id == actor.user_id)
            activity_stmt = activity_stmt.where(AuditLogEntry.user_id == actor.user_id)
        activity_stmt = activity_stmt.order_by(AuditLogEntry.created_at.desc()).limit(
            settings.audit_recent_activity_limit
        )

        return {
            "totalApps": self.db.scalar(apps_stmt) or 0,
            "totalDeployments": self.db.scalar(deployments_stmt) or 0,
            "totalPackages": self.db.scalar(packages_stmt) or 0,
            "totalActiveDevices": self.db.scalar(active_stmt) or 0,
            "recentActivity": [self._activity(entry) for entry in self.db.scalars(activity_stmt).all()],
        }

    @staticmethod
    def _activity(entry: AuditLogEntry) -> dict:
        who = entry.user_email or entry.user_id or "system"
        details = entry.details or {}
        subject = details.get("name") or details.get("label") or entry.entity_id
        verb = _PAST_TENSE.get(entry.action, entry.action)
        return {
            "type": entry.entity,
            "message": f"{who} {verb} {entry.entity} {subject}".strip(),
            "timestamp": isoformat(entry.created_at),
        }

    # Aggregates
    def _report_counts(
        self, deployment_id: UUID, label_number: int | None = None
    ) -> dict[int, dict[ReportStatus, int]]:
        stmt = (
            select(StatusReport.label_number, StatusReport.status, func.count(StatusReport.report_id))
            .where(StatusReport.deployment_id == deployment_id)
            .where(StatusReport.label_number.is_not(None))
            .group_by(StatusReport.label_number, StatusReport.status)
        )
        if label_number is not None:
            stmt = stmt.where(StatusReport.label_number == label_number)
        counts: dict[int, dict[ReportStatus, int]] = defaultdict(_empty_counts)
        for label, status, count in self.db.execute(stmt).all():
            counts[label][ReportStatus(status)] = count
        return counts

    def _active_counts(self, deployment_id: UUID) -> dict[int, int]:
        stmt = (
            select(DeviceActivePackage.label_number, func.count(DeviceActivePackage.pointer_id))
            .where(DeviceActivePackage.deployment_id == deployment_id)
            .where(DeviceActivePackage.label_number.is_not(None))
            .group_by(DeviceActivePackage.label_number)
        )
        return {label: count for label, count in self.db.execute(stmt).all()}

    def _devices_seen(self, deployment_id: UUID) -> int:
        stmt = select(func.count(func.distinct(StatusReport.client_unique_id))).where(
            StatusReport.deployment_id == deployment_id
        )
        return self.db.scalar(stmt) or 0

    def _package_view(self, package_id: UUID, actor: Actor | None) -> _PackageView:
        package = self.db.get(Package, package_id)
        if package is not None:
            ensure_owner(package.deployment.app.owner_id, actor)
            return self._view_of(package)
        tombstone = self.db.get(PackageTombstone, package_id)
        if tombstone is None:
            raise NotFoundError("Package not found")
        deployment = self.db.get(Deployment, tombstone.deployment_id)
        if deployment is None:
            raise NotFoundError("Package not found")
        ensure_owner(deployment.app.owner_id, actor)
        return _PackageView(
            package_id=tombstone.package_id,
            deployment_id=tombstone.deployment_id,
            label_number=tombstone.label_number,
            package_hash=tombstone.package_hash,
            app_version=tombstone.app_version,
            deleted=True,
        )

    @staticmethod
    def _view_of(package: Package) -> _PackageView:
        return _PackageView(
            package_id=package.package_id,
            deployment_id=package.deployment_id,
            label_number=package.label_number,
            package_hash=package.package_hash,
            app_version=package.app_version,
            deleted=False,
        )

    @staticmethod
    def _serialize_package_metrics(
        view: _PackageView, counts: dict[ReportStatus, int], active: int, seen: int
    ) -> dict:
        payload = {
            "packageId": str(view.package_id),
            "label": format_label(view.label_number),
            "packageHash": view.package_hash,
            "appVersion": view.app_version,
            "totalDownloads": counts[ReportStatus.downloaded],
            "totalInstalls": counts[ReportStatus.deployed],
            "totalConfirmed": active,
            "totalFailed": counts[ReportStatus.failed],
            "totalRollbacks": counts[ReportStatus.rolled_back],
            "activeDevices": active,
            "packageDeleted": view.deleted,
        }
        adoption = percent(active, seen)
        if adoption is not None:
            payload["adoptionRate"] = adoption
        return payload

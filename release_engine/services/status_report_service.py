"""Status Report Ingestor — appends device reports and keeps device pointers.

The report log is the source of truth. ``device_active_packages`` is a
projection of it, advanced incrementally on ingest and rebuilt by replay
when a report arrives out of order.
"""

from __future__ import annotations

import hashlib
import itertools
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from release_engine.errors import ConflictError, InvalidArgumentError, NotFoundError
from release_engine.metrics import STATUS_REPORTS
from release_engine.models.package import Package, PackageTombstone, parse_label
from release_engine.models.status_report import DeviceActivePackage, ReportStatus, StatusReport
from release_engine.services.common import as_utc
from release_engine.services.deployment_service import DeploymentService

logger = logging.getLogger(__name__)

POINTER_STATUSES = (ReportStatus.deployed, ReportStatus.rolled_back)


@dataclass(frozen=True)
class StatusReportInput:
    deployment_key: str
    client_unique_id: str
    status: str
    package_hash: str | None = None
    label: str | None = None
    app_version: str | None = None
    previous_label_or_app_version: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class IngestResult:
    report_id: int
    duplicate: bool


@dataclass(frozen=True)
class _PackageRef:
    package_hash: str
    label_number: int
    app_version: str


def parse_report_status(value: str | ReportStatus) -> ReportStatus:
    if isinstance(value, ReportStatus):
        return value
    raw = str(value or "").strip().upper()
    try:
        return ReportStatus(raw)
    except ValueError as exc:
        raise InvalidArgumentError(f"Invalid status: {value!r}") from exc


def compute_report_key(
    deployment_id: UUID,
    client_unique_id: str,
    package_hash: str | None,
    status: ReportStatus,
    reported_at: datetime,
) -> str:
    parts = [str(deployment_id), client_unique_id, package_hash or "", status.value, as_utc(reported_at).isoformat()]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


def _sequence(reported_at: datetime, report_id: int) -> tuple[datetime, int]:
    return as_utc(reported_at), report_id


def _reset(pointer: DeviceActivePackage) -> None:
    pointer.package_hash = None
    pointer.label_number = None
    pointer.app_version = None
    pointer.previous_package_hash = None
    pointer.previous_label_number = None
    pointer.previous_app_version = None


def _is_current(pointer: DeviceActivePackage, report: StatusReport) -> bool:
    return pointer.label_number == report.label_number and pointer.package_hash == report.package_hash


def _apply(pointer: DeviceActivePackage, report: StatusReport) -> None:
    """Advance ``pointer`` by one report.

    A rollback only reverts the package the device is running; a rollback
    naming any other package (or a repeated one) just records the report.
    """
    if report.status == ReportStatus.deployed:
        same = pointer.package_hash == report.package_hash and pointer.label_number == report.label_number
        if not same:
            pointer.previous_package_hash = pointer.package_hash
            pointer.previous_label_number = pointer.label_number
            pointer.previous_app_version = pointer.app_version
            pointer.package_hash = report.package_hash
            pointer.label_number = report.label_number
        pointer.app_version = report.app_version
    elif report.status == ReportStatus.rolled_back and _is_current(pointer, report):
        pointer.package_hash = pointer.previous_package_hash
        pointer.label_number = pointer.previous_label_number
        pointer.app_version = pointer.previous_app_version
        pointer.previous_package_hash = None
        pointer.previous_label_number = None
        pointer.previous_app_version = None
    pointer.last_report_id = report.report_id
    pointer.last_reported_at = report.reported_at


class StatusReportService:
    def __init__(self, db: Session):
        self.db = db

    def ingest(self, report: StatusReportInput) -> IngestResult:
        status = parse_report_status(report.status)
        if not report.client_unique_id:
            raise InvalidArgumentError("clientUniqueId is required")
        try:
            return self._ingest_once(report, status)
        except IntegrityError:
            # Lost a race on the report key or the pointer row; one retry
            # sees the winner's rows.
            self.db.rollback()
            logger.info("Concurrent status report for %s, retrying", report.client_unique_id)
        try:
            return self._ingest_once(report, status)
        except IntegrityError as exc:
            self.db.rollback()
            STATUS_REPORTS.labels(status=status.value, outcome="conflict").inc()
            raise ConflictError("Concurrent status report, retry") from exc

    def _ingest_once(self, report: StatusReportInput, status: ReportStatus) -> IngestResult:
        deployment = DeploymentService(self.db).get_by_key(report.deployment_key)
        if not deployment:
            STATUS_REPORTS.labels(status=status.value, outcome="not_found").inc()
            raise NotFoundError("Deployment not found")
        ref = self._identify_package(deployment.deployment_id, report.package_hash, report.label)
        reported_at = as_utc(report.timestamp) or datetime.now(UTC)
        package_hash = ref.package_hash if ref else None
        report_key = compute_report_key(
            deployment.deployment_id, report.client_unique_id, package_hash, status, reported_at
        )

        existing = self.db.scalar(select(StatusReport.report_id).where(StatusReport.report_key == report_key))
        if existing is not None:
            STATUS_REPORTS.labels(status=status.value, outcome="duplicate").inc()
            return IngestResult(report_id=existing, duplicate=True)

        row = StatusReport(
            report_key=report_key,
            deployment_id=deployment.deployment_id,
            deployment_key=report.deployment_key,
            client_unique_id=report.client_unique_id,
            package_hash=package_hash,
            label_number=ref.label_number if ref else None,
            app_version=report.app_version or (ref.app_version if ref else None),
            previous_label_or_app_version=report.previous_label_or_app_version,
            status=status,
            reported_at=reported_at,
        )
        self.db.add(row)
        self.db.flush()
        if status in POINTER_STATUSES:
            self._advance_pointer(row)
        self.db.commit()
        STATUS_REPORTS.labels(status=status.value, outcome="accepted").inc()
        logger.info(
            "Status %s from %s",
            status.value,
            report.client_unique_id,
            extra={"deployment_id": str(deployment.deployment_id), "client_unique_id": report.client_unique_id},
        )
        return IngestResult(report_id=row.report_id, duplicate=False)

    def _identify_package(self, deployment_id: UUID, package_hash: str | None, label: str | None) -> _PackageRef | None:
        if label:
            label_number = parse_label(label)
            if label_number is None:
                raise InvalidArgumentError(f"Invalid label: {label!r}")
            ref = self._ref_by_label(deployment_id, label_number)
            if ref is None:
                raise NotFoundError(f"Package {label} not found in deployment")
            if package_hash and package_hash != ref.package_hash:
                raise InvalidArgumentError(f"packageHash does not match label {label}")
            return ref
        if package_hash:
            ref = self._ref_by_hash(deployment_id, package_hash)
            if ref is None:
                raise NotFoundError("Package hash not found in deployment")
            return ref
        return None

    def _ref_by_label(self, deployment_id: UUID, label_number: int) -> _PackageRef | None:
        for model in (Package, PackageTombstone):
            row = self.db.scalar(
                select(model).where(model.deployment_id == deployment_id).where(model.label_number == label_number)
            )
            if row is not None:
                return _PackageRef(row.package_hash, row.label_number, row.app_version)
        return None

    def _ref_by_hash(self, deployment_id: UUID, package_hash: str) -> _PackageRef | None:
        found = []
        for model in (Package, PackageTombstone):
            row = self.db.scalar(
                select(model)
                .where(model.deployment_id == deployment_id)
                .where(model.package_hash == package_hash)
                .order_by(model.label_number.desc())
                .limit(1)
            )
            if row is not None:
                found.append(_PackageRef(row.package_hash, row.label_number, row.app_version))
        if not found:
            return None
        return max(found, key=lambda ref: ref.label_number)

    def _advance_pointer(self, row: StatusReport) -> None:
        pointer = self.db.scalar(
            select(DeviceActivePackage)
            .where(DeviceActivePackage.deployment_id == row.deployment_id)
            .where(DeviceActivePackage.client_unique_id == row.client_unique_id)
            .with_for_update()
        )
        if pointer is None:
            pointer = DeviceActivePackage(
                deployment_id=row.deployment_id,
                client_unique_id=row.client_unique_id,
                last_report_id=row.report_id,
                last_reported_at=row.reported_at,
            )
            _reset(pointer)
            _apply(pointer, row)
            self.db.add(pointer)
            self.db.flush()
            return
        if _sequence(row.reported_at, row.report_id) < _sequence(pointer.last_reported_at, pointer.last_report_id):
            logger.info("Out-of-order report for %s, replaying device log", row.client_unique_id)
            self._replay_device(pointer)
        else:
            _apply(pointer, row)
        self.db.flush()

    def _device_log(self, deployment_id: UUID, client_unique_id: str) -> list[StatusReport]:
        stmt = (
            select(StatusReport)
            .where(StatusReport.deployment_id == deployment_id)
            .where(StatusReport.client_unique_id == client_unique_id)
            .where(StatusReport.status.in_(POINTER_STATUSES))
            .order_by(StatusReport.reported_at, StatusReport.report_id)
        )
        return list(self.db.scalars(stmt).all())

    def _replay_device(self, pointer: DeviceActivePackage) -> None:
        _reset(pointer)
        for report in self._device_log(pointer.deployment_id, pointer.client_unique_id):
            _apply(pointer, report)

    def rebuild_pointers(self, deployment_id: UUID | None = None) -> int:
        """Recompute every device pointer from the report log; returns the pointer count."""
        clear = delete(DeviceActivePackage)
        stmt = select(StatusReport).where(StatusReport.status.in_(POINTER_STATUSES))
        if deployment_id is not None:
            clear = clear.where(DeviceActivePackage.deployment_id == deployment_id)
            stmt = stmt.where(StatusReport.deployment_id == deployment_id)
        stmt = stmt.order_by(
            StatusReport.deployment_id,
            StatusReport.client_unique_id,
            StatusReport.reported_at,
            StatusReport.report_id,
        )
        self.db.execute(clear)
        count = 0
        reports = self.db.scalars(stmt).all()
        for (dep_id, client_unique_id), device_reports in itertools.groupby(
            reports, key=lambda r: (r.deployment_id, r.client_unique_id)
        ):
            first, *rest = list(device_reports)
            pointer = DeviceActivePackage(
                deployment_id=dep_id,
                client_unique_id=client_unique_id,
                last_report_id=first.report_id,
                last_reported_at=first.reported_at,
            )
            _reset(pointer)
            for report in (first, *rest):
                _apply(pointer, report)
            self.db.add(pointer)
            count += 1
        self.db.commit()
        logger.info("Rebuilt %d device pointers", count, extra={"deployment_id": str(deployment_id or "")})
        return count

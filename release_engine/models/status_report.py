import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from release_engine.db import Base


class ReportStatus(str, enum.Enum):
    downloaded = "DOWNLOADED"
    deployed = "DEPLOYED"
    failed = "FAILED"
    rolled_back = "ROLLED_BACK"


class StatusReport(Base):
    """Append-only device lifecycle event.

    ``deployment_id`` is resolved from the key at ingestion time so reports
    survive key rotation; ``label_number``/``app_version`` are copied from the
    package so they survive package deletion. No foreign keys on purpose:
    rows outlive the packages they describe.
    """

    __tablename__ = "status_reports"
    __table_args__ = (
        UniqueConstraint("report_key", name="uq_status_reports_report_key"),
        Index("ix_status_reports_deployment_label_status", "deployment_id", "label_number", "status"),
        Index("ix_status_reports_deployment_device", "deployment_id", "client_unique_id"),
    )

    report_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_key: Mapped[str] = mapped_column(String(64), nullable=False)
    deployment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    deployment_key: Mapped[str] = mapped_column(String(64), nullable=False)
    client_unique_id: Mapped[str] = mapped_column(String(200), nullable=False)
    package_hash: Mapped[str | None] = mapped_column(String(64), index=True)
    label_number: Mapped[int | None] = mapped_column(Integer)
    app_version: Mapped[str | None] = mapped_column(String(120))
    previous_label_or_app_version: Mapped[str | None] = mapped_column(String(120))
    status: Mapped[ReportStatus] = mapped_column(
        Enum(ReportStatus, name="reportstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class DeviceActivePackage(Base):
    """Projection of the report log: which package a device currently runs.

    Rebuildable from ``status_reports`` alone.
    """

    __tablename__ = "device_active_packages"
    __table_args__ = (
        UniqueConstraint("deployment_id", "client_unique_id", name="uq_device_active_packages_device"),
        Index("ix_device_active_packages_deployment_label", "deployment_id", "label_number"),
    )

    pointer_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deployment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    client_unique_id: Mapped[str] = mapped_column(String(200), nullable=False)
    package_hash: Mapped[str | None] = mapped_column(String(64))
    label_number: Mapped[int | None] = mapped_column(Integer)
    app_version: Mapped[str | None] = mapped_column(String(120))
    previous_package_hash: Mapped[str | None] = mapped_column(String(64))
    previous_label_number: Mapped[int | None] = mapped_column(Integer)
    previous_app_version: Mapped[str | None] = mapped_column(String(120))
    last_report_id: Mapped[int] = mapped_column(Integer, nullable=False)
    last_reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

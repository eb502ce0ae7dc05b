import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from release_engine.db import Base


class ReleaseMethod(str, enum.Enum):
    upload = "Upload"
    promote = "Promote"
    rollback = "Rollback"


def format_label(label_number: int | None) -> str | None:
    if label_number is None:
        return None
    return f"v{label_number}"


def parse_label(label: str | None) -> int | None:
    """``"v12"`` -> 12; ``None`` for anything that is not a label."""
    if not label:
        return None
    raw = label.strip()
    if raw[:1] in ("v", "V"):
        raw = raw[1:]
    if not raw.isdigit():
        return None
    return int(raw)


class Package(Base):
    __tablename__ = "packages"
    __table_args__ = (UniqueConstraint("deployment_id", "label_number", name="uq_packages_deployment_label"),)

    package_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    deployment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("deployments.deployment_id", ondelete="CASCADE"), nullable=False, index=True
    )
    label_number: Mapped[int] = mapped_column(Integer, nullable=False)
    app_version: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    package_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    blob_url: Mapped[str] = mapped_column(String(500), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=False)
    rollout: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    release_method: Mapped[ReleaseMethod] = mapped_column(
        Enum(ReleaseMethod, name="releasemethod"), default=ReleaseMethod.upload
    )
    released_from: Mapped[str | None] = mapped_column(String(200))
    uploaded_by: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    deployment = relationship("Deployment", back_populates="packages")

    @property
    def label(self) -> str:
        return format_label(self.label_number) or ""


class PackageTombstone(Base):
    """What remains of a deleted package so its metrics stay queryable."""

    __tablename__ = "package_tombstones"

    package_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    deployment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    label_number: Mapped[int] = mapped_column(Integer, nullable=False)
    app_version: Mapped[str] = mapped_column(String(120), nullable=False)
    package_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    deleted_by: Mapped[str | None] = mapped_column(String(255))
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    @property
    def label(self) -> str:
        return format_label(self.label_number) or ""

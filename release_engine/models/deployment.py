import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from release_engine.db import Base


class DeploymentStatus(str, enum.Enum):
    active = "Active"
    disabled = "Disabled"


class Deployment(Base):
    __tablename__ = "deployments"
    __table_args__ = (UniqueConstraint("app_id", "name", name="uq_deployments_app_name"),)

    deployment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    app_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("apps.app_id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    mandatory: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[DeploymentStatus] = mapped_column(
        Enum(DeploymentStatus, name="deploymentstatus"), default=DeploymentStatus.active
    )
    # Highest label number ever issued; labels are never reused.
    last_label: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    key_rotated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    app = relationship("App", back_populates="deployments")
    packages = relationship(
        "Package",
        back_populates="deployment",
        cascade="all, delete-orphan",
        order_by="Package.label_number.desc()",
    )

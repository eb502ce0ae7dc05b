import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from release_engine.db import Base


class AppPlatform(str, enum.Enum):
    ios = "ios"
    android = "android"
    react_native = "react-native"


class App(Base):
    __tablename__ = "apps"
    __table_args__ = (UniqueConstraint("owner_id", "name", name="uq_apps_owner_name"),)

    app_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    platform: Mapped[AppPlatform] = mapped_column(
        Enum(AppPlatform, name="appplatform", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    owner_email: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    deployments = relationship(
        "Deployment",
        back_populates="app",
        cascade="all, delete-orphan",
        order_by="Deployment.created_at",
    )

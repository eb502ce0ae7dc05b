from __future__ import annotations

from uuid import UUID

from release_engine.schemas._base import CamelModel


class PackagePromote(CamelModel):
    target_deployment_id: UUID
    label: str | None = None
    app_version: str | None = None
    description: str | None = None
    is_disabled: bool | None = None
    is_mandatory: bool | None = None
    rollout: int | None = None


class PackageRollback(CamelModel):
    label: str | None = None


class PackageUpdate(CamelModel):
    app_version: str | None = None
    description: str | None = None
    is_disabled: bool | None = None
    is_mandatory: bool | None = None
    rollout: int | None = None

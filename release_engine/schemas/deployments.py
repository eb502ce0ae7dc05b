from __future__ import annotations

from uuid import UUID

from pydantic import Field

from release_engine.schemas._base import CamelModel


class DeploymentCreate(CamelModel):
    app_id: UUID
    deployment_name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    mandatory: bool = False


class DeploymentUpdate(CamelModel):
    deployment_name: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = None
    mandatory: bool | None = None
    status: str | None = None

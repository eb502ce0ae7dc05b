from __future__ import annotations

from datetime import datetime

from pydantic import Field

from release_engine.schemas._base import CamelModel


class StatusReportRequest(CamelModel):
    deployment_key: str = Field(min_length=1)
    client_unique_id: str = Field(min_length=1, max_length=200)
    status: str
    previous_label_or_app_version: str | None = Field(default=None, max_length=120)
    label: str | None = None
    package_hash: str | None = Field(default=None, max_length=64)
    app_version: str | None = Field(default=None, max_length=120)
    timestamp: datetime | None = None


class StatusReportResponse(CamelModel):
    status: str = "ok"
    duplicate: bool = False

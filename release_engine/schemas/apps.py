from __future__ import annotations

from pydantic import Field

from release_engine.schemas._base import CamelModel


class AppCreate(CamelModel):
    app_name: str = Field(min_length=1, max_length=120)
    platform: str
    description: str | None = None


class AppUpdate(CamelModel):
    app_name: str | None = Field(default=None, min_length=1, max_length=120)
    platform: str | None = None
    description: str | None = None

"""Metrics API — adoption and health views for the console."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from release_engine.api.deps import actor_from_auth, get_db, require_user_auth
from release_engine.services.metrics_service import MetricsService

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/package/{package_id}")
def package_metrics(
    package_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    return MetricsService(db).package_metrics(package_id, actor_from_auth(auth))


@router.get("/deployment/{deployment_id}")
def deployment_metrics(
    deployment_id: UUID,
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    return MetricsService(db).deployment_metrics(deployment_id, actor_from_auth(auth))


@router.get("/summary")
def metrics_summary(
    deployment_id: UUID | None = Query(default=None, alias="deploymentId"),
    package_id: UUID | None = Query(default=None, alias="packageId"),
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    return MetricsService(db).summary(actor_from_auth(auth), deployment_id=deployment_id, package_id=package_id)


@router.get("/dashboard")
def dashboard_metrics(
    db: Session = Depends(get_db),
    auth=Depends(require_user_auth),
):
    return MetricsService(db).dashboard(actor_from_auth(auth))

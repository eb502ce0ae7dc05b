"""Client SDK endpoints: update checks and status reports.

Authenticated by deployment key only; rate limited per device.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from release_engine.api.deps import get_db
from release_engine.errors import ReleaseEngineError
from release_engine.rate_limit import report_status_limiter, update_check_limiter
from release_engine.schemas.client import StatusReportRequest, StatusReportResponse
from release_engine.services.rollout_resolver import RolloutResolver, serialize_update_check
from release_engine.services.status_report_service import StatusReportInput, StatusReportService

router = APIRouter(prefix="/client", tags=["client"])


@router.get("/update-check")
def update_check(
    deployment_key: str = Query(..., alias="deploymentKey", min_length=1),
    app_version: str = Query(..., alias="appVersion"),
    client_unique_id: str = Query(..., alias="clientUniqueId", min_length=1),
    package_hash: str | None = Query(None, alias="packageHash"),
    label: str | None = Query(None),
    db: Session = Depends(get_db),
):
    update_check_limiter.check(deployment_key, client_unique_id)
    result = RolloutResolver(db).resolve(
        deployment_key,
        client_unique_id,
        package_hash,
        app_version,
        current_label=label,
    )
    return serialize_update_check(result)


@router.post("/report-status", response_model=StatusReportResponse)
def report_status(
    payload: StatusReportRequest,
    db: Session = Depends(get_db),
):
    report_status_limiter.check(payload.deployment_key, payload.client_unique_id)
    try:
        result = StatusReportService(db).ingest(
            StatusReportInput(
                deployment_key=payload.deployment_key,
                client_unique_id=payload.client_unique_id,
                status=payload.status,
                package_hash=payload.package_hash,
                label=payload.label,
                app_version=payload.app_version,
                previous_label_or_app_version=payload.previous_label_or_app_version,
                timestamp=payload.timestamp,
            )
        )
    except ReleaseEngineError:
        db.rollback()
        raise
    return StatusReportResponse(status="ok", duplicate=result.duplicate)

import logging

from fastapi import Depends, FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import FileResponse, Response

from release_engine.api.apps import router as apps_router
from release_engine.api.audit_logs import router as audit_logs_router
from release_engine.api.client import router as client_router
from release_engine.api.deployments import router as deployments_router
from release_engine.api.deps import require_user_auth
from release_engine.api.metrics import router as metrics_router
from release_engine.api.packages import router as packages_router
from release_engine.config import settings
from release_engine.db import SessionLocal
from release_engine.errors import NotFoundError, register_error_handlers
from release_engine.logging import configure_logging
from release_engine.observability import ObservabilityMiddleware
from release_engine.services.blob_store import LocalBlobStore, get_blob_store

logger = logging.getLogger(__name__)

app = FastAPI(title="Release Engine API")

configure_logging()
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(apps_router, dependencies=[Depends(require_user_auth)])
_include_api_router(deployments_router, dependencies=[Depends(require_user_auth)])
_include_api_router(packages_router, dependencies=[Depends(require_user_auth)])
_include_api_router(metrics_router, dependencies=[Depends(require_user_auth)])
_include_api_router(audit_logs_router, dependencies=[Depends(require_user_auth)])
_include_api_router(client_router)


@app.get("/health")
def health_check():
    checks = {"db": False}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["db"] = True
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
    finally:
        db.close()

    if settings.redis_url:
        import redis as redis_lib

        checks["redis"] = False
        try:
            redis_lib.from_url(settings.redis_url, socket_timeout=2).ping()
            checks["redis"] = True
        except redis_lib.RedisError:
            logger.warning("Health check: redis unreachable", exc_info=True)

    all_ok = all(checks.values())
    return {
        "status": "ok" if all_ok else "degraded",
        "checks": checks,
    }


@app.get(settings.blob_url_prefix.rstrip("/") + "/{package_hash}")
def download_blob(package_hash: str):
    store = get_blob_store()
    if not isinstance(store, LocalBlobStore) or not store.exists(package_hash):
        raise NotFoundError("Package blob not found")
    return FileResponse(
        store.path_for(package_hash),
        media_type="application/zip",
        filename=f"{package_hash}.zip",
    )


@app.get("/metrics", dependencies=[Depends(require_user_auth)])
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

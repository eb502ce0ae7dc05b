"""Client SDK endpoint tests over ASGI."""

import pytest

from release_engine.rate_limit import update_check_limiter
from release_engine.services.blob_store import LocalBlobStore
from release_engine.services.package_service import PackageService
from tests.conftest import make_bundle


@pytest.fixture()
def release(db_session, actor, deployment, tmp_path):
    svc = PackageService(db_session, blob_store=LocalBlobStore(root=str(tmp_path)))
    return svc.release_package(deployment.deployment_id, make_bundle(), "1.0.0", actor, is_mandatory=True)


def _check(client, deployment, **params):
    query = {"deploymentKey": deployment.key, "appVersion": "1.0.0", "clientUniqueId": "device-1", **params}
    return client.get("/api/v1/client/update-check", params=query)


def test_update_check_offers_release(client, deployment, release):
    response = _check(client, deployment)
    assert response.status_code == 200
    body = response.json()
    assert body["isAvailable"] is True
    assert body["label"] == "v1"
    assert body["packageHash"] == release.package_hash
    assert body["isMandatory"] is True
    assert body["downloadUrl"] == release.blob_url


def test_update_check_without_auth_header(client, deployment, release):
    response = client.get(
        "/client/update-check",
        params={"deploymentKey": deployment.key, "appVersion": "1.0.0", "clientUniqueId": "device-1"},
    )
    assert response.status_code == 200


def test_update_check_when_current(client, deployment, release):
    response = _check(client, deployment, packageHash=release.package_hash)
    assert response.json() == {"isAvailable": False}


def test_update_check_unknown_key(client, deployment):
    response = _check(client, deployment, deploymentKey="missing")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_update_check_bad_version(client, deployment):
    response = _check(client, deployment, appVersion="one")
    assert response.status_code == 400


def test_update_check_requires_client_id(client, deployment):
    response = client.get("/api/v1/client/update-check", params={"deploymentKey": deployment.key, "appVersion": "1.0.0"})
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_update_check_rate_limited(client, deployment, release, monkeypatch):
    monkeypatch.setattr(update_check_limiter, "max_requests", 2)
    assert _check(client, deployment).status_code == 200
    assert _check(client, deployment).status_code == 200
    limited = _check(client, deployment)
    assert limited.status_code == 429
    assert limited.headers["retry-after"] == "60"
    # Other devices are unaffected
    assert _check(client, deployment, clientUniqueId="device-2").status_code == 200


def test_report_status_flow(client, deployment, release):
    payload = {
        "deploymentKey": deployment.key,
        "clientUniqueId": "device-1",
        "status": "DEPLOYED",
        "packageHash": release.package_hash,
        "label": "v1",
        "appVersion": "1.0.0",
        "timestamp": "2026-03-01T12:00:00Z",
    }
    first = client.post("/api/v1/client/report-status", json=payload)
    assert first.status_code == 200
    assert first.json() == {"status": "ok", "duplicate": False}

    again = client.post("/api/v1/client/report-status", json=payload)
    assert again.json() == {"status": "ok", "duplicate": True}

    # The device now runs v1, so no update is offered
    assert _check(client, deployment, label="v1").json() == {"isAvailable": False}


def test_report_status_lowercase_status(client, deployment, release):
    response = client.post(
        "/client/report-status",
        json={"deploymentKey": deployment.key, "clientUniqueId": "d", "status": "downloaded"},
    )
    assert response.status_code == 200


def test_report_status_errors(client, deployment, release):
    bad_status = client.post(
        "/api/v1/client/report-status",
        json={"deploymentKey": deployment.key, "clientUniqueId": "d", "status": "BOGUS"},
    )
    assert bad_status.status_code == 400

    mismatch = client.post(
        "/api/v1/client/report-status",
        json={
            "deploymentKey": deployment.key,
            "clientUniqueId": "d",
            "status": "DEPLOYED",
            "packageHash": release.package_hash,
            "label": "v9",
        },
    )
    assert mismatch.status_code == 404

    unknown_key = client.post(
        "/api/v1/client/report-status",
        json={"deploymentKey": "nope", "clientUniqueId": "d", "status": "DEPLOYED"},
    )
    assert unknown_key.status_code == 404

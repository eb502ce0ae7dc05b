"""Tests for MetricsService aggregates."""

from datetime import UTC, datetime, timedelta

import pytest

from release_engine.errors import NotFoundError, UnauthorizedError
from release_engine.services.blob_store import LocalBlobStore
from release_engine.services.metrics_service import MetricsService
from release_engine.services.package_service import PackageService
from release_engine.services.status_report_service import StatusReportInput, StatusReportService
from tests.conftest import make_bundle

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def packages(db_session, tmp_path):
    return PackageService(db_session, blob_store=LocalBlobStore(root=str(tmp_path)))


@pytest.fixture()
def releases(packages, actor, deployment):
    v1 = packages.release_package(deployment.deployment_id, make_bundle(), "1.0.0", actor)
    v2 = packages.release_package(deployment.deployment_id, make_bundle(), "1.0.0", actor)
    return v1, v2


def send(db_session, deployment, device, status, package, minutes=0, app_version=None):
    StatusReportService(db_session).ingest(
        StatusReportInput(
            deployment_key=deployment.key,
            client_unique_id=device,
            status=status,
            package_hash=package.package_hash,
            app_version=app_version,
            timestamp=T0 + timedelta(minutes=minutes),
        )
    )


@pytest.fixture()
def traffic(db_session, deployment, releases):
    v1, v2 = releases
    send(db_session, deployment, "a", "DOWNLOADED", v2)
    send(db_session, deployment, "a", "DEPLOYED", v2, 1)
    send(db_session, deployment, "b", "DEPLOYED", v1)
    send(db_session, deployment, "c", "DOWNLOADED", v2)
    send(db_session, deployment, "c", "FAILED", v2, 2)
    return v1, v2


def test_package_metrics_counts(db_session, actor, traffic):
    _, v2 = traffic
    metrics = MetricsService(db_session).package_metrics(v2.package_id, actor)

    assert metrics["label"] == "v2"
    assert metrics["totalDownloads"] == 2
    assert metrics["totalInstalls"] == 1
    assert metrics["totalFailed"] == 1
    assert metrics["totalRollbacks"] == 0
    assert metrics["activeDevices"] == 1
    assert metrics["totalConfirmed"] == 1
    assert metrics["adoptionRate"] == 33
    assert metrics["packageDeleted"] is False


def test_adoption_rate_omitted_without_devices(db_session, actor, releases):
    v1, _ = releases
    metrics = MetricsService(db_session).package_metrics(v1.package_id, actor)
    assert "adoptionRate" not in metrics
    assert metrics["activeDevices"] == 0


def test_rollback_moves_active_device(db_session, actor, deployment, traffic):
    v1, v2 = traffic
    send(db_session, deployment, "b", "DEPLOYED", v2, 5)
    send(db_session, deployment, "b", "ROLLED_BACK", v2, 6)

    svc = MetricsService(db_session)
    assert svc.package_metrics(v2.package_id, actor)["totalRollbacks"] == 1
    assert svc.package_metrics(v2.package_id, actor)["activeDevices"] == 1
    assert svc.package_metrics(v1.package_id, actor)["activeDevices"] == 1


def test_deleted_package_metrics_still_served(db_session, packages, actor, traffic):
    v1, _ = traffic
    package_id = v1.package_id
    packages.delete_package(package_id, actor)

    metrics = MetricsService(db_session).package_metrics(package_id, actor)
    assert metrics["packageDeleted"] is True
    assert metrics["label"] == "v1"
    assert metrics["totalInstalls"] == 1


def test_package_metrics_not_found(db_session, actor):
    import uuid

    with pytest.raises(NotFoundError):
        MetricsService(db_session).package_metrics(uuid.uuid4(), actor)


def test_package_metrics_requires_owner(db_session, other_actor, admin_actor, traffic):
    v1, _ = traffic
    with pytest.raises(UnauthorizedError):
        MetricsService(db_session).package_metrics(v1.package_id, other_actor)
    assert MetricsService(db_session).package_metrics(v1.package_id, admin_actor)["label"] == "v1"


def test_deployment_metrics(db_session, actor, deployment, traffic):
    metrics = MetricsService(db_session).deployment_metrics(deployment.deployment_id, actor)

    assert metrics["deploymentName"] == "Production"
    assert metrics["totalActiveDevices"] == 2
    assert [p["label"] for p in metrics["packages"]] == ["v2", "v1"]
    distribution = {(row["appVersion"], row["packageLabel"]): row for row in metrics["versionDistribution"]}
    assert set(distribution) == {("1.0.0", "v1"), ("1.0.0", "v2")}
    assert all(row["percentage"] == 50 for row in distribution.values())


def test_distribution_uses_device_app_version(db_session, actor, deployment, releases):
    v1, v2 = releases
    send(db_session, deployment, "a", "DEPLOYED", v1, app_version="1.0.3")
    send(db_session, deployment, "b", "DEPLOYED", v2, app_version="1.0.3")
    send(db_session, deployment, "c", "DEPLOYED", v2, app_version="1.0.4")

    rows = MetricsService(db_session).deployment_metrics(deployment.deployment_id, actor)["versionDistribution"]
    assert {(r["appVersion"], r["packageLabel"]) for r in rows} == {
        ("1.0.3", "v1"),
        ("1.0.3", "v2"),
        ("1.0.4", "v2"),
    }
    assert sum(r["deviceCount"] for r in rows) == 3
    assert all(abs(r["percentage"] - 33) <= 1 for r in rows)


def test_summary_unfiltered(db_session, actor, traffic):
    summary = MetricsService(db_session).summary(actor)
    assert summary == {
        "totalDownloads": 2,
        "totalInstalls": 2,
        "totalConfirmed": 2,
        "totalFailed": 1,
        "totalRollbacks": 0,
        "uniqueDevices": 3,
        "activeDevices": 2,
        "lastReportedAt": (T0 + timedelta(minutes=2)).isoformat(),
    }


def test_summary_by_package(db_session, actor, traffic):
    v1, _ = traffic
    summary = MetricsService(db_session).summary(actor, package_id=v1.package_id)
    assert summary["totalInstalls"] == 1
    assert summary["totalDownloads"] == 0
    assert summary["uniqueDevices"] == 1
    assert summary["activeDevices"] == 1


def test_summary_by_deployment(db_session, actor, deployment, traffic):
    summary = MetricsService(db_session).summary(actor, deployment_id=deployment.deployment_id)
    assert summary["uniqueDevices"] == 3


def test_summary_is_scoped_to_owner(db_session, other_actor, admin_actor, traffic):
    summary = MetricsService(db_session).summary(other_actor)
    assert summary["uniqueDevices"] == 0
    assert summary["totalDownloads"] == 0
    assert "lastReportedAt" not in summary
    assert MetricsService(db_session).summary(admin_actor)["uniqueDevices"] == 3


def test_dashboard(db_session, actor, traffic):
    dashboard = MetricsService(db_session).dashboard(actor)

    assert dashboard["totalApps"] == 1
    assert dashboard["totalDeployments"] == 1
    assert dashboard["totalPackages"] == 2
    assert dashboard["totalActiveDevices"] == 2
    messages = {item["message"] for item in dashboard["recentActivity"]}
    assert f"{actor.email} created package v1" in messages
    assert f"{actor.email} created package v2" in messages
    assert all(item["type"] == "package" for item in dashboard["recentActivity"])


def test_dashboard_for_stranger_is_empty(db_session, other_actor, traffic):
    dashboard = MetricsService(db_session).dashboard(other_actor)
    assert dashboard["totalApps"] == 0
    assert dashboard["totalActiveDevices"] == 0
    assert dashboard["recentActivity"] == []


def test_disabling_package_leaves_metrics_unchanged(db_session, packages, actor, deployment, traffic):
    _, v2 = traffic
    svc = MetricsService(db_session)
    package_before = svc.package_metrics(v2.package_id, actor)
    deployment_before = svc.deployment_metrics(deployment.deployment_id, actor)

    packages.toggle_package_status(v2.package_id, actor)

    assert svc.package_metrics(v2.package_id, actor) == package_before
    assert svc.deployment_metrics(deployment.deployment_id, actor) == deployment_before

"""Tests for RolloutResolver."""

import pytest

from release_engine.errors import InvalidArgumentError, NotFoundError
from release_engine.services.blob_store import LocalBlobStore
from release_engine.services.hashing import compute_bucket
from release_engine.services.package_service import PackageService
from release_engine.services.rollout_resolver import RolloutResolver, serialize_update_check
from tests.conftest import make_bundle


def device_in_bucket(deployment_key: str, bucket: int) -> str:
    for i in range(100_000):
        candidate = f"device-{i}"
        if compute_bucket(deployment_key, candidate) == bucket:
            return candidate
    raise AssertionError(f"no device found for bucket {bucket}")


@pytest.fixture()
def packages(db_session, tmp_path):
    return PackageService(db_session, blob_store=LocalBlobStore(root=str(tmp_path)))


@pytest.fixture()
def staged(packages, actor, deployment):
    """v1 fully rolled out, v2 at 10%."""
    v1 = packages.release_package(deployment.deployment_id, make_bundle(), "1.0.0", actor, rollout=100)
    v2 = packages.release_package(deployment.deployment_id, make_bundle(), "1.0.0", actor, rollout=10)
    return v1, v2


def test_device_inside_rollout_gets_newest(db_session, deployment, staged):
    _, v2 = staged
    device = device_in_bucket(deployment.key, 5)
    result = RolloutResolver(db_session).resolve(deployment.key, device, None, "1.0.0")
    assert result.is_available
    assert result.package.package_id == v2.package_id
    assert result.bucket == 5


def test_device_outside_rollout_falls_back(db_session, deployment, staged):
    v1, _ = staged
    device = device_in_bucket(deployment.key, 50)
    result = RolloutResolver(db_session).resolve(deployment.key, device, None, "1.0.0")
    assert result.package.package_id == v1.package_id


def test_device_outside_rollout_already_on_fallback(db_session, deployment, staged):
    v1, _ = staged
    device = device_in_bucket(deployment.key, 50)
    result = RolloutResolver(db_session).resolve(deployment.key, device, v1.package_hash, "1.0.0")
    assert result.is_available is False
    assert result.package is None


def test_device_already_on_target(db_session, deployment, staged):
    _, v2 = staged
    device = device_in_bucket(deployment.key, 5)
    resolver = RolloutResolver(db_session)
    assert not resolver.resolve(deployment.key, device, v2.package_hash, "1.0.0").is_available
    assert not resolver.resolve(deployment.key, device, None, "1.0.0", current_label="v2").is_available


def test_decision_is_stable_across_polls(db_session, deployment, staged):
    resolver = RolloutResolver(db_session)
    device = device_in_bucket(deployment.key, 9)
    outcomes = {resolver.resolve(deployment.key, device, None, "1.0.0").package.label for _ in range(10)}
    assert outcomes == {"v2"}


def test_disabled_target_is_skipped(db_session, packages, actor, deployment, staged):
    v1, v2 = staged
    packages.toggle_package_status(v2.package_id, actor)
    device = device_in_bucket(deployment.key, 5)
    result = RolloutResolver(db_session).resolve(deployment.key, device, None, "1.0.0")
    assert result.package.package_id == v1.package_id


def test_incompatible_app_version_gets_no_update(db_session, packages, actor, deployment):
    packages.release_package(deployment.deployment_id, make_bundle(), "2.0.0", actor)
    result = RolloutResolver(db_session).resolve(deployment.key, "device-1", None, "1.0.0")
    assert result.is_available is False


def test_range_app_version_matches_device(db_session, packages, actor, deployment):
    package = packages.release_package(deployment.deployment_id, make_bundle(), "^1.2.0", actor)
    resolver = RolloutResolver(db_session)
    assert resolver.resolve(deployment.key, "device-1", None, "1.4.2").package.package_id == package.package_id
    assert not resolver.resolve(deployment.key, "device-1", None, "2.0.0").is_available


def test_newest_compatible_release_wins(db_session, packages, actor, deployment):
    older = packages.release_package(deployment.deployment_id, make_bundle(), "1.0.0", actor)
    packages.release_package(deployment.deployment_id, make_bundle(), "2.0.0", actor)
    result = RolloutResolver(db_session).resolve(deployment.key, "device-1", None, "1.0.0")
    assert result.package.package_id == older.package_id


def test_mandatory_release_sets_must_install(db_session, packages, actor, deployment):
    packages.release_package(deployment.deployment_id, make_bundle(), "1.0.0", actor, is_mandatory=True)
    result = RolloutResolver(db_session).resolve(deployment.key, "device-1", None, "1.0.0")
    assert result.must_install is True
    assert serialize_update_check(result)["isMandatory"] is True


def test_empty_deployment_has_no_update(db_session, deployment):
    result = RolloutResolver(db_session).resolve(deployment.key, "device-1", None, "1.0.0")
    assert result.is_available is False
    assert serialize_update_check(result) == {"isAvailable": False}


def test_unknown_key_is_not_found(db_session, deployment):
    with pytest.raises(NotFoundError):
        RolloutResolver(db_session).resolve("no-such-key", "device-1", None, "1.0.0")


def test_malformed_app_version_is_invalid(db_session, deployment):
    with pytest.raises(InvalidArgumentError):
        RolloutResolver(db_session).resolve(deployment.key, "device-1", None, "latest")


def test_serialized_update_info(db_session, deployment, staged):
    v1, _ = staged
    device = device_in_bucket(deployment.key, 50)
    data = serialize_update_check(RolloutResolver(db_session).resolve(deployment.key, device, None, "1.0.0"))
    assert data["isAvailable"] is True
    assert data["label"] == "v1"
    assert data["packageHash"] == v1.package_hash
    assert data["downloadUrl"].endswith(v1.package_hash)
    assert data["rollout"] == 100
    assert data["packageSize"] == v1.size

"""Tests for mirroring charts to an OCI registry."""

from pathlib import Path

import pytest

from chart_release.config import Config
from chart_release.exceptions import RegistryException
from chart_release.manifest import ChartKind, Package
from chart_release.oci import HELM_CHART_MEDIA_TYPE, HELM_CONFIG_MEDIA_TYPE, OciPublisher
from chart_release.outcome import FailureKind
from chart_release.store import ArtifactStore

from .conftest import FakeOrasClient, FakeReleaseApi


@pytest.fixture(name="packages")
def packages_fixture(repo_root: Path) -> list[Package]:
    directory = repo_root / ".cr-release-packages/application"
    directory.mkdir(parents=True)
    packages = []
    for file_name in ("nginx-1.2.0.tgz", "redis-7.0.1.tgz"):
        (directory / file_name).write_bytes(b"archive")
        packages.append(Package.parse(directory / file_name, ChartKind.APPLICATION))
    return packages


@pytest.fixture(name="publisher")
def publisher_fixture(
    config: Config, release_api: FakeReleaseApi, store: ArtifactStore, oras: FakeOrasClient
) -> OciPublisher:
    config.repository.oci.packages.enabled = True
    config.github.repository = "Example/Charts"
    return OciPublisher(config, release_api, store, lambda: oras)


def test_reference(publisher: OciPublisher, packages: list[Package]) -> None:
    """Test the registry path is namespaced by repository and kind."""
    assert publisher.reference(packages[0]) == "ghcr.io/example/charts/application/nginx:1.2.0"


async def test_publish_all(
    publisher: OciPublisher,
    release_api: FakeReleaseApi,
    oras: FakeOrasClient,
    packages: list[Package],
) -> None:
    """Test existing packages are replaced with helm media types."""
    outcome = await publisher.publish_all(packages)

    assert [r.reference for r in outcome.succeeded] == [
        "ghcr.io/example/charts/application/nginx:1.2.0",
        "ghcr.io/example/charts/application/redis:7.0.1",
    ]
    assert oras.logins == [
        {"hostname": "ghcr.io", "username": "Example", "password": "test-token"}
    ]
    assert release_api.deleted_packages == ["application/nginx", "application/redis"]
    push = oras.pushes[0]
    assert push["files"] == [f"{packages[0].path}:{HELM_CHART_MEDIA_TYPE}"]
    assert push["manifest_config"].endswith(f":{HELM_CONFIG_MEDIA_TYPE}")
    assert oras.configs[0]["name"] == "nginx"
    assert oras.configs[0]["appVersion"] == "1.25.3"


async def test_authentication_gate(
    publisher: OciPublisher,
    release_api: FakeReleaseApi,
    oras: FakeOrasClient,
    packages: list[Package],
) -> None:
    """Test a failed login skips the whole phase."""
    oras.login_error = ValueError("unauthorized")
    outcome = await publisher.publish_all(packages)

    assert outcome.succeeded == []
    assert outcome.gated
    assert [f.kind for f in outcome.failures] == [FailureKind.GATING]
    assert oras.pushes == []
    assert release_api.deleted_packages == []


async def test_missing_token(
    config: Config, publisher: OciPublisher, packages: list[Package]
) -> None:
    """Test no login is attempted without a token."""
    config.github.token = None
    assert not await publisher.authenticate()
    outcome = await publisher.publish_all(packages)
    assert outcome.gated


async def test_push_failure_is_isolated(
    publisher: OciPublisher, oras: FakeOrasClient, packages: list[Package]
) -> None:
    """Test a rejected push only fails that package."""
    oras.push_status = 500
    outcome = await publisher.publish_all(packages[:1])
    assert outcome.succeeded == []
    assert outcome.failures[0].kind == FailureKind.ISOLATED
    assert outcome.failures[0].operation == "push to OCI registry"


async def test_publish_requires_login(publisher: OciPublisher, packages: list[Package]) -> None:
    """Test pushing before authenticating."""
    with pytest.raises(RegistryException, match="Not authenticated"):
        await publisher.publish(packages[0])

"""Tests for the end to end release pipeline."""

from pathlib import Path
from unittest.mock import AsyncMock

import git
import pytest

from chart_release.commit import SignedCommitBuilder
from chart_release.config import Config
from chart_release.exceptions import GitHubApiException, ReleaseException
from chart_release.git_repo import VersionControlClient
from chart_release.manifest import ChartKind, DeletedChart, DetectedCharts
from chart_release.outcome import FailureKind, FatalFailure
from chart_release.pipeline import INDEX_COMMIT_MESSAGE, ReleasePipeline
from chart_release.store import ArtifactStore

from .conftest import FakeCommitApi, FakeOrasClient, FakePackagingTool, FakeReleaseApi

ALL_CHARTS = [
    "application/nginx/values.yaml",
    "application/redis/Chart.yaml",
    "library/common/templates/_helpers.tpl",
]


@pytest.fixture(name="pipeline")
def pipeline_fixture(
    config: Config,
    store: ArtifactStore,
    packaging_tool: FakePackagingTool,
    release_api: FakeReleaseApi,
    oras: FakeOrasClient,
) -> ReleasePipeline:
    return ReleasePipeline(
        config, store, packaging_tool, release_api, oras_factory=lambda: oras
    )


@pytest.fixture(name="repo")
def repo_fixture(repo_root: Path) -> git.Repo:
    """A git repository with the charts committed."""
    repo = git.Repo.init(str(repo_root), initial_branch="main")
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test")
        writer.set_value("user", "email", "test@example.com")
    repo.git.add("--all")
    repo.index.commit("Add charts")
    return repo


async def test_detect_changes(pipeline: ReleasePipeline) -> None:
    """Test changed files are attributed to chart directories."""
    detected = await pipeline.detect_changes(
        {**{path: "modified" for path in ALL_CHARTS}, "README.md": "modified"}
    )
    assert detected.application == ["application/nginx", "application/redis"]
    assert detected.library == ["library/common"]
    assert detected.deleted == []


async def test_package_and_publish_isolates_failures(
    pipeline: ReleasePipeline,
    packaging_tool: FakePackagingTool,
    release_api: FakeReleaseApi,
) -> None:
    """Test one chart failing to package does not stop the others."""
    packaging_tool.fail_package.add("redis")
    detected = await pipeline.detect_changes(ALL_CHARTS)

    summary = await pipeline.package_and_publish(detected)

    assert summary.published == 2
    assert summary.failed == 1
    failure = summary.failures[0]
    assert failure.kind == FailureKind.ISOLATED
    assert failure.item == "application/redis"
    assert failure.operation == "package chart"
    assert sorted(release_api.created) == ["common-0.1.0", "nginx-1.2.0"]
    assert sorted(name for _, name, _ in release_api.uploads) == [
        "application.tgz",
        "library.tgz",
    ]


async def test_package_and_publish_disabled(
    config: Config, pipeline: ReleasePipeline, release_api: FakeReleaseApi
) -> None:
    """Test charts are packaged but not released when publishing is disabled."""
    config.repository.chart.packages.enabled = False
    detected = await pipeline.detect_changes(ALL_CHARTS)

    summary = await pipeline.package_and_publish(detected)
    assert summary.published == 0
    assert summary.skipped == 3
    assert release_api.created == []

    result = await pipeline.regenerate_index()
    assert result.indexed == []
    assert result.files == []


async def test_regenerate_index_list_failure(
    pipeline: ReleasePipeline, release_api: FakeReleaseApi
) -> None:
    """Test an unavailable release history skips every chart."""
    release_api.list_releases = AsyncMock(  # type: ignore[method-assign]
        side_effect=GitHubApiException("list releases", "503 Service Unavailable", 503)
    )
    result = await pipeline.regenerate_index()
    assert result.indexed == []
    assert result.skipped == ["application/nginx", "application/redis", "library/common"]
    assert result.failed == 1


async def test_publish_to_registry_reuses_packages(
    config: Config,
    pipeline: ReleasePipeline,
    packaging_tool: FakePackagingTool,
    oras: FakeOrasClient,
) -> None:
    """Test packages built for releases are pushed without repackaging."""
    config.repository.oci.packages.enabled = True
    detected = await pipeline.detect_changes(["application/nginx/values.yaml"])
    await pipeline.package_and_publish(detected)

    summary = await pipeline.publish_to_registry(detected)
    assert summary.pushed == 1
    assert not summary.skipped
    assert packaging_tool.calls.count(("package", "nginx")) == 1
    assert len(oras.pushes) == 1



async def test_publish_to_registry_after_packaging_failure(
    config: Config,
    pipeline: ReleasePipeline,
    packaging_tool: FakePackagingTool,
    oras: FakeOrasClient,
) -> None:
    """Test a chart that failed packaging is neither retried nor reported twice."""
    config.repository.oci.packages.enabled = True
    packaging_tool.fail_package.add("redis")
    detected = await pipeline.detect_changes(ALL_CHARTS)

    published = await pipeline.package_and_publish(detected)
    registry = await pipeline.publish_to_registry(detected)

    for name in ("nginx", "redis", "common"):
        assert packaging_tool.calls.count(("package", name)) == 1
    assert published.failed == 1
    assert registry.pushed == 2
    assert registry.failed == 0
    assert registry.failures == []
    assert len(oras.pushes) == 2


async def test_publish_to_registry_packages_new_charts(
    config: Config,
    pipeline: ReleasePipeline,
    packaging_tool: FakePackagingTool,
    oras: FakeOrasClient,
) -> None:
    """Test charts not packaged by an earlier phase are packaged for the registry."""
    config.repository.oci.packages.enabled = True
    await pipeline.package_and_publish(
        await pipeline.detect_changes(["application/nginx/values.yaml"])
    )

    summary = await pipeline.publish_to_registry(
        await pipeline.detect_changes(ALL_CHARTS)
    )
    assert summary.pushed == 3
    for name in ("nginx", "redis", "common"):
        assert packaging_tool.calls.count(("package", name)) == 1


async def test_publish_to_registry_disabled(
    pipeline: ReleasePipeline, oras: FakeOrasClient
) -> None:
    """Test the registry phase is skipped unless enabled."""
    detected = await pipeline.detect_changes(["application/nginx/values.yaml"])
    summary = await pipeline.publish_to_registry(detected)
    assert summary.skipped
    assert summary.pushed == 0
    assert oras.logins == []


async def test_publish_to_registry_gated(
    config: Config, pipeline: ReleasePipeline, oras: FakeOrasClient
) -> None:
    """Test a failed login skips the phase without counting failed charts."""
    config.repository.oci.packages.enabled = True
    oras.login_error = ValueError("unauthorized")
    detected = await pipeline.detect_changes(["application/nginx/values.yaml"])

    summary = await pipeline.publish_to_registry(detected)
    assert summary.skipped
    assert summary.failed == 0
    assert [f.kind for f in summary.failures] == [FailureKind.GATING]


async def test_delete_charts(
    config: Config, pipeline: ReleasePipeline, release_api: FakeReleaseApi
) -> None:
    """Test releases and registry packages of removed charts are deleted."""
    config.repository.oci.packages.enabled = True
    release_api.add_release("old-1.0.0", b"old:1.0.0", "application.tgz", "2024-01-01T00:00:00Z")

    summary = await pipeline.delete_charts(
        [DeletedChart(kind=ChartKind.APPLICATION, name="old", path="application/old")]
    )
    assert summary.deleted == 1
    assert summary.failed == 0
    assert release_api.deleted == ["old-1.0.0"]
    assert release_api.deleted_packages == ["application/old"]


async def test_commit_generated_requires_committer(pipeline: ReleasePipeline) -> None:
    """Test committing without signed commit support configured."""
    with pytest.raises(ReleaseException, match="not configured"):
        await pipeline.commit_generated("main", ["application/nginx/index.yaml"])


async def test_process(
    config: Config,
    store: ArtifactStore,
    packaging_tool: FakePackagingTool,
    release_api: FakeReleaseApi,
    commit_api: FakeCommitApi,
    repo: git.Repo,
) -> None:
    """Test a change set is released, indexed and committed."""
    release_api.add_release("old-1.0.0", b"old:1.0.0", "application.tgz", "2024-01-01T00:00:00Z")
    committer = SignedCommitBuilder(config, commit_api, VersionControlClient(repo))
    pipeline = ReleasePipeline(
        config, store, packaging_tool, release_api, committer=committer
    )

    summary = await pipeline.process(
        {
            "application/nginx/values.yaml": "modified",
            "application/old/Chart.yaml": "removed",
        },
        branch="main",
    )

    assert summary.detected.application == ["application/nginx"]
    assert summary.deleted.deleted == 1
    assert summary.published.published == 1
    assert summary.index.indexed == ["application/nginx"]
    assert summary.index.skipped == ["application/redis", "library/common"]
    assert summary.registry.skipped
    assert summary.failures == []
    assert summary.commit == "oid1"

    commit_input = commit_api.inputs[0]
    assert commit_input["expectedHeadOid"] == repo.head.commit.hexsha
    assert commit_input["message"] == {"headline": INDEX_COMMIT_MESSAGE}
    assert [a["path"] for a in commit_input["fileChanges"]["additions"]] == [
        "application/nginx/index.html",
        "application/nginx/index.yaml",
    ]
    assert "Detect changes" in summary.timings


async def test_process_commit_failure_is_fatal(
    config: Config,
    store: ArtifactStore,
    packaging_tool: FakePackagingTool,
    release_api: FakeReleaseApi,
    commit_api: FakeCommitApi,
    repo: git.Repo,
) -> None:
    """Test a rejected signed commit fails the run after publishing."""
    commit_api.error = GitHubApiException(
        "create signed commit", "Expected branch to point to abc123"
    )
    committer = SignedCommitBuilder(config, commit_api, VersionControlClient(repo))
    pipeline = ReleasePipeline(
        config, store, packaging_tool, release_api, committer=committer
    )

    with pytest.raises(FatalFailure) as exc_info:
        await pipeline.process(["application/nginx/values.yaml"], branch="main")

    assert exc_info.value.failure.kind == FailureKind.FATAL
    assert exc_info.value.failure.operation == "commit generated files"
    assert release_api.created == ["nginx-1.2.0"]


async def test_process_without_changes(
    pipeline: ReleasePipeline,
    packaging_tool: FakePackagingTool,
    release_api: FakeReleaseApi,
) -> None:
    """Test nothing is published when no chart changed."""
    summary = await pipeline.process(["README.md", ".github/workflows/release.yaml"])
    assert summary.detected == DetectedCharts()
    assert summary.published.published == 0
    assert summary.index.indexed == []
    assert summary.commit is None
    assert packaging_tool.calls == []
    assert release_api.created == []

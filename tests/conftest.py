"""Fixtures and test doubles shared by the chart-release tests."""

import dataclasses
from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import yaml

from chart_release.config import Config, GitHubConfig
from chart_release.exceptions import GitHubApiException, HelmException
from chart_release.github.graphql import CommitApi
from chart_release.github.rest import ReleaseApi
from chart_release.helm import INDEX_FILE, PackagingTool
from chart_release.issues import Issue, IssueService
from chart_release.manifest import (
    CHART_MANIFEST,
    Chart,
    ChartKind,
    Package,
    Release,
    ReleaseAsset,
    package_file_name,
)
from chart_release.store import ArtifactStore
from chart_release.template import TemplateRenderer

CHARTS = {
    "application/nginx": {
        "apiVersion": "v2",
        "name": "nginx",
        "version": "1.2.0",
        "description": "A web server",
        "appVersion": "1.25.3",
        "dependencies": [
            {
                "name": "common",
                "version": "0.1.0",
                "repository": "file://../../library/common",
            }
        ],
    },
    "application/redis": {
        "apiVersion": "v2",
        "name": "redis",
        "version": "7.0.1",
        "description": "An in-memory store",
    },
    "library/common": {
        "apiVersion": "v2",
        "name": "common",
        "version": "0.1.0",
        "type": "library",
        "description": "Shared templates",
    },
}


class FakeReleaseApi(ReleaseApi):
    """In memory ReleaseApi that records every call."""

    def __init__(self) -> None:
        self.releases: dict[str, Release] = {}
        self.assets: dict[int, bytes] = {}
        self.created: list[str] = []
        self.uploads: list[tuple[str, str, str]] = []
        self.deleted: list[str] = []
        self.deleted_packages: list[str] = []
        self.fail_create: set[str] = set()
        self.fail_download: set[str] = set()
        self._next_id = 1

    def _id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def add_release(self, tag: str, data: bytes, asset_name: str, created_at: str) -> Release:
        """Seed a release with an archive asset."""
        asset = ReleaseAsset(
            id=self._id(),
            name=asset_name,
            download_url=f"https://github.com/example/charts/releases/download/{tag}/{asset_name}",
            size=len(data),
        )
        self.assets[asset.id] = data
        release = Release(
            id=self._id(), tag_name=tag, name=tag, created_at=created_at, assets=[asset]
        )
        self.releases[tag] = release
        return release

    async def get_release_by_tag(self, tag: str) -> Release | None:
        if (release := self.releases.get(tag)) is None:
            return None
        return dataclasses.replace(release, existing=True)

    async def create_release(self, tag: str, name: str, body: str) -> Release:
        if tag in self.fail_create:
            raise GitHubApiException("create release", "500 Server Error", status=500)
        release_id = self._id()
        release = Release(
            id=release_id,
            tag_name=tag,
            name=name,
            body=body,
            created_at=f"2024-01-{release_id:02d}T00:00:00Z",
        )
        self.releases[tag] = release
        self.created.append(tag)
        return release

    async def upload_release_asset(
        self, release: Release, name: str, data: bytes, content_type: str
    ) -> ReleaseAsset:
        asset = ReleaseAsset(
            id=self._id(),
            name=name,
            download_url=f"https://github.com/example/charts/releases/download/{release.tag_name}/{name}",
            content_type=content_type,
            size=len(data),
        )
        self.assets[asset.id] = data
        current = self.releases[release.tag_name]
        self.releases[release.tag_name] = dataclasses.replace(
            current, assets=[*current.assets, asset]
        )
        self.uploads.append((release.tag_name, name, content_type))
        return asset

    async def list_releases(self, prefix: str | None = None) -> list[Release]:
        return [
            release
            for tag, release in sorted(self.releases.items())
            if prefix is None or tag.startswith(prefix)
        ]

    async def download_asset(self, asset: ReleaseAsset) -> bytes:
        if asset.name in self.fail_download:
            raise GitHubApiException("download release asset", "502 Bad Gateway", 502)
        return self.assets[asset.id]

    async def delete_release(self, release: Release) -> None:
        self.releases.pop(release.tag_name, None)
        self.deleted.append(release.tag_name)

    async def delete_package(self, name: str, kind: ChartKind) -> bool:
        self.deleted_packages.append(f"{kind}/{name}")
        return True


class FakePackagingTool(PackagingTool):
    """Packages charts into small text archives and indexes them like helm."""

    def __init__(self) -> None:
        self.fail_package: set[str] = set()
        self.fail_dependencies: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    async def update_dependencies(self, chart_dir: Path) -> None:
        self.calls.append(("dependency update", chart_dir.name))
        if chart_dir.name in self.fail_dependencies:
            raise HelmException(f"Unable to update dependencies for {chart_dir}")

    async def package(self, chart_dir: Path, destination: Path, kind: ChartKind) -> Package:
        self.calls.append(("package", chart_dir.name))
        if chart_dir.name in self.fail_package:
            raise HelmException(f"Unable to package {chart_dir}")
        doc = yaml.safe_load((chart_dir / CHART_MANIFEST).read_text())
        path = destination / package_file_name(doc["name"], doc["version"])
        path.write_text(f"{doc['name']}:{doc['version']}")
        return Package.parse(path, kind)

    async def repo_index(self, directory: Path, url: str, merge: Path | None = None) -> Path:
        doc: dict[str, Any] = {"apiVersion": "v1", "entries": {}}
        if merge is not None:
            doc = yaml.safe_load(merge.read_text())
        now = datetime.now(timezone.utc).isoformat()
        for archive in sorted(directory.glob("*.tgz")):
            name, version = archive.read_text().split(":")
            versions = doc["entries"].setdefault(name, [])
            if any(entry["version"] == version for entry in versions):
                continue
            versions.append(
                {
                    "name": name,
                    "version": version,
                    "urls": [f"{url}/{archive.name}"],
                    "created": now,
                }
            )
            versions.sort(key=lambda entry: entry["version"], reverse=True)
        doc["generated"] = now
        index = directory / INDEX_FILE
        index.write_text(yaml.safe_dump(doc))
        return index


class FakeCommitApi(CommitApi):
    """Records submitted commit inputs and returns a fixed oid."""

    def __init__(self) -> None:
        self.inputs: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def create_commit_on_branch(self, commit_input: dict[str, Any]) -> str:
        if self.error is not None:
            raise self.error
        self.inputs.append(commit_input)
        return f"oid{len(self.inputs)}"


class FakeIssueService(IssueService):
    """Returns a fixed list of issues for every chart."""

    def __init__(self, issues: list[Issue] | None = None) -> None:
        self.issues = issues or []

    async def get(self, chart: Chart, tag_prefix: str) -> list[Issue]:
        return self.issues


def write_chart(root: Path, chart_dir: str, doc: dict[str, Any]) -> Path:
    """Write a chart manifest below the repository root."""
    path = root / chart_dir
    path.mkdir(parents=True, exist_ok=True)
    (path / CHART_MANIFEST).write_text(yaml.safe_dump(doc))
    (path / "values.yaml").write_text("replicas: 1\n")
    return path


@pytest.fixture(name="repo_root")
def repo_root_fixture(tmp_path: Path) -> Path:
    """A chart repository with two application charts and one library chart."""
    for chart_dir, doc in CHARTS.items():
        write_chart(tmp_path, chart_dir, doc)
    (tmp_path / "application/nginx/icon.png").write_bytes(b"\x89PNG")
    return tmp_path


@pytest.fixture(name="store")
def store_fixture(repo_root: Path) -> ArtifactStore:
    return ArtifactStore(repo_root)


@pytest.fixture(name="config")
def config_fixture() -> Config:
    return Config(
        github=GitHubConfig(repository="example/charts", token="test-token"),
    )


@pytest.fixture(name="release_api")
def release_api_fixture() -> FakeReleaseApi:
    return FakeReleaseApi()


@pytest.fixture(name="packaging_tool")
def packaging_tool_fixture() -> FakePackagingTool:
    return FakePackagingTool()


@pytest.fixture(name="commit_api")
def commit_api_fixture() -> FakeCommitApi:
    return FakeCommitApi()


@pytest.fixture(name="renderer")
def renderer_fixture(repo_root: Path) -> TemplateRenderer:
    return TemplateRenderer(repo_root)


class FakeOrasClient:
    """Records logins and pushes instead of talking to a registry."""

    def __init__(self) -> None:
        self.logins: list[dict[str, Any]] = []
        self.pushes: list[dict[str, Any]] = []
        self.configs: list[dict[str, Any]] = []
        self.login_error: Exception | None = None
        self.push_status = 201

    def login(self, **kwargs: Any) -> dict[str, str]:
        if self.login_error is not None:
            raise self.login_error
        self.logins.append(kwargs)
        return {"Status": "Login Succeeded"}

    def push(self, **kwargs: Any) -> MagicMock:
        config_path = kwargs["manifest_config"].rsplit(":", 1)[0]
        self.configs.append(json.loads(Path(config_path).read_text()))
        self.pushes.append(kwargs)
        return MagicMock(ok=self.push_status < 400, status_code=self.push_status, text="")


@pytest.fixture(name="oras")
def oras_fixture() -> FakeOrasClient:
    return FakeOrasClient()

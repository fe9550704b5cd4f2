"""Publish packaged charts as GitHub releases.

Publishing a package is a strict sequence per chart:

1. Derive the release tag from the configured title template.
2. Look the tag up; an existing release means the chart version was already
   published and nothing else happens.
3. Render the release notes from the chart metadata.
4. Create the release and upload the archive as its only asset.

Packages are published concurrently and a failure at any step only loses
that one chart.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
import hashlib
import logging
from pathlib import Path
from typing import Any

from .config import Config
from .context import trace_context
from .github.rest import ReleaseApi
from .issues import IssueService
from .manifest import (
    CHART_MANIFEST,
    PACKAGE_CONTENT_TYPE,
    Chart,
    DeletedChart,
    Package,
    Release,
    is_chart_release,
)
from .outcome import Outcome, isolate
from .store import ArtifactStore
from .template import RELEASE_TEMPLATE, TemplateRenderer

__all__ = [
    "ReleasePublisher",
    "PublishResult",
    "release_tag",
    "tag_prefix",
]

_LOGGER = logging.getLogger(__name__)

TITLE_NAME = "{{ .Name }}"
TITLE_VERSION = "{{ .Version }}"
REMOTE_LINK_SCHEMES = ("http://", "https://", "oci://")


def release_tag(title: str, name: str, version: str) -> str:
    """Substitute a chart name and version into the release title template."""
    return title.replace(TITLE_NAME, name).replace(TITLE_VERSION, version)


def tag_prefix(title: str, name: str) -> str:
    """Return the tag prefix shared by every release of a chart."""
    return release_tag(title, name, "")


@dataclass(frozen=True)
class PublishResult:
    """The release for a published package."""

    package: Package
    release: Release

    created: bool
    """False when the release already existed and publishing was skipped."""


class ReleasePublisher:
    """Creates releases for packages and deletes releases of removed charts."""

    def __init__(
        self,
        config: Config,
        api: ReleaseApi,
        store: ArtifactStore,
        renderer: TemplateRenderer,
        issues: IssueService | None = None,
    ) -> None:
        """Initialize ReleasePublisher."""
        self._config = config
        self._api = api
        self._store = store
        self._renderer = renderer
        self._issues = issues

    def tag(self, name: str, version: str) -> str:
        return release_tag(self._config.repository.release.title, name, version)

    def tag_prefix(self, name: str) -> str:
        return tag_prefix(self._config.repository.release.title, name)

    def chart_dir(self, package: Package) -> Path:
        return Path(self._config.chart_root(package.kind)) / package.name

    async def notes_context(self, chart: Chart, tag: str) -> dict[str, Any]:
        """Build the values made available to the release notes template."""
        github = self._config.github
        type_path = self._config.chart_root(chart.kind)
        chart_yaml = f"{github.html_url}/blob/{tag}/{type_path}/{chart.name}/{CHART_MANIFEST}"
        issues = []
        if self._issues is not None:
            issues = await self._issues.get(chart, self.tag_prefix(chart.name))
        return {
            "name": chart.name,
            "version": chart.version,
            "type": str(chart.kind),
            "type_path": type_path,
            "tag": tag,
            "description": chart.metadata.description,
            "app_version": chart.metadata.app_version or "",
            "kube_version": chart.metadata.kube_version or "",
            "dependencies": [
                {
                    "name": dep.name,
                    "version": dep.version,
                    "repository": dep.repository,
                    "link": (
                        dep.repository
                        if dep.repository.startswith(REMOTE_LINK_SCHEMES)
                        else chart_yaml
                    ),
                }
                for dep in chart.metadata.dependencies
            ],
            "issues": issues,
            "icon": self._config.repository.chart.icon if chart.has_icon else None,
            "repo_url": github.html_url,
            "repo_raw_url": github.html_url.replace(
                "github.com", "raw.githubusercontent.com"
            ),
            "branch": github.default_branch,
        }

    async def _warn_on_drift(self, release: Release, package: Package) -> None:
        """Log when an existing release holds a different archive than was built."""
        asset = release.package_asset()
        if asset is None or not asset.digest:
            return
        data = await self._store.read_bytes(package.path)
        digest = f"sha256:{hashlib.sha256(data).hexdigest()}"
        if digest != asset.digest:
            _LOGGER.warning(
                "Release '%s' already exists with a different archive (%s != %s); "
                "bump the chart version to publish the change",
                release.tag_name,
                asset.digest,
                digest,
            )

    async def publish(self, package: Package) -> PublishResult:
        """Create the release for a package unless its tag already exists."""
        tag = self.tag(package.name, package.version)
        if (existing := await self._api.get_release_by_tag(tag)) is not None:
            _LOGGER.info("Release '%s' already exists, skipping", tag)
            await self._warn_on_drift(existing, package)
            return PublishResult(package=package, release=existing, created=False)

        _LOGGER.info("Generating release content for '%s' chart...", package)
        chart = await self._store.read_chart(
            self.chart_dir(package), package.kind, self._config.repository.chart.icon
        )
        body = self._renderer.render(
            self._config.repository.release.template,
            RELEASE_TEMPLATE,
            await self.notes_context(chart, tag),
        )
        release = await self._api.create_release(tag, tag, body)
        data = await self._store.read_bytes(package.path)
        await self._api.upload_release_asset(
            release, package.asset_name, data, PACKAGE_CONTENT_TYPE
        )
        _LOGGER.info("Successfully created '%s' release", tag)
        return PublishResult(package=package, release=release, created=True)

    async def publish_all(
        self, packages: Sequence[Package], concurrency: int | None = None
    ) -> Outcome[PublishResult]:
        """Publish packages concurrently, isolating each package's failure."""
        outcome: Outcome[PublishResult] = Outcome()
        if not packages:
            _LOGGER.info("No charts to publish to GitHub releases")
            return outcome
        sem = asyncio.Semaphore(concurrency or self._config.repository.release.concurrency)

        async def _publish(package: Package) -> PublishResult | None:
            async with sem:
                return await isolate(
                    outcome, str(package), "publish release", self.publish(package)
                )

        with trace_context("Publish releases"):
            word = "release" if len(packages) == 1 else "releases"
            _LOGGER.info("Publishing %d GitHub %s...", len(packages), word)
            results = await asyncio.gather(*(_publish(package) for package in packages))
        for result in results:
            if result is None:
                continue
            if result.created:
                outcome.succeeded.append(result)
            else:
                outcome.skipped.append(result.release.tag_name)
        if outcome.succeeded:
            word = "release" if len(outcome.succeeded) == 1 else "releases"
            _LOGGER.info("Successfully published %d GitHub %s", len(outcome.succeeded), word)
        return outcome

    async def delete(self, chart: DeletedChart) -> list[Release]:
        """Delete every release of a removed chart."""
        prefix = self.tag_prefix(chart.name)
        releases = [
            release
            for release in await self._api.list_releases(prefix)
            if is_chart_release(release.tag_name, prefix)
        ]
        for release in releases:
            await self._api.delete_release(release)
        _LOGGER.info("Deleted %d releases for '%s' chart", len(releases), chart)
        return releases

    async def delete_all(self, charts: Sequence[DeletedChart]) -> Outcome[DeletedChart]:
        """Delete releases for each removed chart, isolating failures."""
        outcome: Outcome[DeletedChart] = Outcome()
        with trace_context("Delete releases"):
            for chart in charts:
                deleted = await isolate(
                    outcome, str(chart), "delete releases", self.delete(chart)
                )
                if deleted is not None:
                    outcome.succeeded.append(chart)
        return outcome

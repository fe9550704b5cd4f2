"""Regenerate the per-chart repository index from release history.

Every chart gets its own `index.yaml` listing all released versions, built
from scratch on each run by merging the archives attached to the chart's
releases one at a time with `helm repo index --merge`. Timestamps that helm
would take from the clock are replaced with the creation time of the release
that owns each version, so regenerating from the same release history always
produces identical files.

A redirect page (`index.html`) is written next to each index pointing at the
chart in the public repository.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
import logging
from pathlib import Path
import tempfile
from typing import Any

import yaml

from .config import Config
from .context import trace_context
from .exceptions import InputException, ReleaseException
from .github.rest import ReleaseApi
from .helm import INDEX_FILE, PackagingTool
from .manifest import ChartKind, Release, is_chart_release
from .outcome import IndexResult, Outcome, isolate
from .publisher import tag_prefix
from .store import ArtifactStore
from .template import REDIRECT_TEMPLATE, TemplateRenderer

__all__ = [
    "IndexGenerator",
    "IndexTarget",
    "normalize_index",
]

_LOGGER = logging.getLogger(__name__)

REDIRECT_FILE = "index.html"


@dataclass(frozen=True)
class IndexTarget:
    """A chart that should have a repository index."""

    kind: ChartKind
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


def normalize_index(doc: dict[str, Any], created: dict[str, str]) -> dict[str, Any]:
    """Replace clock based timestamps in a helm index document.

    Each entry's `created` is taken from `created`, keyed by the entry's first
    download url. The `generated` timestamp becomes the newest entry time.
    """
    times: list[str] = []
    for versions in (doc.get("entries") or {}).values():
        for entry in versions:
            urls = entry.get("urls") or []
            if urls and (timestamp := created.get(urls[0])):
                entry["created"] = timestamp
                times.append(timestamp)
    if times:
        doc["generated"] = max(times)
    return doc


class IndexGenerator:
    """Writes `index.yaml` and `index.html` for each chart."""

    def __init__(
        self,
        config: Config,
        api: ReleaseApi,
        tool: PackagingTool,
        store: ArtifactStore,
        renderer: TemplateRenderer,
        output: Path = Path("."),
    ) -> None:
        """Initialize IndexGenerator."""
        self._config = config
        self._api = api
        self._tool = tool
        self._store = store
        self._renderer = renderer
        self._output = output

    def chart_output(self, target: IndexTarget) -> Path:
        return self._output / self._config.chart_root(target.kind) / target.name

    def download_base(self, release: Release) -> str:
        github = self._config.github
        return f"{github.html_url}/releases/download/{release.tag_name}"

    def redirect_url(self, target: IndexTarget) -> str:
        base = self._config.repository.url or self._config.github.html_url
        return f"{base.rstrip('/')}/{self._config.chart_root(target.kind)}/{target.name}"

    async def _merge_release(
        self, target: IndexTarget, release: Release, scratch: Path, merged: Path | None
    ) -> Path | None:
        """Merge one release archive into the index built so far."""
        asset_name = f"{target.kind}.tgz"
        asset = next((a for a in release.assets if a.name == asset_name), None)
        if asset is None:
            _LOGGER.warning(
                "Release '%s' has no %s asset, skipping", release.tag_name, asset_name
            )
            return None
        data = await self._api.download_asset(asset)
        workdir = scratch / release.tag_name
        await self._store.write_bytes(workdir / asset.name, data)
        return await self._tool.repo_index(workdir, self.download_base(release), merged)

    async def build_index(
        self, target: IndexTarget, releases: Sequence[Release]
    ) -> dict[str, Any] | None:
        """Build the index document for a chart from its releases."""
        created: dict[str, str] = {}
        merged: Path | None = None
        with tempfile.TemporaryDirectory(prefix="chart-release-index-") as tmp_dir:
            scratch = Path(tmp_dir)
            for release in sorted(releases, key=lambda r: r.tag_name):
                try:
                    index = await self._merge_release(target, release, scratch, merged)
                except ReleaseException as err:
                    _LOGGER.warning(
                        "Unable to index release '%s': %s", release.tag_name, err
                    )
                    continue
                if index is None:
                    continue
                merged = scratch / INDEX_FILE
                await self._store.write_bytes(merged, await self._store.read_bytes(index))
                created[f"{self.download_base(release)}/{target.kind}.tgz"] = (
                    release.created_at
                )
            if merged is None:
                return None
            try:
                doc = yaml.safe_load(await self._store.read_text(merged))
            except yaml.YAMLError as err:
                raise InputException(f"Unable to parse generated index: {err}") from err
        return normalize_index(doc, created)

    async def write_redirect(self, target: IndexTarget) -> Path:
        html = self._renderer.render(
            self._config.repository.chart.redirect.template,
            REDIRECT_TEMPLATE,
            {
                "name": target.name,
                "type": self._config.chart_root(target.kind),
                "url": self.redirect_url(target),
            },
        )
        path = self.chart_output(target) / REDIRECT_FILE
        await self._store.write_text(path, html)
        return path

    async def regenerate_chart(
        self, target: IndexTarget, releases: Sequence[Release]
    ) -> list[Path] | None:
        """Write the index and redirect page for one chart.

        Returns the written files, or None when the chart has no releases.
        """
        prefix = tag_prefix(self._config.repository.release.title, target.name)
        matching = [r for r in releases if is_chart_release(r.tag_name, prefix)]
        if not matching:
            _LOGGER.info("No releases found for '%s' chart, skipping index", target)
            return None
        doc = await self.build_index(target, matching)
        if doc is None:
            _LOGGER.warning("No release archives found for '%s' chart", target)
            return None
        index_path = self.chart_output(target) / INDEX_FILE
        await self._store.write_text(
            index_path, yaml.safe_dump(doc, sort_keys=True, default_flow_style=False)
        )
        _LOGGER.info("Generated index for '%s' chart", target)
        return [index_path, await self.write_redirect(target)]

    async def regenerate(
        self, releases: Sequence[Release], charts: Sequence[IndexTarget]
    ) -> IndexResult:
        """Regenerate the index of every chart, isolating per chart failures."""
        outcome: Outcome[tuple[IndexTarget, list[Path]]] = Outcome()

        async def _regenerate(target: IndexTarget) -> None:
            files = await isolate(
                outcome,
                str(target),
                "generate index",
                self.regenerate_chart(target, releases),
            )
            if files is not None:
                outcome.succeeded.append((target, files))
            elif not any(f.item == str(target) for f in outcome.failures):
                outcome.skipped.append(str(target))

        with trace_context("Generate indexes"):
            await asyncio.gather(*(_regenerate(target) for target in charts))

        generated = sorted(outcome.succeeded, key=lambda item: str(item[0]))
        if generated:
            word = "index" if len(generated) == 1 else "indexes"
            _LOGGER.info("Successfully generated %d chart %s", len(generated), word)
        return IndexResult(
            indexed=[str(target) for target, _ in generated],
            skipped=sorted(outcome.skipped),
            files=[path for _, files in generated for path in files],
            failures=outcome.failures,
        )

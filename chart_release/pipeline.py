"""End to end release pipeline for a multi-chart repository.

The pipeline runs these phases in order, each one tolerating failures of
individual charts:

1. Detect the charts touched by a set of changed files.
2. Delete the releases of charts that were removed.
3. Package the changed charts and publish a GitHub release for each.
4. Regenerate the repository index of every chart from release history.
5. Mirror the packages of this change set to an OCI registry.
6. Commit the generated index files back with a signed commit.

Example usage:

```python
pipeline = ReleasePipeline(config, store, Helm(), RestReleaseApi(client))
summary = await pipeline.process(await vcs.changed_files("HEAD~1"))
```
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
import logging
from pathlib import Path

from oras.client import OrasClient

from .commit import SignedCommitBuilder
from .config import Config
from .context import get_trace_collector, trace_context
from .detector import detect_changes
from .exceptions import ReleaseException
from .github.rest import ReleaseApi
from .helm import PackagingTool, package_all
from .index import IndexGenerator, IndexTarget
from .issues import IssueService
from .manifest import ChartKind, DeletedChart, DetectedCharts, Package, Release
from .oci import OciPublisher
from .outcome import (
    DeleteSummary,
    Failure,
    FailureKind,
    IndexResult,
    Outcome,
    PublishSummary,
    RegistrySummary,
    isolate,
)
from .publisher import ReleasePublisher
from .store import ArtifactStore
from .template import TemplateRenderer

__all__ = [
    "ReleasePipeline",
    "RunSummary",
]

_LOGGER = logging.getLogger(__name__)

INDEX_COMMIT_MESSAGE = "chore(index): update chart indexes"


@dataclass
class RunSummary:
    """Results of every phase of a pipeline run."""

    detected: DetectedCharts = field(default_factory=DetectedCharts)
    deleted: DeleteSummary = field(default_factory=lambda: DeleteSummary(0, 0))
    published: PublishSummary = field(default_factory=lambda: PublishSummary(0, 0))
    index: IndexResult = field(default_factory=IndexResult)
    registry: RegistrySummary = field(
        default_factory=lambda: RegistrySummary(0, 0, skipped=True)
    )
    commit: str | None = None
    """Oid of the signed commit of generated files, if one was made."""

    commit_failures: list[Failure] = field(default_factory=list)

    timings: dict[str, float] = field(default_factory=dict)

    @property
    def failures(self) -> list[Failure]:
        return [
            *self.deleted.failures,
            *self.published.failures,
            *self.index.failures,
            *self.registry.failures,
            *self.commit_failures,
        ]


class ReleasePipeline:
    """Coordinates detection, packaging, publishing, indexing and commits."""

    def __init__(
        self,
        config: Config,
        store: ArtifactStore,
        tool: PackagingTool,
        releases: ReleaseApi,
        renderer: TemplateRenderer | None = None,
        issues: IssueService | None = None,
        committer: SignedCommitBuilder | None = None,
        oras_factory: Callable[[], OrasClient] = OrasClient,
    ) -> None:
        """Initialize ReleasePipeline."""
        self._config = config
        self._store = store
        self._tool = tool
        self._releases = releases
        self._renderer = renderer or TemplateRenderer(store.root)
        self._committer = committer
        self._publisher = ReleasePublisher(
            config, releases, store, self._renderer, issues
        )
        self._indexer = IndexGenerator(config, releases, tool, store, self._renderer)
        self._oci = OciPublisher(config, releases, store, oras_factory)
        self._packages: dict[tuple[ChartKind, str], Package] = {}
        # Charts packaged, or that failed packaging, in this run
        self._attempted: set[tuple[ChartKind, str]] = set()

    @property
    def publisher(self) -> ReleasePublisher:
        return self._publisher

    @property
    def oci(self) -> OciPublisher:
        return self._oci

    async def detect_changes(
        self, changed_files: Mapping[str, str] | Iterable[str]
    ) -> DetectedCharts:
        """Return the charts affected by the changed files."""
        with trace_context("Detect changes"):
            return await detect_changes(
                changed_files, self._config.chart_roots, self._store
            )

    async def _destinations(self) -> dict[ChartKind, Path]:
        packages_dir = Path(self._config.repository.release.packages)
        return {
            kind: await self._store.mkdir(packages_dir / root)
            for kind, root in self._config.chart_roots.items()
        }

    async def package_charts(self, charts: DetectedCharts) -> Outcome[Package]:
        """Package the modified charts, remembering packages for later phases.

        Charts already attempted in this run are not packaged again, so a
        failure is only reported by the first phase that hit it.
        """
        pending = [
            (kind, path)
            for kind, path in charts.items()
            if (kind, Path(path).name) not in self._attempted
        ]
        if not pending:
            return Outcome()
        self._attempted.update((kind, Path(path).name) for kind, path in pending)
        items = [(kind, self._store.resolve(path)) for kind, path in pending]
        outcome = await package_all(
            self._tool,
            items,
            await self._destinations(),
            self._config.repository.release.concurrency,
        )
        for package in outcome.succeeded:
            self._packages[(package.kind, package.name)] = package
        return outcome

    def _current_packages(self, charts: DetectedCharts) -> list[Package]:
        """Return the packages built for the charts, leaving out failed ones."""
        return [
            package
            for kind, path in charts.items()
            if (package := self._packages.get((kind, Path(path).name))) is not None
        ]

    async def package_and_publish(self, charts: DetectedCharts) -> PublishSummary:
        """Package the modified charts and publish a release for each."""
        with trace_context("Package and publish"):
            packaged = await self.package_charts(charts)
            if not self._config.repository.chart.packages.enabled:
                _LOGGER.info("Publishing of chart packages is disabled")
                return PublishSummary(
                    published=0,
                    failed=packaged.failed,
                    skipped=len(packaged.succeeded),
                    failures=packaged.failures,
                )
            published = await self._publisher.publish_all(packaged.succeeded)
        failures = [*packaged.failures, *published.failures]
        return PublishSummary(
            published=len(published.succeeded),
            failed=len(failures),
            skipped=len(published.skipped),
            failures=failures,
        )

    async def index_targets(self) -> list[IndexTarget]:
        """Return every chart present in the working tree."""
        targets = []
        for kind, root in self._config.chart_roots.items():
            targets.extend(
                IndexTarget(kind=kind, name=name)
                for name in await self._store.list_charts(root)
            )
        return targets

    async def regenerate_index(
        self, charts: Sequence[IndexTarget] | None = None
    ) -> IndexResult:
        """Rebuild the index of the given charts, or of every chart."""
        if not self._config.repository.chart.packages.enabled:
            _LOGGER.info("Chart indexes generation is disabled")
            return IndexResult()
        outcome: Outcome[list[Release]] = Outcome()
        with trace_context("Regenerate index"):
            targets = list(charts) if charts is not None else await self.index_targets()
            if not targets:
                return IndexResult()
            releases = await isolate(
                outcome, "releases", "list releases", self._releases.list_releases()
            )
            if releases is None:
                return IndexResult(
                    skipped=[str(target) for target in targets],
                    failures=outcome.failures,
                )
            return await self._indexer.regenerate(releases, targets)

    async def publish_to_registry(self, charts: DetectedCharts) -> RegistrySummary:
        """Push the packages of the changed charts to the OCI registry."""
        if not self._config.repository.oci.packages.enabled:
            _LOGGER.info("Publishing to OCI registry is disabled")
            return RegistrySummary(pushed=0, failed=0, skipped=True)
        with trace_context("Publish to registry"):
            packaged = await self.package_charts(charts)
            outcome = await self._oci.publish_all(self._current_packages(charts))
        failures = [*packaged.failures, *outcome.failures]
        return RegistrySummary(
            pushed=len(outcome.succeeded),
            failed=sum(1 for f in failures if f.kind != FailureKind.GATING),
            skipped=outcome.gated,
            failures=failures,
        )

    async def delete_charts(self, deleted: Sequence[DeletedChart]) -> DeleteSummary:
        """Delete the releases, and registry packages, of removed charts."""
        if not deleted:
            return DeleteSummary(deleted=0, failed=0)
        with trace_context("Delete charts"):
            outcome = await self._publisher.delete_all(deleted)
            if self._config.repository.oci.packages.enabled:
                for chart in deleted:
                    await isolate(
                        outcome,
                        str(chart),
                        "delete OCI package",
                        self._oci.delete(chart.kind, chart.name),
                    )
        return DeleteSummary(
            deleted=len(outcome.succeeded),
            failed=outcome.failed,
            failures=outcome.failures,
        )

    async def commit_generated(
        self,
        branch: str,
        files: Sequence[Path | str],
        message: str = INDEX_COMMIT_MESSAGE,
    ) -> str | None:
        """Commit generated files to the branch with a signed commit."""
        if self._committer is None:
            raise ReleaseException("Signed commits are not configured")
        if not files:
            _LOGGER.info("No generated files to commit")
            return None
        with trace_context("Commit generated files"):
            return await self._committer.commit_files(branch, files, message)

    async def process(
        self,
        changed_files: Mapping[str, str] | Iterable[str],
        branch: str | None = None,
    ) -> RunSummary:
        """Run every phase for a set of changed files.

        Per chart failures are reported in the summary. A failed signed commit
        is logged with the summary and then raised as `FatalFailure`.
        """
        summary = RunSummary()
        with get_trace_collector() as collector:
            summary.detected = await self.detect_changes(changed_files)
            if summary.detected.total or summary.detected.deleted:
                summary.deleted = await self.delete_charts(summary.detected.deleted)
                summary.published = await self.package_and_publish(summary.detected)
                summary.index = await self.regenerate_index()
                summary.registry = await self.publish_to_registry(summary.detected)
                if branch and self._committer is not None and summary.index.files:
                    await self._commit_index(branch, summary)
            else:
                _LOGGER.info("No chart changes detected")
        summary.timings = dict(collector.timings)
        log_summary(summary)
        Outcome[None](failures=summary.failures).raise_for_fatal()
        return summary

    async def _commit_index(self, branch: str, summary: RunSummary) -> None:
        """Commit the generated index files, recording a failure as fatal."""
        try:
            summary.commit = await self.commit_generated(branch, summary.index.files)
        except ReleaseException as err:
            summary.commit_failures.append(
                Failure(
                    kind=FailureKind.FATAL,
                    item=branch,
                    operation="commit generated files",
                    error=str(err),
                )
            )


def log_summary(summary: RunSummary) -> None:
    """Log the counts of a run and name each failure."""
    _LOGGER.info(
        "Run complete: %d charts detected, %d deleted, %d published, %d skipped, "
        "%d indexed, %d pushed",
        summary.detected.total,
        summary.deleted.deleted,
        summary.published.published,
        summary.published.skipped,
        len(summary.index.indexed),
        summary.registry.pushed,
    )
    for failure in summary.failures:
        match failure.kind:
            case FailureKind.ISOLATED:
                _LOGGER.error("Failed: %s", failure)
            case FailureKind.GATING:
                _LOGGER.warning("Skipped phase: %s", failure)
            case FailureKind.FATAL:
                _LOGGER.error("Fatal: %s", failure)
    for name, duration in sorted(summary.timings.items()):
        _LOGGER.debug("Phase %s took %0.2fs", name, duration)

"""Library for running `helm` to package charts and build repository indexes.

The packaging tool is used in two places. During a release every changed chart
has its dependencies resolved and is packaged into an archive:

```python
from chart_release.helm import Helm, package_all

helm = Helm()
outcome = await package_all(
    helm,
    [(ChartKind.APPLICATION, Path("application/nginx"))],
    {ChartKind.APPLICATION: Path(".cr-release-packages/application")},
)
for package in outcome.succeeded:
    print(f"Packaged {package.source_file_name}")
```

When regenerating a chart index each released archive is merged into the
chart's `index.yaml` with `helm repo index --merge`.
"""

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Mapping, Sequence
import logging
from pathlib import Path

from . import command
from .context import trace_context
from .exceptions import HelmException, ReleaseException
from .manifest import ChartKind, Package
from .outcome import FailureKind, Outcome, isolate

__all__ = [
    "PackagingTool",
    "Helm",
    "package_all",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"
PACKAGED_MARKER = "Successfully packaged chart and saved it to:"
INDEX_FILE = "index.yaml"
DEFAULT_CONCURRENCY = 4


class PackagingTool(ABC):
    """Builds chart archives and repository indexes."""

    @abstractmethod
    async def update_dependencies(self, chart_dir: Path) -> None:
        """Resolve and download the dependencies declared by a chart."""

    @abstractmethod
    async def package(self, chart_dir: Path, destination: Path, kind: ChartKind) -> Package:
        """Package a chart directory into an archive in `destination`."""

    @abstractmethod
    async def repo_index(self, directory: Path, url: str, merge: Path | None = None) -> Path:
        """Index the archives in `directory`, merging into an existing index.

        Returns the path of the index file written into `directory`.
        """


class Helm(PackagingTool):
    """Runs the helm CLI."""

    def __init__(self, cache_dir: Path | None = None) -> None:
        """Initialize Helm."""
        self._flags: list[str] = []
        if cache_dir:
            self._flags.extend(["--repository-cache", str(cache_dir)])

    async def update_dependencies(self, chart_dir: Path) -> None:
        """Run the dependency update command for the chart."""
        args = [HELM_BIN, "dependency", "update", str(chart_dir)]
        args.extend(self._flags)
        await command.run(command.Command(args, exc=HelmException))

    async def package(self, chart_dir: Path, destination: Path, kind: ChartKind) -> Package:
        """Package the chart and return the archive helm reports it saved."""
        args = [HELM_BIN, "package", str(chart_dir), "--destination", str(destination)]
        output = await command.run(command.Command(args, exc=HelmException))
        for line in output.splitlines():
            if PACKAGED_MARKER in line:
                path = Path(line.split(PACKAGED_MARKER, 1)[1].strip())
                _LOGGER.info("Packaged chart %s to %s", chart_dir, path)
                return Package.parse(path, kind)
        raise HelmException(f"Unable to find packaged archive for {chart_dir}: {output}")

    async def repo_index(self, directory: Path, url: str, merge: Path | None = None) -> Path:
        """Run `helm repo index` for the directory."""
        args = [HELM_BIN, "repo", "index", str(directory), "--url", url]
        if merge:
            args.extend(["--merge", str(merge)])
        await command.run(command.Command(args, exc=HelmException))
        return directory / INDEX_FILE


async def package_all(
    tool: PackagingTool,
    charts: Sequence[tuple[ChartKind, Path]],
    destinations: Mapping[ChartKind, Path],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> Outcome[Package]:
    """Package charts concurrently, isolating each chart's failure.

    Dependency resolution always completes before packaging for a chart. A
    chart failing either step is recorded in the outcome and left out of the
    packages; the other charts are unaffected.
    """
    outcome: Outcome[Package] = Outcome()
    sem = asyncio.Semaphore(concurrency)

    async def _package(kind: ChartKind, chart_dir: Path) -> Package | None:
        item = f"{kind}/{chart_dir.name}"
        async with sem:
            try:
                await tool.update_dependencies(chart_dir)
            except (ReleaseException, OSError) as err:
                outcome.add_failure(FailureKind.ISOLATED, item, "update dependencies", err)
                return None
            return await isolate(
                outcome,
                item,
                "package chart",
                tool.package(chart_dir, destinations[kind], kind),
            )

    with trace_context("Package charts"):
        word = "chart" if len(charts) == 1 else "charts"
        _LOGGER.info("Packaging %d %s...", len(charts), word)
        results = await asyncio.gather(
            *(_package(kind, chart_dir) for kind, chart_dir in charts)
        )
    outcome.succeeded.extend(
        sorted(
            (package for package in results if package is not None),
            key=lambda p: (p.kind, p.source_file_name),
        )
    )
    word = "chart" if len(outcome.succeeded) == 1 else "charts"
    _LOGGER.info("Successfully packaged %d %s", len(outcome.succeeded), word)
    return outcome

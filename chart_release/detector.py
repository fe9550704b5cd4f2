"""Map changed file paths to the chart directories they affect."""

from collections.abc import Iterable, Mapping
import logging
from pathlib import PurePosixPath

from .manifest import CHART_MANIFEST, ChartKind, DeletedChart, DetectedCharts
from .store import ArtifactStore

__all__ = [
    "detect_changes",
    "chart_directory",
]

_LOGGER = logging.getLogger(__name__)

STATUS_REMOVED = "removed"
DEFAULT_STATUS = "modified"


def chart_directory(path: str, root: str) -> str | None:
    """Return `<root>/<chart>` when the path is a file inside a chart directory.

    The path needs at least two segments below the root (the chart directory
    and a file within it) to be attributed to a chart.
    """
    root = root.strip("/")
    if not path.startswith(root + "/"):
        return None
    parts = PurePosixPath(path).parts
    root_parts = PurePosixPath(root).parts
    if len(parts) < len(root_parts) + 2:
        return None
    return str(PurePosixPath(*parts[: len(root_parts) + 1]))


def _normalize(files: Mapping[str, str] | Iterable[str]) -> dict[str, str]:
    if isinstance(files, Mapping):
        return dict(files)
    return {path: DEFAULT_STATUS for path in files}


async def detect_changes(
    files: Mapping[str, str] | Iterable[str],
    roots: Mapping[ChartKind, str],
    store: ArtifactStore,
) -> DetectedCharts:
    """Partition changed files into modified and deleted charts by kind.

    A candidate directory is a modified chart only when its manifest still
    exists. A candidate whose manifest is reported as removed is a deleted
    chart. Anything else (stray files in a directory without a manifest) is
    ignored.
    """
    statuses = _normalize(files)
    candidates: dict[str, ChartKind] = {}
    for path in statuses:
        for kind, root in roots.items():
            if (chart_dir := chart_directory(path, root)) is not None:
                candidates[chart_dir] = kind

    result = DetectedCharts()
    for chart_dir in sorted(candidates):
        kind = candidates[chart_dir]
        manifest = f"{chart_dir}/{CHART_MANIFEST}"
        try:
            has_manifest = await store.exists(manifest)
        except OSError as err:
            _LOGGER.error("Unable to read chart directory %s: %s", chart_dir, err)
            continue
        if has_manifest:
            result.charts(kind).append(chart_dir)
        elif statuses.get(manifest) == STATUS_REMOVED:
            name = PurePosixPath(chart_dir).name
            result.deleted.append(DeletedChart(kind=kind, name=name, path=chart_dir))
        else:
            _LOGGER.debug("Ignoring %s, no %s found", chart_dir, CHART_MANIFEST)

    if result.total:
        word = "chart" if result.total == 1 else "charts"
        _LOGGER.info("Found %d modified %s", result.total, word)
    if result.deleted:
        word = "chart" if len(result.deleted) == 1 else "charts"
        _LOGGER.info("Found %d deleted %s", len(result.deleted), word)
    return result

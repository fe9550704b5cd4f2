"""Representation of charts, packages, releases and commits.

These objects flow between the pipeline components. A `Chart` is read from a
chart directory, a `Package` is the archive built from it, a `Release` is the
remote record created for a package and a `CommitChangeSet` holds generated
files destined for a signed commit.
"""

import base64
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from pathlib import Path
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "ChartKind",
    "Chart",
    "ChartMetadata",
    "ChartDependency",
    "Package",
    "Release",
    "ReleaseAsset",
    "FileAddition",
    "FileDeletion",
    "CommitChangeSet",
    "DeletedChart",
    "DetectedCharts",
    "is_chart_release",
]

_LOGGER = logging.getLogger(__name__)


CHART_MANIFEST = "Chart.yaml"
PACKAGE_EXT = ".tgz"
PACKAGE_SEPARATOR = "-"
PACKAGE_CONTENT_TYPE = "application/gzip"


class ChartKind(StrEnum):
    """The kind of a chart, derived from the root directory it lives in."""

    APPLICATION = "application"
    LIBRARY = "library"


@dataclass(frozen=True)
class ChartDependency(DataClassDictMixin):
    """A dependency declared in a chart manifest."""

    name: str
    """The name of the dependency chart."""

    version: str = ""
    """The version constraint of the dependency."""

    repository: str = ""
    """The repository the dependency is fetched from."""


@dataclass(frozen=True)
class ChartMetadata(DataClassDictMixin):
    """Contents of a `Chart.yaml` manifest."""

    name: str
    """The name of the chart."""

    version: str
    """The semantic version of the chart."""

    description: str = ""

    app_version: str | None = field(
        metadata=field_options(alias="appVersion"), default=None
    )
    """Version of the application packaged by the chart."""

    kube_version: str | None = field(
        metadata=field_options(alias="kubeVersion"), default=None
    )
    """Kubernetes version constraint."""

    dependencies: list[ChartDependency] = field(default_factory=list)

    sources: list[str] = field(default_factory=list)
    """Source code URLs."""

    @classmethod
    def parse_doc(cls, doc: Any) -> "ChartMetadata":
        """Parse the metadata from a loaded `Chart.yaml` document."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid {CHART_MANIFEST}, expected a mapping: {doc}")
        if not (name := doc.get("name")):
            raise InputException(f"Invalid {CHART_MANIFEST} missing name: {doc}")
        if not (version := doc.get("version")):
            raise InputException(f"Invalid {CHART_MANIFEST} missing version: {doc}")
        return ChartMetadata(
            name=str(name),
            version=str(version),
            description=doc.get("description") or "",
            app_version=(
                str(doc["appVersion"]) if doc.get("appVersion") is not None else None
            ),
            kube_version=doc.get("kubeVersion"),
            dependencies=[
                ChartDependency(
                    name=dep["name"],
                    version=str(dep.get("version") or ""),
                    repository=dep.get("repository") or "",
                )
                for dep in doc.get("dependencies") or ()
                if isinstance(dep, dict) and dep.get("name")
            ],
            sources=list(doc.get("sources") or ()),
        )

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True)
class Chart:
    """A chart directory read from the working tree."""

    name: str
    kind: ChartKind
    version: str

    path: Path
    """The chart directory containing the manifest."""

    metadata: ChartMetadata

    has_icon: bool = False
    """The chart directory contains an icon file."""

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


def split_package_name(file_name: str) -> tuple[str, str]:
    """Split a package file name into the chart name and version.

    The split happens at the last separator since chart names may themselves
    contain separators: `my-app-1.2.3.tgz` is `("my-app", "1.2.3")`.
    """
    if not file_name.endswith(PACKAGE_EXT):
        raise InputException(f"Package '{file_name}' is not a {PACKAGE_EXT} archive")
    stem = file_name[: -len(PACKAGE_EXT)]
    name, sep, version = stem.rpartition(PACKAGE_SEPARATOR)
    if not sep or not name or not version:
        raise InputException(
            f"Package '{file_name}' does not follow <name>{PACKAGE_SEPARATOR}<version>"
        )
    return name, version


def package_file_name(name: str, version: str) -> str:
    """Return the archive name helm produces for a chart version."""
    return f"{name}{PACKAGE_SEPARATOR}{version}{PACKAGE_EXT}"


def is_chart_release(tag: str, prefix: str) -> bool:
    """Return True when the tag belongs to the chart with the tag prefix.

    The character following the prefix must start a version so that the
    releases of `nginx` do not include those of `nginx-ingress`.
    """
    return tag.startswith(prefix) and tag[len(prefix) : len(prefix) + 1].isdigit()


@dataclass(frozen=True)
class Package:
    """A packaged chart archive on local disk."""

    source_file_name: str
    """The archive file name, `<name>-<version>.tgz`."""

    kind: ChartKind

    path: Path
    """Full path to the archive."""

    @classmethod
    def parse(cls, path: Path, kind: ChartKind) -> "Package":
        """Build a Package from an archive path, validating the file name."""
        split_package_name(path.name)
        return Package(source_file_name=path.name, kind=kind, path=path)

    @property
    def name(self) -> str:
        return split_package_name(self.source_file_name)[0]

    @property
    def version(self) -> str:
        return split_package_name(self.source_file_name)[1]

    @property
    def asset_name(self) -> str:
        """Name of the release asset, which discriminates the chart kind."""
        return f"{self.kind}{PACKAGE_EXT}"

    def __str__(self) -> str:
        return f"{self.kind}/{self.source_file_name}"


@dataclass(frozen=True)
class ReleaseAsset(DataClassDictMixin):
    """A binary file attached to a release."""

    id: int
    name: str
    download_url: str
    content_type: str = "application/octet-stream"
    size: int = 0
    digest: str | None = None
    """Content digest reported by the API, e.g. `sha256:<hex>`."""

    @classmethod
    def from_api(cls, doc: dict[str, Any]) -> "ReleaseAsset":
        return ReleaseAsset(
            id=doc["id"],
            name=doc["name"],
            download_url=doc.get("browser_download_url", ""),
            content_type=doc.get("content_type") or "application/octet-stream",
            size=doc.get("size") or 0,
            digest=doc.get("digest"),
        )

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True)
class Release(DataClassDictMixin):
    """A remote release pairing a tag with notes and a chart archive."""

    id: int
    tag_name: str
    name: str = ""
    body: str = ""
    created_at: str = ""
    upload_url: str = ""
    assets: list[ReleaseAsset] = field(default_factory=list)

    existing: bool = False
    """The release was found by a pre-check rather than created by this run."""

    @classmethod
    def from_api(cls, doc: dict[str, Any], existing: bool = False) -> "Release":
        return Release(
            id=doc["id"],
            tag_name=doc["tag_name"],
            name=doc.get("name") or "",
            body=doc.get("body") or "",
            created_at=doc.get("created_at") or "",
            upload_url=doc.get("upload_url") or "",
            assets=[ReleaseAsset.from_api(asset) for asset in doc.get("assets") or ()],
            existing=existing,
        )

    def package_asset(self) -> ReleaseAsset | None:
        """Return the chart archive attached to the release, if any."""
        return next(
            (asset for asset in self.assets if asset.name.endswith(PACKAGE_EXT)), None
        )


@dataclass(frozen=True)
class FileAddition(DataClassDictMixin):
    """A file added or modified by a commit, with base64 contents."""

    path: str
    contents: str

    @classmethod
    def from_bytes(cls, path: str, data: bytes) -> "FileAddition":
        return FileAddition(path=path, contents=base64.b64encode(data).decode("ascii"))


@dataclass(frozen=True)
class FileDeletion(DataClassDictMixin):
    """A file removed by a commit."""

    path: str


@dataclass
class CommitChangeSet:
    """Additions and deletions for a single atomic commit."""

    additions: list[FileAddition] = field(default_factory=list)
    deletions: list[FileDeletion] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.additions and not self.deletions

    def __len__(self) -> int:
        return len(self.additions) + len(self.deletions)


@dataclass(frozen=True)
class DeletedChart:
    """A chart whose manifest was removed in the change set."""

    kind: ChartKind
    name: str
    path: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


@dataclass
class DetectedCharts:
    """Chart directories affected by a change set, partitioned by kind."""

    application: list[str] = field(default_factory=list)
    library: list[str] = field(default_factory=list)
    deleted: list[DeletedChart] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of modified charts, excluding deletions."""
        return len(self.application) + len(self.library)

    def charts(self, kind: ChartKind) -> list[str]:
        if kind == ChartKind.APPLICATION:
            return self.application
        return self.library

    def items(self) -> list[tuple[ChartKind, str]]:
        """Every modified chart directory with its kind."""
        return [(kind, path) for kind in ChartKind for path in self.charts(kind)]

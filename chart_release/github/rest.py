"""GitHub REST API for releases, release assets, packages and changed files."""

from abc import ABC, abstractmethod
import logging
from urllib.parse import quote

from chart_release.manifest import ChartKind, Release, ReleaseAsset

from .api import PAGE_SIZE, GitHubClient

__all__ = [
    "ReleaseApi",
    "RestReleaseApi",
]

_LOGGER = logging.getLogger(__name__)

OWNER_TYPE_ORGANIZATION = "Organization"
PACKAGE_TYPE = "container"


class ReleaseApi(ABC):
    """Releases and packages hosted by the platform."""

    @abstractmethod
    async def get_release_by_tag(self, tag: str) -> Release | None:
        """Return the release for a tag, or None when there is none."""

    @abstractmethod
    async def create_release(self, tag: str, name: str, body: str) -> Release:
        """Create a published release for a tag."""

    @abstractmethod
    async def upload_release_asset(
        self, release: Release, name: str, data: bytes, content_type: str
    ) -> ReleaseAsset:
        """Attach a binary asset to a release."""

    @abstractmethod
    async def list_releases(self, prefix: str | None = None) -> list[Release]:
        """Return all releases, optionally only those whose tag has the prefix."""

    @abstractmethod
    async def download_asset(self, asset: ReleaseAsset) -> bytes:
        """Return the contents of a release asset."""

    @abstractmethod
    async def delete_release(self, release: Release) -> None:
        """Delete a release and its tag."""

    @abstractmethod
    async def delete_package(self, name: str, kind: ChartKind) -> bool:
        """Delete a registry package, returning False when it did not exist."""


class RestReleaseApi(ReleaseApi):
    """ReleaseApi backed by the GitHub REST API."""

    def __init__(self, client: GitHubClient) -> None:
        """Initialize RestReleaseApi."""
        self._client = client
        self._owner_type: str | None = None

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self._client.config.repository}"

    async def get_release_by_tag(self, tag: str) -> Release | None:
        response = await self._client.request(
            "get release by tag",
            "GET",
            f"{self._repo_path}/releases/tags/{quote(tag, safe='')}",
            allow_missing=True,
        )
        if response is None:
            _LOGGER.debug("No release found for tag %s", tag)
            return None
        return Release.from_api(response.json(), existing=True)

    async def create_release(self, tag: str, name: str, body: str) -> Release:
        data = await self._client.json(
            "create release",
            "POST",
            f"{self._repo_path}/releases",
            json={
                "tag_name": tag,
                "name": name,
                "body": body,
                "draft": False,
                "prerelease": False,
            },
        )
        _LOGGER.info("Created release %s", data["tag_name"])
        return Release.from_api(data)

    def _upload_url(self, release: Release) -> str:
        if release.upload_url:
            # The API returns a URI template e.g. `.../assets{?name,label}`
            return release.upload_url.split("{", 1)[0]
        config = self._client.config
        return f"{config.upload_url}{self._repo_path}/releases/{release.id}/assets"

    async def upload_release_asset(
        self, release: Release, name: str, data: bytes, content_type: str
    ) -> ReleaseAsset:
        doc = await self._client.json(
            "upload release asset",
            "POST",
            self._upload_url(release),
            params={"name": name},
            content=data,
            headers={"Content-Type": content_type},
        )
        _LOGGER.info("Uploaded asset %s to release %s", name, release.tag_name)
        return ReleaseAsset.from_api(doc)

    async def list_releases(self, prefix: str | None = None) -> list[Release]:
        releases: list[Release] = []
        page = 1
        while True:
            docs = await self._client.json(
                "list releases",
                "GET",
                f"{self._repo_path}/releases",
                params={"per_page": PAGE_SIZE, "page": page},
            )
            releases.extend(
                Release.from_api(doc)
                for doc in docs
                if prefix is None or doc["tag_name"].startswith(prefix)
            )
            if len(docs) < PAGE_SIZE:
                break
            page += 1
        suffix = f" with '{prefix}' tag prefix" if prefix else ""
        _LOGGER.info("Found %d releases%s", len(releases), suffix)
        return releases

    async def download_asset(self, asset: ReleaseAsset) -> bytes:
        response = await self._client.fetch(
            "download release asset",
            "GET",
            f"{self._repo_path}/releases/assets/{asset.id}",
            headers={"Accept": "application/octet-stream"},
        )
        return response.content

    async def delete_release(self, release: Release) -> None:
        await self._client.request(
            "delete release",
            "DELETE",
            f"{self._repo_path}/releases/{release.id}",
            allow_missing=True,
        )
        await self._client.request(
            "delete tag",
            "DELETE",
            f"{self._repo_path}/git/refs/tags/{quote(release.tag_name, safe='')}",
            allow_missing=True,
        )
        _LOGGER.info("Deleted release %s", release.tag_name)

    async def _owner_packages_path(self) -> str:
        config = self._client.config
        if self._owner_type is None:
            doc = await self._client.json(
                "get repository owner", "GET", f"/users/{config.owner}"
            )
            self._owner_type = doc.get("type", "User")
        if self._owner_type == OWNER_TYPE_ORGANIZATION:
            return f"/orgs/{config.owner}/packages"
        return "/user/packages"

    async def delete_package(self, name: str, kind: ChartKind) -> bool:
        package = quote(f"{self._client.config.name}/{kind}/{name}", safe="")
        base = await self._owner_packages_path()
        response = await self._client.request(
            "delete package",
            "DELETE",
            f"{base}/{PACKAGE_TYPE}/{package}",
            allow_missing=True,
        )
        if response is None:
            _LOGGER.debug("No existing package %s/%s", kind, name)
            return False
        _LOGGER.info("Deleted existing package %s/%s", kind, name)
        return True

    async def get_updated_files(self, base: str, head: str) -> dict[str, str]:
        """Return files changed between two commits mapped to their status."""
        data = await self._client.json(
            "compare commits",
            "GET",
            f"{self._repo_path}/compare/{base}...{head}",
        )
        files = _file_statuses(data.get("files") or [])
        _LOGGER.info("Found %d files changed between %s and %s", len(files), base, head)
        return files

    async def pull_request_files(self, number: int) -> dict[str, str]:
        """Return files changed by a pull request mapped to their status."""
        files: dict[str, str] = {}
        page = 1
        while True:
            docs = await self._client.json(
                "list pull request files",
                "GET",
                f"{self._repo_path}/pulls/{number}/files",
                params={"per_page": PAGE_SIZE, "page": page},
            )
            files.update(_file_statuses(docs))
            if len(docs) < PAGE_SIZE:
                break
            page += 1
        return files


def _file_statuses(docs: list[dict]) -> dict[str, str]:
    """Map changed files to their status, reporting a rename source as removed."""
    files: dict[str, str] = {}
    for doc in docs:
        if previous := doc.get("previous_filename"):
            files[previous] = "removed"
        files[doc["filename"]] = doc["status"]
    return files

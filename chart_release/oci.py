"""Mirror packaged charts to an OCI registry.

Charts are pushed with the media types helm uses for `helm push`, so the
result can be installed with `helm install oci://<registry>/<owner>/<repo>/<kind>/<name>`.
Registry login is a gate for the whole phase: without it nothing is pushed.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
import json
import logging
from pathlib import Path
import tempfile

from oras.client import OrasClient

from .config import Config
from .context import trace_context
from .exceptions import RegistryException
from .github.rest import ReleaseApi
from .manifest import ChartKind, Package
from .outcome import FailureKind, Outcome, isolate
from .store import ArtifactStore

__all__ = [
    "OciPublisher",
    "RegistryResult",
]

_LOGGER = logging.getLogger(__name__)

HELM_CONFIG_MEDIA_TYPE = "application/vnd.cncf.helm.config.v1+json"
HELM_CHART_MEDIA_TYPE = "application/vnd.cncf.helm.chart.content.v1.tar+gzip"


@dataclass(frozen=True)
class RegistryResult:
    """A package pushed to the registry."""

    package: Package
    reference: str


class OciPublisher:
    """Pushes chart archives to the configured registry."""

    def __init__(
        self,
        config: Config,
        api: ReleaseApi,
        store: ArtifactStore,
        client_factory: Callable[[], OrasClient] = OrasClient,
    ) -> None:
        """Initialize OciPublisher."""
        self._config = config
        self._api = api
        self._store = store
        self._client_factory = client_factory
        self._client: OrasClient | None = None

    @property
    def registry(self) -> str:
        return self._config.repository.oci.registry

    def repository(self, kind: ChartKind, name: str) -> str:
        """Return the registry repository for a chart, without a tag."""
        github = self._config.github
        return f"{self.registry}/{github.repository}/{kind}/{name}".lower()

    def reference(self, package: Package) -> str:
        return f"{self.repository(package.kind, package.name)}:{package.version}"

    async def authenticate(self) -> bool:
        """Log in to the registry, returning False when that is not possible."""
        github = self._config.github
        if not github.token:
            _LOGGER.warning("No registry token configured for %s", self.registry)
            return False
        client = self._client_factory()
        try:
            await asyncio.to_thread(
                client.login,
                hostname=self.registry,
                username=github.owner,
                password=github.token,
            )
        except Exception as err:  # oras raises a mix of requests and value errors
            _LOGGER.warning("Unable to authenticate to %s: %s", self.registry, err)
            return False
        self._client = client
        _LOGGER.info("Authenticated to OCI registry %s", self.registry)
        return True

    async def _config_blob(self, package: Package) -> bytes:
        chart_dir = Path(self._config.chart_root(package.kind)) / package.name
        chart = await self._store.read_chart(chart_dir, package.kind)
        return json.dumps(chart.metadata.to_dict(), sort_keys=True).encode()

    async def publish(self, package: Package) -> RegistryResult:
        """Push one chart archive to the registry."""
        if self._client is None:
            raise RegistryException(f"Not authenticated to {self.registry}")
        client = self._client
        reference = self.reference(package)
        archive = self._store.resolve(package.path)
        config_blob = await self._config_blob(package)
        with tempfile.TemporaryDirectory(prefix="chart-release-oci-") as tmp_dir:
            config_path = await self._store.write_bytes(
                Path(tmp_dir) / "config.json", config_blob
            )
            try:
                response = await asyncio.to_thread(
                    client.push,
                    target=reference,
                    files=[f"{archive}:{HELM_CHART_MEDIA_TYPE}"],
                    manifest_config=f"{config_path}:{HELM_CONFIG_MEDIA_TYPE}",
                    disable_path_validation=True,
                )
            except Exception as err:  # oras raises a mix of requests and value errors
                raise RegistryException(f"Unable to push {reference}: {err}") from err
        if not response.ok:
            raise RegistryException(
                f"Unable to push {reference}: {response.status_code} {response.text}"
            )
        _LOGGER.info("Pushed '%s' to %s", package, reference)
        return RegistryResult(package=package, reference=reference)

    async def delete(self, kind: ChartKind, name: str) -> bool:
        """Delete a chart's registry package, returning False if there was none."""
        return await self._api.delete_package(name, kind)

    async def _replace(self, package: Package) -> RegistryResult:
        await self.delete(package.kind, package.name)
        return await self.publish(package)

    async def publish_all(
        self, packages: Sequence[Package], concurrency: int | None = None
    ) -> Outcome[RegistryResult]:
        """Authenticate, then replace each chart's registry package."""
        outcome: Outcome[RegistryResult] = Outcome()
        if not packages:
            _LOGGER.info("No charts to publish to OCI registry")
            return outcome
        if not await self.authenticate():
            outcome.add_failure(
                FailureKind.GATING,
                self.registry,
                "publish to OCI registry",
                f"authentication to {self.registry} failed",
            )
            outcome.skipped.extend(str(package) for package in packages)
            return outcome

        sem = asyncio.Semaphore(concurrency or self._config.repository.release.concurrency)

        async def _push(package: Package) -> RegistryResult | None:
            async with sem:
                return await isolate(
                    outcome, str(package), "push to OCI registry", self._replace(package)
                )

        with trace_context("Publish OCI packages"):
            results = await asyncio.gather(*(_push(package) for package in packages))
        outcome.succeeded.extend(result for result in results if result is not None)
        if outcome.succeeded:
            word = "package" if len(outcome.succeeded) == 1 else "packages"
            _LOGGER.info(
                "Successfully published %d OCI %s", len(outcome.succeeded), word
            )
        return outcome

"""Configuration objects for chart-release.

A single `Config` is read once at startup and handed to every component. The
layout mirrors the YAML configuration file:

```yaml
repository:
  url: https://example.github.io/charts
  chart:
    icon: icon.png
    type:
      application: application
      library: library
  oci:
    packages:
      enabled: true
    registry: ghcr.io
  release:
    packages: .cr-release-packages
    title: "{{ .Name }}-{{ .Version }}"
github:
  repository: example/charts
```
"""

from collections.abc import Mapping
import dataclasses
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

import aiofiles
from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

from .exceptions import ConfigException
from .manifest import ChartKind

__all__ = [
    "Config",
    "read_config",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_TITLE = "{{ .Name }}-{{ .Version }}"
DEFAULT_PACKAGES_DIR = ".cr-release-packages"


@dataclass
class PackagesConfig(DataClassDictMixin):
    """Toggle for a publishing target."""

    enabled: bool = True


@dataclass
class ChartTypeConfig(DataClassDictMixin):
    """Root directories holding each kind of chart."""

    application: str = "application"
    library: str = "library"


@dataclass
class RedirectConfig(DataClassDictMixin):
    """Redirect page written next to each chart index."""

    template: str | None = None
    """Path to a Jinja2 template, or the built-in default when unset."""


@dataclass
class ChartConfig(DataClassDictMixin):
    """Settings describing chart directories."""

    icon: str = "icon.png"
    """File name of the optional chart icon."""

    type: ChartTypeConfig = field(default_factory=ChartTypeConfig)

    packages: PackagesConfig = field(default_factory=PackagesConfig)
    """GitHub releases and index.yaml publishing."""

    redirect: RedirectConfig = field(default_factory=RedirectConfig)


@dataclass
class OciConfig(DataClassDictMixin):
    """OCI registry mirroring."""

    packages: PackagesConfig = field(
        default_factory=lambda: PackagesConfig(enabled=False)
    )
    registry: str = "ghcr.io"
    """Registry host without a scheme."""


@dataclass
class ReleaseConfig(DataClassDictMixin):
    """Settings for release creation."""

    packages: str = DEFAULT_PACKAGES_DIR
    """Scratch directory where packaged charts are written."""

    template: str | None = None
    """Path to a Jinja2 release notes template, or the built-in default."""

    title: str = DEFAULT_TITLE
    """Release tag and title format."""

    concurrency: int = 4
    """Maximum number of charts packaged or published at once."""


@dataclass
class RepositoryConfig(DataClassDictMixin):
    """Settings for the chart repository."""

    url: str = ""
    """Public URL of the Helm chart repository."""

    chart: ChartConfig = field(default_factory=ChartConfig)
    oci: OciConfig = field(default_factory=OciConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)


@dataclass
class GitHubConfig(DataClassDictMixin):
    """Identity of the hosting repository."""

    repository: str = ""
    """The `owner/name` of the repository."""

    default_branch: str = "main"

    api_url: str = "https://api.github.com"
    upload_url: str = "https://uploads.github.com"
    server_url: str = "https://github.com"

    token: str | None = field(default=None, metadata={"serialize": "omit"})
    """Token used for the API and registry login, normally from the environment."""

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repository.split("/", 1)[-1]

    @property
    def html_url(self) -> str:
        return f"{self.server_url}/{self.repository}"

    class Config(BaseConfig):
        omit_none = True


@dataclass
class Config(DataClassDictMixin):
    """Top level configuration."""

    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)

    def get(self, path: str) -> Any:
        """Return a value by dotted path e.g. `repository.release.title`."""
        value: Any = self
        for part in path.split("."):
            if not dataclasses.is_dataclass(value) or not hasattr(value, part):
                raise ConfigException(f"Unknown configuration key '{path}'")
            value = getattr(value, part)
        return value

    @property
    def chart_roots(self) -> dict[ChartKind, str]:
        """Root directory for each chart kind."""
        types = self.repository.chart.type
        return {
            ChartKind.APPLICATION: types.application,
            ChartKind.LIBRARY: types.library,
        }

    def chart_root(self, kind: ChartKind) -> str:
        return self.chart_roots[kind]

    def with_env(self, environ: Mapping[str, str]) -> "Config":
        """Return a copy with values overridden from a GitHub Actions environment."""
        github = dataclasses.replace(
            self.github,
            repository=environ.get("GITHUB_REPOSITORY", self.github.repository),
            api_url=environ.get("GITHUB_API_URL", self.github.api_url),
            server_url=environ.get("GITHUB_SERVER_URL", self.github.server_url),
            token=environ.get("GITHUB_TOKEN", self.github.token),
        )
        return dataclasses.replace(self, github=github)

    def validate(self) -> None:
        """Check the settings that every run depends on."""
        if "/" not in self.github.repository:
            raise ConfigException(
                f"github.repository must be 'owner/name', got '{self.github.repository}'"
            )
        roots = list(self.chart_roots.values())
        if len(set(roots)) != len(roots):
            raise ConfigException(f"Chart type roots must be distinct: {roots}")
        if self.repository.release.concurrency < 1:
            raise ConfigException("repository.release.concurrency must be positive")


def parse_config(content: str) -> Config:
    """Parse the contents of a YAML configuration file."""
    if not content.strip():
        return Config()
    try:
        return yaml_decode(content, Config)
    except (MissingField, InvalidFieldValue, ValueError, TypeError) as err:
        raise ConfigException(f"Invalid configuration: {err}") from err


async def read_config(config_path: Path) -> Config:
    """Read the configuration file at the specified path."""
    try:
        async with aiofiles.open(str(config_path)) as config_file:
            content = await config_file.read()
    except FileNotFoundError as err:
        raise ConfigException(f"Configuration file not found: {config_path}") from err
    _LOGGER.debug("Loaded configuration from %s", config_path)
    return parse_config(content)

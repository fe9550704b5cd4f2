"""Tests for the configuration library."""

from pathlib import Path

import pytest

from chart_release.config import Config, parse_config, read_config
from chart_release.exceptions import ConfigException
from chart_release.manifest import ChartKind

CONFIG = """
repository:
  url: https://charts.example.com
  chart:
    type:
      application: apps
      library: libs
  oci:
    packages:
      enabled: true
  release:
    title: "v{{ .Version }}-{{ .Name }}"
    concurrency: 2
github:
  repository: example/charts
  default_branch: develop
"""


def test_defaults() -> None:
    """Test the defaults of an empty configuration file."""
    config = parse_config("")
    assert config.chart_roots == {
        ChartKind.APPLICATION: "application",
        ChartKind.LIBRARY: "library",
    }
    assert config.repository.chart.icon == "icon.png"
    assert config.repository.release.title == "{{ .Name }}-{{ .Version }}"
    assert config.repository.release.packages == ".cr-release-packages"
    assert config.repository.oci.registry == "ghcr.io"
    assert not config.repository.oci.packages.enabled
    assert config.repository.chart.packages.enabled


def test_parse_config() -> None:
    """Test parsing a full configuration file."""
    config = parse_config(CONFIG)
    assert config.chart_root(ChartKind.APPLICATION) == "apps"
    assert config.get("repository.release.title") == "v{{ .Version }}-{{ .Name }}"
    assert config.get("repository.oci.packages.enabled") is True
    assert config.github.owner == "example"
    assert config.github.name == "charts"
    assert config.github.html_url == "https://github.com/example/charts"
    config.validate()


def test_get_unknown_key() -> None:
    """Test a dotted lookup of a missing key."""
    with pytest.raises(ConfigException, match="repository.missing"):
        Config().get("repository.missing")


def test_invalid_config() -> None:
    """Test a configuration file with the wrong value types."""
    with pytest.raises(ConfigException):
        parse_config("repository:\n  release:\n    concurrency: [1, 2]\n")


def test_with_env() -> None:
    """Test values taken from a GitHub Actions environment."""
    config = parse_config(CONFIG).with_env(
        {"GITHUB_TOKEN": "secret", "GITHUB_REPOSITORY": "other/repo"}
    )
    assert config.github.token == "secret"
    assert config.github.repository == "other/repo"
    assert config.github.default_branch == "develop"
    assert "token" not in config.to_dict()["github"]


@pytest.mark.parametrize(
    "content",
    [
        "github:\n  repository: charts\n",
        "github:\n  repository: a/b\nrepository:\n  chart:\n    type:\n      application: x\n      library: x\n",
        "github:\n  repository: a/b\nrepository:\n  release:\n    concurrency: 0\n",
    ],
)
def test_validate(content: str) -> None:
    """Test settings rejected by validation."""
    with pytest.raises(ConfigException):
        parse_config(content).validate()


async def test_read_config(tmp_path: Path) -> None:
    """Test reading the configuration from a file."""
    path = tmp_path / "chart-release.yaml"
    path.write_text(CONFIG)
    config = await read_config(path)
    assert config.repository.url == "https://charts.example.com"


async def test_read_missing_config(tmp_path: Path) -> None:
    """Test reading a configuration file that does not exist."""
    with pytest.raises(ConfigException, match="not found"):
        await read_config(tmp_path / "missing.yaml")

"""Shared setup for chart-release commands."""

from argparse import ArgumentParser
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
import os
import pathlib

from chart_release import git_repo
from chart_release.commit import SignedCommitBuilder
from chart_release.config import Config, read_config
from chart_release.github import (
    GitHubClient,
    GraphQLClient,
    GraphQLCommitApi,
    RestReleaseApi,
)
from chart_release.helm import Helm
from chart_release.issues import GraphQLIssueService
from chart_release.pipeline import ReleasePipeline
from chart_release.store import ArtifactStore

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG = pathlib.Path(".github/chart-release.yaml")


def add_common_flags(args: ArgumentParser) -> None:
    """Add flags that locate the repository and its configuration."""
    args.add_argument(
        "--path",
        help="Path inside the chart repository",
        type=pathlib.Path,
        default=pathlib.Path("."),
    )
    args.add_argument(
        "--config",
        help="Configuration file, relative to the repository root",
        type=pathlib.Path,
        default=DEFAULT_CONFIG,
    )


async def load_config(root: pathlib.Path, config_path: pathlib.Path) -> Config:
    """Read the configuration file when present and apply the environment."""
    path = config_path if config_path.is_absolute() else root / config_path
    if path.exists():
        config = await read_config(path)
    else:
        _LOGGER.info("No configuration file at %s, using defaults", path)
        config = Config()
    config = config.with_env(os.environ)
    config.validate()
    return config


@dataclass
class Services:
    """Everything a command needs to talk to the repository and GitHub."""

    config: Config
    vcs: git_repo.VersionControlClient
    releases: RestReleaseApi
    committer: SignedCommitBuilder
    pipeline: ReleasePipeline


@asynccontextmanager
async def create_services(
    path: pathlib.Path, config_path: pathlib.Path
) -> AsyncGenerator[Services, None]:
    """Build the pipeline and its collaborators for the repository at `path`."""
    vcs = git_repo.VersionControlClient(git_repo.git_repo(path))
    root = vcs.root
    config = await load_config(root, config_path)
    async with GitHubClient(config.github) as client:
        releases = RestReleaseApi(client)
        graphql = GraphQLClient(client)
        committer = SignedCommitBuilder(config, GraphQLCommitApi(graphql), vcs)
        pipeline = ReleasePipeline(
            config,
            ArtifactStore(root),
            Helm(),
            releases,
            issues=GraphQLIssueService(graphql, releases),
            committer=committer,
        )
        yield Services(
            config=config,
            vcs=vcs,
            releases=releases,
            committer=committer,
            pipeline=pipeline,
        )

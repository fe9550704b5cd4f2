"""Chart-release release action."""

import logging
from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
from typing import cast

from .common import add_common_flags, create_services

_LOGGER = logging.getLogger(__name__)


class ReleaseAction:
    """Release every chart changed in a range of commits."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "release",
                help="Package and publish changed charts",
                description=(
                    "Detect charts changed between two revisions, publish a GitHub "
                    "release for each, regenerate chart indexes and mirror packages "
                    "to the OCI registry."
                ),
            ),
        )
        add_common_flags(args)
        args.add_argument(
            "--base",
            help="Revision to compare against",
            default="HEAD~1",
        )
        args.add_argument(
            "--head",
            help="Revision containing the changes",
            default="HEAD",
        )
        args.add_argument(
            "--compare",
            help="Take changed files from the GitHub compare API instead of local git",
            action=BooleanOptionalAction,
            default=False,
        )
        args.add_argument(
            "--pull-request",
            help="Take changed files from a pull request instead of local git",
            type=int,
            default=None,
        )
        args.add_argument(
            "--files",
            help="Explicit list of changed files, skipping change discovery",
            nargs="*",
            default=None,
        )
        args.add_argument(
            "--commit-branch",
            help="Commit generated index files to this branch with a signed commit",
            default=None,
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path,
        config,
        base: str,
        head: str,
        compare: bool,
        pull_request: int | None,
        files: list[str] | None,
        commit_branch: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        async with create_services(path, config) as services:
            changed: dict[str, str] | list[str]
            if files is not None:
                changed = files
            elif pull_request is not None:
                changed = await services.releases.pull_request_files(pull_request)
            elif compare:
                changed = await services.releases.get_updated_files(base, head)
            else:
                changed = await services.vcs.changed_files(base, head)
            summary = await services.pipeline.process(changed, commit_branch)

        print(f"Charts detected: {summary.detected.total}")
        print(f"Charts deleted: {summary.deleted.deleted}")
        print(f"Releases published: {summary.published.published}")
        print(f"Releases skipped: {summary.published.skipped}")
        print(f"Indexes generated: {len(summary.index.indexed)}")
        print(f"OCI packages pushed: {summary.registry.pushed}")
        if summary.commit:
            print(f"Signed commit: {summary.commit}")
        for failure in summary.failures:
            print(f"Failed: {failure}")

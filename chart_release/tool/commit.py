"""Chart-release commit action."""

import logging
import pathlib
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import cast

from .common import add_common_flags, create_services

_LOGGER = logging.getLogger(__name__)


class CommitAction:
    """Create a signed commit from local changes."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "commit",
                help="Commit staged changes with a signed commit",
                description=(
                    "Create a verified commit on a branch through the GitHub API "
                    "from the changes staged in the local repository."
                ),
            ),
        )
        add_common_flags(args)
        args.add_argument(
            "--branch",
            help="Branch to commit to",
            required=True,
        )
        args.add_argument(
            "--message",
            "-m",
            help="Commit message headline",
            required=True,
        )
        args.add_argument(
            "files",
            help="Files to stage before committing",
            type=pathlib.Path,
            nargs="*",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path,
        config,
        branch: str,
        message: str,
        files: list[pathlib.Path],
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        async with create_services(path, config) as services:
            if files:
                oid = await services.committer.commit_files(branch, files, message)
            else:
                oid = await services.committer.commit_staged(branch, message)
        if oid is None:
            print("No changes to commit")
        else:
            print(oid)

"""Chart-release index action."""

import logging
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import cast

from chart_release.exceptions import InputException
from chart_release.index import IndexTarget
from chart_release.manifest import ChartKind

from .common import add_common_flags, create_services

_LOGGER = logging.getLogger(__name__)


def parse_target(value: str) -> IndexTarget:
    """Parse a `<kind>/<name>` chart reference."""
    kind, sep, name = value.partition("/")
    if not sep or not name:
        raise InputException(f"Chart must be <kind>/<name>, got '{value}'")
    try:
        return IndexTarget(kind=ChartKind(kind), name=name)
    except ValueError as err:
        raise InputException(f"Unknown chart kind '{kind}'") from err


class IndexAction:
    """Regenerate chart repository indexes."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "index",
                help="Regenerate chart indexes from release history",
                description=(
                    "Rebuild index.yaml and index.html for charts from the "
                    "archives attached to their GitHub releases."
                ),
            ),
        )
        add_common_flags(args)
        args.add_argument(
            "--chart",
            help="Only regenerate this chart, as <kind>/<name> (may be repeated)",
            action="append",
            default=None,
        )
        args.add_argument(
            "--commit-branch",
            help="Commit the generated files to this branch with a signed commit",
            default=None,
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path,
        config,
        chart: list[str] | None,
        commit_branch: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        targets = [parse_target(value) for value in chart] if chart else None
        async with create_services(path, config) as services:
            result = await services.pipeline.regenerate_index(targets)
            oid = None
            if commit_branch and result.files:
                oid = await services.pipeline.commit_generated(
                    commit_branch, result.files
                )
        for file in result.files:
            print(file)
        for failure in result.failures:
            print(f"Failed: {failure}")
        if oid:
            print(f"Signed commit: {oid}")

"""Library for querying and staging changes in the local git repository.

The release pipeline needs three things from version control: the list of
files changed between two revisions, the current branch head used as the
optimistic concurrency token for signed commits, and the staged changes that
should become the contents of such a commit.

Example usage:

```python
from chart_release import git_repo

client = git_repo.VersionControlClient(git_repo.git_repo())
files = await client.changed_files("origin/main", "HEAD")
for path, status in files.items():
    print(f"{status}: {path}")
```
"""

import asyncio
from collections.abc import Callable, Iterable
import logging
import os
from functools import cache
from pathlib import Path
from typing import TypeVar

import aiofiles
import git

from .exceptions import GitException, InputException
from .manifest import CommitChangeSet, FileAddition, FileDeletion

__all__ = [
    "git_repo",
    "repo_root",
    "VersionControlClient",
]

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Statuses reported by `git diff --name-status`, named the way the GitHub
# compare API names them.
FILE_STATUS = {
    "A": "added",
    "C": "copied",
    "D": "removed",
    "M": "modified",
    "R": "renamed",
    "T": "changed",
}
STATUS_REMOVED = "removed"


@cache
def git_repo(path: Path | None = None) -> git.repo.Repo:
    """Return the local git repo containing the path or working directory."""
    try:
        if path is None:
            return git.repo.Repo(os.getcwd(), search_parent_directories=True)
        return git.repo.Repo(str(path), search_parent_directories=True)
    except git.GitError as err:
        raise InputException(f"Unable to find git repository at {path}: {err}") from err


def repo_root(repo: git.repo.Repo | None = None) -> Path:
    """Return the local git repo path."""
    if repo is None:
        repo = git_repo()
    return Path(repo.git.rev_parse("--show-toplevel"))


def parse_name_status(output: str) -> dict[str, str]:
    """Parse `git diff --name-status` output into a path to status mapping.

    A rename reports the old path as removed and the new path as renamed.
    """
    files: dict[str, str] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        code = fields[0][:1]
        status = FILE_STATUS.get(code, "modified")
        if code in ("R", "C") and len(fields) == 3:
            if code == "R":
                files[fields[1]] = STATUS_REMOVED
            files[fields[2]] = status
        elif len(fields) >= 2:
            files[fields[1]] = status
    return files


def _split_lines(output: str) -> list[str]:
    return [line for line in output.splitlines() if line.strip()]


class VersionControlClient:
    """Diff, status and staging primitives against a local repository."""

    def __init__(self, repo: git.repo.Repo) -> None:
        """Initialize VersionControlClient."""
        self._repo = repo

    @property
    def root(self) -> Path:
        return repo_root(self._repo)

    async def _git(self, operation: str, func: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(func)
        except (git.GitCommandError, ValueError) as err:
            raise GitException(f"Unable to {operation}: {err}") from err

    async def changed_files(self, base: str, head: str = "HEAD") -> dict[str, str]:
        """Return files changed between two revisions mapped to their status."""
        output = await self._git(
            f"diff {base}..{head}",
            lambda: self._repo.git.diff("--name-status", "-M", base, head),
        )
        files = parse_name_status(output)
        _LOGGER.info("Found %d changed files between %s and %s", len(files), base, head)
        return files

    async def head_oid(self) -> str:
        """Return the commit id the current branch points to."""
        return await self._git("resolve HEAD", lambda: self._repo.head.commit.hexsha)

    async def stage(self, paths: Iterable[Path | str]) -> None:
        """Stage the given paths, including deletions."""
        items = [str(path) for path in paths]
        if not items:
            return
        await self._git(
            "stage files", lambda: self._repo.git.add("--all", "--", *items)
        )

    async def staged_changes(
        self, paths: Iterable[Path | str] | None = None
    ) -> CommitChangeSet:
        """Build a change set from the files currently staged in the index.

        When paths are given only staged changes below them are included.
        """
        pathspec = ["--", *(str(path) for path in paths)] if paths is not None else []
        added = _split_lines(
            await self._git(
                "list staged additions",
                lambda: self._repo.git.diff(
                    "--name-only", "--staged", "--diff-filter=ACMR", *pathspec
                ),
            )
        )
        deleted = _split_lines(
            await self._git(
                "list staged deletions",
                lambda: self._repo.git.diff(
                    "--name-only", "--staged", "--diff-filter=D", *pathspec
                ),
            )
        )
        root = self.root
        additions = []
        for path in added:
            async with aiofiles.open(str(root / path), mode="rb") as f:
                additions.append(FileAddition.from_bytes(path, await f.read()))
        return CommitChangeSet(
            additions=additions,
            deletions=[FileDeletion(path=path) for path in deleted],
        )

"""Create signed commits of generated files through the GitHub API.

Generated files (chart indexes, redirect pages) are committed back with the
`createCommitOnBranch` mutation instead of a local `git commit` and push. The
hosting platform signs these commits, and the mutation only succeeds when the
branch head still matches the revision the files were generated from.

Example usage:

```python
builder = SignedCommitBuilder(config, GraphQLCommitApi(graphql), vcs)
oid = await builder.commit_staged("main", "chore(index): update chart indexes")
```
"""

import asyncio
from collections.abc import Iterable
import logging
from pathlib import Path
from typing import Any

from .config import Config
from .exceptions import ReleaseException, SignedCommitException
from .git_repo import VersionControlClient
from .github.graphql import CommitApi
from .manifest import CommitChangeSet, FileAddition, FileDeletion

__all__ = [
    "SignedCommitBuilder",
]

_LOGGER = logging.getLogger(__name__)


class SignedCommitBuilder:
    """Builds and submits one atomic commit at a time."""

    def __init__(
        self, config: Config, api: CommitApi, vcs: VersionControlClient | None = None
    ) -> None:
        """Initialize SignedCommitBuilder."""
        self._config = config
        self._api = api
        self._vcs = vcs
        self._lock = asyncio.Lock()
        # Commits created by this builder, newer than the local checkout
        self._heads: dict[str, str] = {}

    def build_input(
        self,
        branch: str,
        expected_head_oid: str,
        additions: list[FileAddition],
        deletions: list[FileDeletion],
        message: str,
    ) -> dict[str, Any]:
        """Return the `CreateCommitOnBranchInput` for a change set."""
        return {
            "branch": {
                "repositoryNameWithOwner": self._config.github.repository,
                "branchName": branch,
            },
            "expectedHeadOid": expected_head_oid,
            "fileChanges": {
                "additions": [addition.to_dict() for addition in additions],
                "deletions": [deletion.to_dict() for deletion in deletions],
            },
            "message": {"headline": message},
        }

    async def _submit(
        self,
        branch: str,
        expected_head_oid: str,
        additions: list[FileAddition],
        deletions: list[FileDeletion],
        message: str,
    ) -> str | None:
        if not branch:
            raise SignedCommitException("Branch name is required for a signed commit")
        if not expected_head_oid:
            raise SignedCommitException(
                f"Expected head commit is required for a signed commit on '{branch}'"
            )
        if not message:
            raise SignedCommitException("Commit message is required for a signed commit")
        if not additions and not deletions:
            _LOGGER.info("No changes to commit on '%s'", branch)
            return None

        commit_input = self.build_input(
            branch, expected_head_oid, additions, deletions, message
        )
        _LOGGER.info(
            "Creating signed commit on '%s' with %d additions and %d deletions",
            branch,
            len(additions),
            len(deletions),
        )
        try:
            oid = await self._api.create_commit_on_branch(commit_input)
        except ReleaseException as err:
            raise SignedCommitException(
                f"Unable to create signed commit on '{branch}': {err}"
            ) from err
        if not oid:
            raise SignedCommitException(f"Signed commit on '{branch}' returned no oid")
        self._heads[branch] = oid
        _LOGGER.info("Created signed commit %s on '%s'", oid, branch)
        return oid

    async def commit(
        self,
        branch: str,
        expected_head_oid: str,
        additions: list[FileAddition],
        deletions: list[FileDeletion],
        message: str,
    ) -> str | None:
        """Create a commit on the branch and return its oid.

        Nothing is submitted when there are no additions or deletions and
        None is returned.
        """
        async with self._lock:
            return await self._submit(
                branch, expected_head_oid, additions, deletions, message
            )

    def _require_vcs(self) -> VersionControlClient:
        if self._vcs is None:
            raise SignedCommitException("A local repository is required to commit staged files")
        return self._vcs

    async def _commit_changes(
        self, branch: str, changes: CommitChangeSet, message: str
    ) -> str | None:
        if changes.empty:
            _LOGGER.info("No changes to commit on '%s'", branch)
            return None
        head = self._heads.get(branch) or await self._require_vcs().head_oid()
        return await self._submit(
            branch, head, changes.additions, changes.deletions, message
        )

    async def commit_changes(
        self, branch: str, changes: CommitChangeSet, message: str
    ) -> str | None:
        """Commit a change set on top of the branch head.

        The head is the last commit this builder created on the branch, or the
        local head before the first one.
        """
        async with self._lock:
            return await self._commit_changes(branch, changes, message)

    async def commit_staged(self, branch: str, message: str) -> str | None:
        """Commit whatever is currently staged in the local repository."""
        vcs = self._require_vcs()
        async with self._lock:
            changes = await vcs.staged_changes()
            return await self._commit_changes(branch, changes, message)

    async def commit_files(
        self, branch: str, files: Iterable[Path | str], message: str
    ) -> str | None:
        """Stage the given files and commit the resulting changes.

        Only changes to the given files are committed, even when other files
        are staged. The index is held from staging until the commit is
        submitted.
        """
        vcs = self._require_vcs()
        paths = list(files)
        if not paths:
            _LOGGER.info("No files to commit on '%s'", branch)
            return None
        async with self._lock:
            await vcs.stage(paths)
            changes = await vcs.staged_changes(paths)
            return await self._commit_changes(branch, changes, message)

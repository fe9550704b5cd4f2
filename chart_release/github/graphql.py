"""GitHub GraphQL API for signed commits and issue queries."""

from abc import ABC, abstractmethod
import logging
from typing import Any

from chart_release.exceptions import GitHubApiException

from .api import GitHubClient

__all__ = [
    "CommitApi",
    "GraphQLClient",
    "GraphQLCommitApi",
]

_LOGGER = logging.getLogger(__name__)

GRAPHQL_PATH = "/graphql"

CREATE_COMMIT_MUTATION = """
mutation CreateCommit($input: CreateCommitOnBranchInput!) {
  createCommitOnBranch(input: $input) {
    commit {
      oid
      url
    }
  }
}
"""


class GraphQLClient:
    """Executes GraphQL documents against the GitHub endpoint."""

    def __init__(self, client: GitHubClient) -> None:
        """Initialize GraphQLClient."""
        self._client = client

    @property
    def client(self) -> GitHubClient:
        return self._client

    async def execute(
        self, operation: str, query: str, variables: dict[str, Any]
    ) -> dict[str, Any]:
        """Run a query or mutation and return its `data` object."""
        doc = await self._client.json(
            operation,
            "POST",
            GRAPHQL_PATH,
            json={"query": query, "variables": variables},
        )
        if errors := doc.get("errors"):
            messages = "; ".join(error.get("message", str(error)) for error in errors)
            raise GitHubApiException(operation, messages)
        if not (data := doc.get("data")):
            raise GitHubApiException(operation, f"Response has no data: {doc}")
        return data


class CommitApi(ABC):
    """Creates commits through the hosting platform's mutation API."""

    @abstractmethod
    async def create_commit_on_branch(self, commit_input: dict[str, Any]) -> str:
        """Submit a `CreateCommitOnBranchInput` and return the new commit oid."""


class GraphQLCommitApi(CommitApi):
    """CommitApi backed by the `createCommitOnBranch` mutation.

    Commits created this way are signed by GitHub and shown as verified. The
    mutation fails when the branch head no longer matches `expectedHeadOid`.
    """

    def __init__(self, graphql: GraphQLClient) -> None:
        """Initialize GraphQLCommitApi."""
        self._graphql = graphql

    async def create_commit_on_branch(self, commit_input: dict[str, Any]) -> str:
        data = await self._graphql.execute(
            "create signed commit",
            CREATE_COMMIT_MUTATION,
            {"input": commit_input},
        )
        try:
            commit = data["createCommitOnBranch"]["commit"]
            oid = commit["oid"]
        except (KeyError, TypeError) as err:
            raise GitHubApiException(
                "create signed commit", f"Unexpected response: {data}"
            ) from err
        _LOGGER.info("Created signed commit %s", oid)
        return str(oid)

"""Look up issues to reference in a chart's release notes.

An issue belongs to a chart when its body names the chart (`chart: nginx`)
and it carries the label of the chart kind. Only issues created since the
chart's previous release are reported.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
import re

from .exceptions import ReleaseException
from .github.graphql import GraphQLClient
from .github.rest import ReleaseApi
from .manifest import Chart, is_chart_release

__all__ = [
    "Issue",
    "IssueService",
    "GraphQLIssueService",
]

_LOGGER = logging.getLogger(__name__)

ISSUES_QUERY = """
query GetIssues($owner: String!, $repo: String!, $issues: Int!) {
  repository(owner: $owner, name: $repo) {
    issues(
      first: $issues,
      states: [CLOSED],
      orderBy: {field: UPDATED_AT, direction: DESC}
    ) {
      nodes {
        number
        state
        title
        url
        bodyText
        createdAt
        labels(first: 10) {
          nodes {
            name
          }
        }
      }
    }
  }
}
"""
MAX_ISSUES = 50


@dataclass(frozen=True)
class Issue:
    """A closed issue referenced by a release."""

    number: int
    title: str
    url: str
    state: str = "CLOSED"
    labels: list[str] = field(default_factory=list)


class IssueService(ABC):
    """Returns issues related to a chart."""

    @abstractmethod
    async def get(self, chart: Chart, tag_prefix: str) -> list[Issue]:
        """Return the issues for a chart, or an empty list when unavailable."""


class GraphQLIssueService(IssueService):
    """IssueService backed by the GitHub GraphQL API."""

    def __init__(self, graphql: GraphQLClient, releases: ReleaseApi) -> None:
        """Initialize GraphQLIssueService."""
        self._graphql = graphql
        self._releases = releases

    async def _last_release_date(self, tag_prefix: str) -> str | None:
        releases = await self._releases.list_releases(tag_prefix)
        dates = [
            release.created_at
            for release in releases
            if release.created_at and is_chart_release(release.tag_name, tag_prefix)
        ]
        return max(dates) if dates else None

    async def get(self, chart: Chart, tag_prefix: str) -> list[Issue]:
        try:
            since = await self._last_release_date(tag_prefix)
            config = self._graphql.client.config
            data = await self._graphql.execute(
                "get release issues",
                ISSUES_QUERY,
                {"owner": config.owner, "repo": config.name, "issues": MAX_ISSUES},
            )
        except ReleaseException as err:
            _LOGGER.warning("Unable to fetch issues for '%s' chart: %s", chart, err)
            return []
        repository = (data or {}).get("repository") or {}
        nodes = (repository.get("issues") or {}).get("nodes") or []
        issues = filter_issues(nodes, chart, since)
        word = "issue" if len(issues) == 1 else "issues"
        _LOGGER.info("Found %d %s for '%s' chart", len(issues), word, chart)
        return issues


def filter_issues(nodes: list[dict], chart: Chart, since: str | None) -> list[Issue]:
    """Select the issue nodes that reference the chart."""
    # A hyphen may not follow, so `nginx` does not match `nginx-ingress`
    pattern = re.compile(rf"chart:\s*{re.escape(chart.name)}(?![\w-])", re.IGNORECASE)
    result = []
    for node in nodes:
        if since and (node.get("createdAt") or "") <= since:
            continue
        labels = [label["name"] for label in (node.get("labels") or {}).get("nodes") or ()]
        if str(chart.kind) not in labels:
            continue
        if not pattern.search(node.get("bodyText") or ""):
            continue
        result.append(
            Issue(
                number=node["number"],
                title=node["title"],
                url=node["url"],
                state=node.get("state", "CLOSED"),
                labels=labels,
            )
        )
    return result

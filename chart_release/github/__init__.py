"""Clients for the GitHub REST and GraphQL APIs."""

from .api import GitHubClient
from .graphql import CommitApi, GraphQLClient, GraphQLCommitApi
from .rest import ReleaseApi, RestReleaseApi

__all__ = [
    "GitHubClient",
    "CommitApi",
    "GraphQLClient",
    "GraphQLCommitApi",
    "ReleaseApi",
    "RestReleaseApi",
]

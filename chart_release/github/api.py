"""Shared HTTP client for the GitHub REST and GraphQL endpoints."""

import logging
from typing import Any

import httpx

from chart_release.config import GitHubConfig
from chart_release.exceptions import GitHubApiException

__all__ = [
    "GitHubClient",
]

_LOGGER = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
DEFAULT_TIMEOUT = 60.0
PAGE_SIZE = 100


class GitHubClient:
    """Thin wrapper around an `httpx.AsyncClient` with error translation.

    Every failed call raises `GitHubApiException` naming the operation, so
    callers never see transport exceptions.
    """

    def __init__(
        self, config: GitHubConfig, client: httpx.AsyncClient | None = None
    ) -> None:
        """Initialize GitHubClient."""
        self._config = config
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        if client is None:
            client = httpx.AsyncClient(
                base_url=config.api_url,
                timeout=DEFAULT_TIMEOUT,
                follow_redirects=True,
            )
        client.headers.update(headers)
        self._client = client

    @property
    def config(self) -> GitHubConfig:
        return self._config

    async def request(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> httpx.Response | None:
        """Issue a request, returning None for a 404 when `allow_missing` is set."""
        _LOGGER.debug("GitHub %s %s (%s)", method, url, operation)
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as err:
            raise GitHubApiException(operation, str(err)) from err
        if response.status_code == 404 and allow_missing:
            return None
        if response.is_error:
            raise GitHubApiException(
                operation,
                f"{response.status_code} {response.text}",
                status=response.status_code,
            )
        return response

    async def fetch(
        self, operation: str, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        """Issue a request that must succeed, treating a 404 as an error."""
        response = await self.request(operation, method, url, **kwargs)
        if response is None:
            raise GitHubApiException(operation, f"{url} not found", status=404)
        return response

    async def json(self, operation: str, method: str, url: str, **kwargs: Any) -> Any:
        response = await self.fetch(operation, method, url, **kwargs)
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

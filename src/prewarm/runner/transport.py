"""
HTTP Transport

Interface used by URL warmup tasks to issue requests, plus the default
httpx implementation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class HttpTransport(ABC):
    """
    Abstract HTTP transport for URL warmup tasks.

    Implementations perform one request and return the response status
    code, or raise on transport-level errors. Status classification is done
    by the caller.
    """

    @abstractmethod
    async def request(self, method: str, url: str, **overrides: Any) -> int:
        """
        Perform an HTTP request.

        Args:
            method: HTTP method
            url: Absolute URL
            **overrides: Request options (headers, params, json, body, ...)

        Returns:
            Response status code
        """
        pass

    async def aclose(self) -> None:
        """Release transport resources"""
        pass


class HttpxTransport(HttpTransport):
    """
    httpx based transport.

    Redirects are followed and no client-side timeout is applied by
    default; the task runner enforces per-task timeouts.
    """

    # Keys accepted by httpx.AsyncClient.request
    REQUEST_OPTIONS = frozenset(
        {"headers", "params", "json", "data", "content", "files", "cookies"}
    )

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        follow_redirects: bool = True,
    ):
        """
        Initialize transport.

        Args:
            client: Client to use (created lazily if not provided, and then
                owned and closed by this transport)
            timeout: Client timeout in seconds (None disables it)
            follow_redirects: Whether redirects are followed
        """
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.follow_redirects = follow_redirects

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=self.follow_redirects,
            )
        return self._client

    async def request(self, method: str, url: str, **overrides: Any) -> int:
        options = dict(overrides)

        # "body" is the raw request payload
        if "body" in options:
            options["content"] = options.pop("body")

        unknown = set(options) - self.REQUEST_OPTIONS
        if unknown:
            raise ValueError(f"Unsupported request options: {', '.join(sorted(unknown))}")

        response = await self.client.request(method, url, **options)
        logger.debug(f"{method} {url} -> {response.status_code}")
        return response.status_code

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

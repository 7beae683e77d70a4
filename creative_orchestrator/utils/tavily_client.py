"""Tavily API client with retry logic and rate limiting."""

import logging
import httpx
from typing import Any, Dict, Optional
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from ..errors import TransientProviderError
from ..providers.base import classify_http_error
from .rate_limiter import RateLimitedClient

logger = logging.getLogger(__name__)

# search_type -> extra Tavily request fields
SEARCH_TYPE_PARAMS: Dict[str, Dict[str, Any]] = {
    "facts": {"search_depth": "advanced"},
    "statistics": {"search_depth": "advanced"},
    "trends": {"search_depth": "advanced", "time_range": "year"},
    "background": {"search_depth": "basic"},
    "news": {"search_depth": "basic", "topic": "news", "days": 30},
}


class TavilyClient(RateLimitedClient):
    """
    Tavily API client for web search.

    Inherits rate limiting from RateLimitedClient and adds
    retry logic with exponential backoff.
    """

    def __init__(
        self,
        api_key: str,
        max_concurrent: int = 5,
        max_per_minute: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Tavily client.

        Args:
            api_key: Tavily API key
            max_concurrent: Maximum concurrent requests
            max_per_minute: Maximum requests per minute
            transport: Optional httpx transport (tests)
        """
        super().__init__(max_concurrent, max_per_minute)
        self.api_key = api_key
        self.base_url = "https://api.tavily.com"
        self._transport = transport
        logger.info(
            "TavilyClient initialized (max_concurrent=%d, max_per_minute=%d)",
            max_concurrent,
            max_per_minute
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type(TransientProviderError),
        reraise=True
    )
    async def _search_impl(self, query: str, search_type: str, max_results: int) -> Dict[str, Any]:
        """
        Internal implementation of web search with retry.

        Raises:
            TransientProviderError: Timeouts, 429 and 5xx after retries
            PermanentProviderError: Other 4xx responses
        """
        payload = {
            "query": query,
            "api_key": self.api_key,
            "max_results": max_results,
            "include_answer": True,
        }
        payload.update(SEARCH_TYPE_PARAMS.get(search_type, SEARCH_TYPE_PARAMS["background"]))

        logger.debug("Tavily search: query=%r type=%s", query, search_type)
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(f"{self.base_url}/search", json=payload, timeout=30.0)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise classify_http_error("tavily", e) from e
            data = response.json()
        logger.debug("Tavily search: %d results for query=%r", len(data.get('results', [])), query)
        return {
            "answer": data.get("answer"),
            "results": data.get("results", []),
        }

    async def search(self, query: str, search_type: str = "background", max_results: int = 5) -> Dict[str, Any]:
        """
        Perform web search with rate limiting.

        Args:
            query: Search query string
            search_type: facts, statistics, trends, background or news
            max_results: Maximum results to return

        Returns:
            Dict with ``answer`` (str or None) and ``results`` (title, url, content, score)
        """
        return await self._execute_with_limits(
            self._search_impl(query, search_type, max_results)
        )

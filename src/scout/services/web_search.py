"""Web search client for a Serper-compatible search API."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from ..config import SearchConfig

logger = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "search_web"

SEARCH_TOOL = {
    "type": "function",
    "function": {
        "name": SEARCH_TOOL_NAME,
        "description": "Search the web for up-to-date information. Returns title, link and snippet per result.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The query to search the web for"},
            },
            "required": ["query"],
        },
    },
}


class SearchError(Exception):
    """Raised when the search provider fails or returns an unusable response."""


@dataclass
class SearchResult:
    title: str
    link: str
    snippet: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class SearchService:
    """Query the search provider. Cancelling the awaiting task aborts the request."""

    def __init__(self, config: SearchConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(config.timeout))

    async def close(self) -> None:
        await self._client.aclose()

    async def search(self, query: str, result_count: int | None = None) -> list[SearchResult]:
        if not self.config.api_key:
            raise SearchError("Web search is not configured (missing search api_key)")
        count = result_count or self.config.result_count
        try:
            resp = await self._client.post(
                self.config.base_url,
                json={"q": query, "num": count},
                headers={"X-API-KEY": self.config.api_key, "Content-Type": "application/json"},
            )
            resp.raise_for_status()
            payload: dict[str, Any] = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Search provider returned HTTP %d", e.response.status_code)
            raise SearchError(f"Search provider error (HTTP {e.response.status_code})") from e
        except httpx.HTTPError as e:
            logger.warning("Search request failed: %s", type(e).__name__)
            raise SearchError("Search provider unreachable") from e
        except ValueError as e:
            raise SearchError("Search provider returned invalid JSON") from e

        results = [
            SearchResult(
                title=str(item.get("title", "")),
                link=str(item.get("link", "")),
                snippet=str(item.get("snippet", "")),
            )
            for item in payload.get("organic", [])
            if item.get("link")
        ]
        return results[:count]

    async def execute_tool(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Tool executor for the agent loop."""
        if tool_name != SEARCH_TOOL_NAME:
            raise ValueError(f"Unknown tool '{tool_name}'")
        query = str(arguments.get("query", "")).strip()
        if not query:
            raise ValueError("search_web requires a non-empty 'query'")
        results = await self.search(query)
        logger.info("search_web returned %d result(s)", len(results))
        return {"results": [r.to_dict() for r in results]}

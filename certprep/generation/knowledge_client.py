"""
Knowledge-retrieval API client.

Fetches training-material snippets that ground generated questions. The
retrieval service is advisory: every failure is logged and turned into an
empty result so generation can proceed without context.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from certprep.config import Settings
from certprep.core.taxonomy import CompetencyArea

# Queries per competency area; results are merged and deduplicated
DOMAIN_QUERIES: dict[str, list[str]] = {
    CompetencyArea.PHYSICAL_CARE.value: [
        "hygiene personal care bathing grooming",
        "nutrition feeding assistance eating",
        "infection control standard precautions handwashing",
        "safety emergency procedures fall prevention",
        "basic nursing skills vital signs measurements",
        "mobility positioning transfer assistance",
        "restorative care rehabilitation exercises",
    ],
    CompetencyArea.PSYCHOSOCIAL_CARE.value: [
        "emotional support mental health care",
        "spiritual care needs religious preferences",
        "cultural sensitivity diversity cultural needs",
        "cognitively impaired residents dementia care",
        "end of life care dying patients comfort",
    ],
    CompetencyArea.ROLE_OF_NURSE_AIDE.value: [
        "communication interpersonal skills professional",
        "resident rights ethics patient rights",
        "teamwork professional boundaries workplace",
        "legal regulatory requirements compliance",
        "documentation reporting charting records",
        "workplace safety professionalism conduct",
    ],
}

PROMPT_SNIPPET_LIMIT = 10
PROMPT_SNIPPET_CHARS = 300


@dataclass
class KnowledgeSnippet:
    """One retrieved passage."""

    id: str
    content: str
    score: float
    title: str = ""
    source: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KnowledgeSnippet:
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content", ""),
            score=float(data.get("score", 0.0)),
            title=data.get("title", "") or "",
            source=data.get("source", "") or "",
        )


def format_for_prompt(snippets: list[KnowledgeSnippet]) -> str | None:
    """Numbered reference block for the generation prompt, or None when empty."""
    if not snippets:
        return None
    lines = []
    for index, snippet in enumerate(snippets[:PROMPT_SNIPPET_LIMIT], start=1):
        title = f"[{snippet.title}] " if snippet.title else ""
        lines.append(f"{index}. {title}{snippet.content[:PROMPT_SNIPPET_CHARS]}")
    return "REFERENCE CONTENT:\n" + "\n\n".join(lines)


class KnowledgeClient:
    """HTTP client for the knowledge-retrieval service."""

    def __init__(
        self,
        api_url: str,
        timeout_ms: int = 10000,
        retry_attempts: int = 3,
        default_top_k: int = 15,
        default_min_score: float = 0.5,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize knowledge client.

        Args:
            api_url: Base URL of the retrieval service
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts on timeouts, 5xx and transport errors
            default_top_k: Results requested when the caller gives none
            default_min_score: Relevance floor when the caller gives none
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Sleep function between retries
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = retry_attempts
        self.default_top_k = default_top_k
        self.default_min_score = default_min_score
        self._sleep = sleep
        self.client = httpx.Client(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> KnowledgeClient | None:
        """Client for the configured service, or None when no URL is set."""
        if not settings.knowledge_api_url:
            return None
        return cls(
            settings.knowledge_api_url,
            timeout_ms=settings.knowledge_timeout_ms,
            default_top_k=settings.knowledge_top_k,
            default_min_score=settings.knowledge_min_score,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def search(
        self,
        query: str,
        topic: str | None = None,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[KnowledgeSnippet]:
        """
        Search the knowledge base.

        Args:
            query: Free-text query
            topic: Optional topic/namespace filter
            top_k: Maximum results
            min_score: Results below this relevance are dropped

        Returns:
            Snippets ordered by descending score (empty on any failure)
        """
        top_k = top_k or self.default_top_k
        min_score = self.default_min_score if min_score is None else min_score
        payload: dict[str, Any] = {"query": query, "top_k": top_k}
        if topic:
            payload["topic"] = topic

        data = self._post("/search", payload)
        if data is None:
            return []

        raw_results = data.get("results", []) if isinstance(data, dict) else data
        snippets = [
            KnowledgeSnippet.from_dict(item)
            for item in raw_results
            if isinstance(item, dict) and float(item.get("score", 0.0)) >= min_score
        ]
        snippets.sort(key=lambda s: s.score, reverse=True)
        return snippets[:top_k]

    def content_for_domain(self, competency_area: str, top_k: int | None = None) -> list[KnowledgeSnippet]:
        """Merge results of the area's canned queries, deduplicated by id."""
        top_k = top_k or self.default_top_k
        queries = DOMAIN_QUERIES.get(competency_area, [competency_area])
        per_query = math.ceil(top_k / len(queries))

        seen: set[str] = set()
        merged: list[KnowledgeSnippet] = []
        for query in queries:
            for snippet in self.search(query, topic=competency_area, top_k=per_query):
                if snippet.id not in seen:
                    seen.add(snippet.id)
                    merged.append(snippet)

        merged.sort(key=lambda s: s.score, reverse=True)
        return merged[:top_k]

    def _post(self, path: str, payload: dict[str, Any]) -> Any | None:
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = self.client.post(f"{self.api_url}{path}", json=payload)
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                last_error = e
                wait_time = 2**attempt
                logger.warning(
                    "Knowledge service timeout on attempt {}/{}", attempt + 1, self.retry_attempts
                )

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    # Don't retry on 4xx client errors
                    logger.error("Knowledge service client error: {}", e.response.status_code)
                    return None
                wait_time = 2**attempt
                logger.warning(
                    "Knowledge service error {} on attempt {}/{}",
                    e.response.status_code,
                    attempt + 1,
                    self.retry_attempts,
                )

            except httpx.RequestError as e:
                last_error = e
                wait_time = 2**attempt
                logger.warning(
                    "Knowledge service request error on attempt {}/{}: {}",
                    attempt + 1,
                    self.retry_attempts,
                    e,
                )

            except ValueError as e:
                logger.error("Knowledge service returned invalid JSON: {}", e)
                return None

            if attempt < self.retry_attempts - 1:
                self._sleep(wait_time)

        logger.error("Knowledge search failed after {} attempts: {}", self.retry_attempts, last_error)
        return None

"""
Unit tests for the knowledge-retrieval client.

Uses httpx.MockTransport, so no network access is needed.
"""

import json

import httpx
import pytest

from certprep.generation.knowledge_client import (
    DOMAIN_QUERIES,
    KnowledgeClient,
    KnowledgeSnippet,
    format_for_prompt,
)


def _client(handler, **kwargs) -> KnowledgeClient:
    return KnowledgeClient(
        "http://knowledge.test/",
        transport=httpx.MockTransport(handler),
        sleep=lambda s: None,
        **kwargs,
    )


def _results(*items):
    return {"results": [{"id": i, "content": f"text {i}", "score": s} for i, s in items]}


class TestSearch:
    def test_posts_query_and_filters_by_score(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_results(("a", 0.9), ("b", 0.3), ("c", 0.7)))

        snippets = _client(handler).search("hand hygiene", topic="Physical Care Skills", top_k=5)

        assert seen["url"] == "http://knowledge.test/search"
        assert seen["body"] == {"query": "hand hygiene", "top_k": 5, "topic": "Physical Care Skills"}
        assert [s.id for s in snippets] == ["a", "c"]

    def test_accepts_bare_list_response(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": "x", "content": "y", "score": 0.8}])

        assert [s.id for s in _client(handler).search("q")] == ["x"]

    def test_client_error_returns_empty_without_retry(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(404)

        assert _client(handler).search("q") == []
        assert len(calls) == 1

    def test_server_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=_results(("ok", 0.9)))

        assert [s.id for s in _client(handler, retry_attempts=3).search("q")] == ["ok"]
        assert len(calls) == 3

    def test_transport_error_gives_up_quietly(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert _client(handler, retry_attempts=2).search("q") == []

    def test_invalid_json_returns_empty(self):
        def handler(request):
            return httpx.Response(200, content=b"not json")

        assert _client(handler).search("q") == []


class TestDomainContent:
    def test_merges_and_deduplicates(self):
        def handler(request):
            query = json.loads(request.content)["query"]
            if query == DOMAIN_QUERIES["Psychosocial Care Skills"][0]:
                return httpx.Response(200, json=_results(("shared", 0.9), ("one", 0.6)))
            return httpx.Response(200, json=_results(("shared", 0.9), ("two", 0.8)))

        snippets = _client(handler).content_for_domain("Psychosocial Care Skills", top_k=10)
        ids = [s.id for s in snippets]

        assert ids == ["shared", "two", "one"]


class TestFormatting:
    def test_empty_gives_none(self):
        assert format_for_prompt([]) is None

    def test_numbered_block(self):
        text = format_for_prompt(
            [KnowledgeSnippet("1", "Wash hands often.", 0.9, title="Infection"), KnowledgeSnippet("2", "x" * 400, 0.8)]
        )

        assert text.startswith("REFERENCE CONTENT:\n1. [Infection] Wash hands often.")
        assert "2. " + "x" * 300 in text
        assert "x" * 301 not in text


def test_from_settings_without_url_is_none(settings):
    assert KnowledgeClient.from_settings(settings) is None


@pytest.mark.parametrize("raw,score", [({"id": 3, "score": "0.5"}, 0.5), ({}, 0.0)])
def test_snippet_from_dict(raw, score):
    snippet = KnowledgeSnippet.from_dict(raw)
    assert snippet.score == score
    assert isinstance(snippet.id, str)

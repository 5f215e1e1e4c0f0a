"""Tests for the HTTP, ticket-tracker and completion clients."""

from __future__ import annotations

import json

import allure
import httpx
import pytest

from dev_toolbox.clients.completion import (
    CachedCompletionClient,
    CompletionClient,
    extract_text,
)
from dev_toolbox.clients.jira import JiraClient, description_text, parse_ticket
from dev_toolbox.http.client import JsonHttpClient, RemoteCallError
from dev_toolbox.runtime.cache import CacheStore

pytestmark = [
    allure.epic("Remote Services"),
    allure.feature("HTTP Clients"),
]

_ISSUE_PAYLOAD = {
    "key": "APP-1234",
    "fields": {
        "summary": "Checkout crashes on empty cart",
        "status": {"name": "Done"},
        "issuetype": {"name": "Bug"},
        "fixVersions": [{"name": "4.2.0"}],
        "description": {
            "type": "doc",
            "content": [
                {
                    "type": "paragraph",
                    "content": [
                        {"type": "text", "text": "Steps: "},
                        {"type": "text", "text": "open cart"},
                    ],
                },
                {
                    "type": "bulletList",
                    "content": [
                        {
                            "type": "listItem",
                            "content": [
                                {
                                    "type": "paragraph",
                                    "content": [{"type": "text", "text": "tap pay"}],
                                },
                            ],
                        },
                    ],
                },
            ],
        },
    },
}


def _http(handler, **kwargs) -> JsonHttpClient:
    return JsonHttpClient(
        base_url=kwargs.pop("base_url", "https://service.test"),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestJsonHttpClient:
    @pytest.mark.asyncio
    async def test_get_json_sends_user_agent_and_params(self):
        seen: list[httpx.Request] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        async with _http(_handler, user_agent="dev-toolbox/test") as http:
            payload = await http.get_json("/ping", params={"q": "1"})

        assert payload == {"ok": True}
        assert seen[0].headers["User-Agent"] == "dev-toolbox/test"
        assert seen[0].url.params["q"] == "1"

    @pytest.mark.asyncio
    async def test_post_json_sends_body(self):
        bodies: list[dict] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": 1})

        async with _http(_handler) as http:
            await http.post_json("/items", {"name": "x"})

        assert bodies == [{"name": "x"}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "transient"),
        [(429, True), (500, True), (503, True), (404, False), (401, False)],
    )
    async def test_error_status_classification(self, status, transient):
        async with _http(lambda _request: httpx.Response(status)) as http:
            with pytest.raises(RemoteCallError) as excinfo:
                await http.get_json("/x")

        assert excinfo.value.status_code == status
        assert excinfo.value.transient is transient

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def _handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _http(_handler) as http:
            with pytest.raises(RemoteCallError) as excinfo:
                await http.get_json("/x")

        assert excinfo.value.transient is True

    @pytest.mark.asyncio
    async def test_invalid_json_is_not_transient(self):
        async with _http(lambda _request: httpx.Response(200, text="<html>")) as http:
            with pytest.raises(RemoteCallError, match="invalid JSON") as excinfo:
                await http.get_json("/x")

        assert excinfo.value.transient is False


class TestJiraClient:
    @pytest.mark.asyncio
    async def test_fetch_ticket(self):
        seen: list[httpx.Request] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_ISSUE_PAYLOAD)

        http = _http(_handler, base_url="https://jira.test")
        async with JiraClient(
            base_url="https://jira.test/",
            email="dev@example.com",
            api_token="secret",
            http=http,
        ) as jira:
            ticket = await jira.fetch_ticket("APP-1234")

        assert seen[0].url.path == "/rest/api/3/issue/APP-1234"
        assert "fixVersions" in seen[0].url.params["fields"]
        assert ticket.key == "APP-1234"
        assert ticket.summary == "Checkout crashes on empty cart"
        assert ticket.status == "Done"
        assert ticket.issue_type == "Bug"
        assert ticket.fix_versions == ["4.2.0"]
        assert ticket.url == "https://jira.test/browse/APP-1234"
        assert ticket.description == "Steps: open cart\ntap pay"

    @pytest.mark.asyncio
    async def test_missing_ticket_raises(self):
        http = _http(lambda _request: httpx.Response(404), base_url="https://jira.test")
        jira = JiraClient(base_url="https://jira.test", email="e", api_token="t", http=http)
        async with jira:
            with pytest.raises(RemoteCallError) as excinfo:
                await jira.fetch_ticket("APP-404")

        assert excinfo.value.status_code == 404

    def test_parse_ticket_tolerates_missing_fields(self):
        ticket = parse_ticket({"key": "APP-1", "fields": {}}, base_url="https://jira.test")

        assert ticket.summary == ""
        assert ticket.status == ""
        assert ticket.fix_versions == []

    def test_description_text_plain_string(self):
        assert description_text("  plain  ") == "plain"

    def test_description_text_none(self):
        assert description_text(None) == ""


class TestCompletionClient:
    @pytest.mark.asyncio
    async def test_complete_posts_messages_request(self):
        bodies: list[dict] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={"content": [{"type": "text", "text": "Fixed the checkout crash."}]},
            )

        client = CompletionClient(api_key="sk-test", model="test-model", http=_http(_handler))
        async with client:
            text = await client.complete("Summarize", system="Be brief", max_tokens=50)

        assert text == "Fixed the checkout crash."
        assert bodies[0]["model"] == "test-model"
        assert bodies[0]["system"] == "Be brief"
        assert bodies[0]["max_tokens"] == 50
        assert bodies[0]["messages"] == [{"role": "user", "content": "Summarize"}]

    @pytest.mark.asyncio
    async def test_empty_completion_is_an_error(self):
        client = CompletionClient(
            api_key="sk-test",
            model="m",
            http=_http(lambda _request: httpx.Response(200, json={"content": []})),
        )
        with pytest.raises(RemoteCallError, match="no text"):
            await client.complete("Summarize")
        await client.aclose()

    def test_extract_text_joins_text_blocks(self):
        payload = {
            "content": [
                {"type": "text", "text": "one "},
                {"type": "tool_use", "id": "x"},
                {"type": "text", "text": "two"},
            ],
        }
        assert extract_text(payload) == "one two"


class TestCachedCompletionClient:
    @pytest.mark.asyncio
    async def test_identical_requests_hit_the_service_once(self, tmp_path, clock):
        calls: list[dict] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            calls.append(json.loads(request.content))
            return httpx.Response(200, json={"content": [{"type": "text", "text": "summary"}]})

        cache = CacheStore(tmp_path, "claude", clock=clock)
        client = CachedCompletionClient(
            CompletionClient(api_key="sk-test", model="m", http=_http(_handler)),
            cache,
            ttl=86_400,
        )

        first = await client.complete("Summarize APP-1", temperature=0.3)
        second = await client.complete("Summarize APP-1", temperature=0.3)
        other = await client.complete("Summarize APP-1", temperature=0.7)
        await client.aclose()

        assert first == second == other == "summary"
        assert len(calls) == 2
        assert cache.stats().count == 2

    def test_cache_key_excludes_api_key(self, tmp_path):
        cache = CacheStore(tmp_path, "claude")

        def _client(api_key: str) -> CachedCompletionClient:
            return CachedCompletionClient(
                CompletionClient(api_key=api_key, model="m", http=_http(lambda _r: None)),
                cache,
                ttl=None,
            )

        params = {"system": None, "max_tokens": 10, "temperature": 0.3}
        key_a = _client("key-a").cache_key("p", **params)
        assert key_a == _client("key-b").cache_key("p", **params)

    def test_cache_key_depends_on_model(self, tmp_path):
        cache = CacheStore(tmp_path, "claude")
        params = {"system": None, "max_tokens": 10, "temperature": 0.3}
        keys = {
            CachedCompletionClient(
                CompletionClient(api_key="k", model=model, http=_http(lambda _r: None)),
                cache,
                ttl=None,
            ).cache_key("p", **params)
            for model in ("model-a", "model-b")
        }
        assert len(keys) == 2

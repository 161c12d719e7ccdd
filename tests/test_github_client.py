from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from cardboard.github_client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
    build_base_url,
)


def _client(handler) -> GitHubClient:
    return GitHubClient("tok", transport=httpx.MockTransport(handler))


def test_build_base_url() -> None:
    assert build_base_url("") == "https://api.github.com"
    assert build_base_url("ghe.example.com/api/v3/") == "https://ghe.example.com/api/v3"
    assert build_base_url("http://localhost:8080") == "http://localhost:8080"


def test_list_issues_follows_next_links() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        assert request.headers["Authorization"] == "Bearer tok"
        if request.url.params.get("page") == "2":
            return httpx.Response(200, json=[{"number": 2}])
        next_url = "https://api.github.com/repos/octo/board/issues?state=all&per_page=1&page=2"
        return httpx.Response(
            200, json=[{"number": 1}], headers={"Link": f'<{next_url}>; rel="next"'}
        )

    async def _run():
        async with _client(handler) as client:
            return await client.list_issues("octo", "board", per_page=1)

    issues = asyncio.run(_run())

    assert [issue["number"] for issue in issues] == [1, 2]
    assert len(seen) == 2
    assert "state=all" in seen[0]


def test_first_page_only_when_not_all_pages() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        assert request.url.params["state"] == "open"
        return httpx.Response(
            200,
            json=[{"number": 9}],
            headers={"Link": '<https://api.github.com/next>; rel="next"'},
        )

    async def _run():
        async with _client(handler) as client:
            return await client.list_issues("octo", "board", state="open", all_pages=False)

    assert [issue["number"] for issue in asyncio.run(_run())] == [9]
    assert calls == 1


def test_update_issue_sends_patch_body() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.path == "/repos/octo/board/issues/3"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"number": 3, "labels": [{"name": "bug"}]})

    async def _run():
        async with _client(handler) as client:
            return await client.update_issue("octo", "board", 3, labels=["bug"])

    updated = asyncio.run(_run())
    assert bodies == [{"labels": ["bug"]}]
    assert updated["number"] == 3


def test_errors_carry_status_and_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})

    async def _run():
        async with _client(handler) as client:
            await client.list_labels("octo", "missing")

    with pytest.raises(GitHubAPIError, match="Not Found") as excinfo:
        asyncio.run(_run())
    assert excinfo.value.status_code == 404
    assert not isinstance(excinfo.value, RateLimitError)


def test_rate_limit_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403,
            json={"message": "API rate limit exceeded"},
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"},
        )

    async def _run():
        async with _client(handler) as client:
            await client.list_issue_events("octo", "board")

    with pytest.raises(RateLimitError) as excinfo:
        asyncio.run(_run())
    assert excinfo.value.reset_at == 1700000000


def test_non_list_payload_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"oops": True})

    async def _run():
        async with _client(handler) as client:
            await client.list_org_repos("octo")

    with pytest.raises(GitHubAPIError, match="expected a list"):
        asyncio.run(_run())


def test_milestone_endpoints() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.url.path == "/repos/octo/board/milestones"
            return httpx.Response(201, json={"number": 3, **json.loads(request.content)})
        assert request.url.path == "/repos/octo/board/milestones/3"
        return httpx.Response(200, json={"number": 3, "title": "v1"})

    async def _run():
        async with _client(handler) as client:
            created = await client.create_milestone("octo", "board", "v1", state="open")
            fetched = await client.get_milestone("octo", "board", 3)
            return created, fetched

    created, fetched = asyncio.run(_run())
    assert created == {"number": 3, "title": "v1", "state": "open"}
    assert fetched["title"] == "v1"

from __future__ import annotations

import logging
import os
from typing import Any, cast
from urllib.parse import urlparse

import httpx

from . import __version__
from .models import IssueEvent, IssuePayload, Label, Milestone

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.github.com"
DEFAULT_PER_PAGE = 100


class GitHubAPIError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class RateLimitError(GitHubAPIError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
        reset_at: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, payload=payload)
        self.reset_at = reset_at


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return DEFAULT_API_BASE_URL
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"https://{trimmed}"


def _error_detail(payload: dict[str, Any] | None) -> str | None:
    if not isinstance(payload, dict):
        return None
    message = payload.get("message")
    if isinstance(message, str) and message:
        return message
    return None


def _decode_payload(response: httpx.Response) -> dict[str, Any] | None:
    if not response.content:
        return None
    try:
        data = response.json()
    except ValueError:
        snippet = response.text[:240].strip()
        return {"message": f"non_json_response: {snippet}" if snippet else "non_json_response"}
    if isinstance(data, dict):
        return data
    return {"message": f"unexpected_json_type: {type(data).__name__}"}


def _is_rate_limited(response: httpx.Response, payload: dict[str, Any] | None) -> bool:
    if response.status_code not in (403, 429):
        return False
    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True
    detail = (_error_detail(payload) or "").lower()
    return "rate limit" in detail or "abuse" in detail


def raise_for_github_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    payload = _decode_payload(response)
    detail = _error_detail(payload)
    request = response.request
    suffix = f" ({response.status_code}: {detail})" if detail else f" ({response.status_code})"
    message = f"{request.method} {request.url.path} failed{suffix}"
    if _is_rate_limited(response, payload):
        reset_header = response.headers.get("X-RateLimit-Reset")
        reset_at = int(reset_header) if reset_header and reset_header.isdigit() else None
        raise RateLimitError(
            message, status_code=response.status_code, payload=payload, reset_at=reset_at
        )
    raise GitHubAPIError(message, status_code=response.status_code, payload=payload)


class GitHubClient:
    """Async client for the GitHub REST endpoints the sync engine needs.

    Errors are raised, never retried here; the polling loop's next cycle is
    the retry for read-side sync.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token if token is not None else os.getenv("GITHUB_TOKEN")
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": f"cardboard/{__version__}",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.AsyncClient(
            base_url=build_base_url(base_url),
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        logger.debug("%s %s %s", method, url, params or "")
        response = await self._client.request(method, url, params=params, json=body)
        raise_for_github_status(response)
        return response

    async def _get_page(self, url: str, params: dict[str, Any] | None = None) -> list[Any]:
        response = await self._request("GET", url, params=params)
        data = response.json()
        if not isinstance(data, list):
            raise GitHubAPIError(f"expected a list from {url}", status_code=response.status_code)
        return data

    async def _get_all(self, url: str, params: dict[str, Any] | None = None) -> list[Any]:
        items: list[Any] = []
        next_url: str | None = url
        next_params = params
        while next_url:
            response = await self._request("GET", next_url, params=next_params)
            data = response.json()
            if not isinstance(data, list):
                raise GitHubAPIError(
                    f"expected a list from {next_url}", status_code=response.status_code
                )
            items.extend(data)
            next_url = response.links.get("next", {}).get("url")
            # The next link already carries the query string.
            next_params = None
        return items

    async def list_issues(
        self,
        repo_owner: str,
        repo_name: str,
        *,
        state: str = "all",
        per_page: int = DEFAULT_PER_PAGE,
        all_pages: bool = True,
    ) -> list[IssuePayload]:
        url = f"/repos/{repo_owner}/{repo_name}/issues"
        params = {"state": state, "per_page": per_page}
        if all_pages:
            return cast(list[IssuePayload], await self._get_all(url, params))
        return cast(list[IssuePayload], await self._get_page(url, params))

    async def list_issue_events(
        self, repo_owner: str, repo_name: str, *, per_page: int = DEFAULT_PER_PAGE
    ) -> list[IssueEvent]:
        """First page of the repository's issue events, newest first."""
        url = f"/repos/{repo_owner}/{repo_name}/issues/events"
        return cast(list[IssueEvent], await self._get_page(url, {"per_page": per_page}))

    async def list_org_repos(self, owner: str) -> list[dict[str, Any]]:
        return await self._get_all(f"/orgs/{owner}/repos", {"per_page": DEFAULT_PER_PAGE})

    async def list_milestones(
        self, repo_owner: str, repo_name: str, *, state: str = "all"
    ) -> list[Milestone]:
        url = f"/repos/{repo_owner}/{repo_name}/milestones"
        return cast(
            list[Milestone], await self._get_all(url, {"state": state, "per_page": DEFAULT_PER_PAGE})
        )

    async def get_milestone(self, repo_owner: str, repo_name: str, number: int) -> Milestone:
        response = await self._request(
            "GET", f"/repos/{repo_owner}/{repo_name}/milestones/{number}"
        )
        return cast(Milestone, response.json())

    async def create_milestone(
        self, repo_owner: str, repo_name: str, title: str, **fields: Any
    ) -> Milestone:
        response = await self._request(
            "POST",
            f"/repos/{repo_owner}/{repo_name}/milestones",
            body={"title": title, **fields},
        )
        return cast(Milestone, response.json())

    async def list_labels(self, repo_owner: str, repo_name: str) -> list[Label]:
        url = f"/repos/{repo_owner}/{repo_name}/labels"
        return cast(list[Label], await self._get_all(url, {"per_page": DEFAULT_PER_PAGE}))

    async def create_label(self, repo_owner: str, repo_name: str, opts: dict[str, Any]) -> Label:
        response = await self._request(
            "POST", f"/repos/{repo_owner}/{repo_name}/labels", body=dict(opts)
        )
        return cast(Label, response.json())

    async def get_issue(self, repo_owner: str, repo_name: str, number: int) -> IssuePayload:
        response = await self._request("GET", f"/repos/{repo_owner}/{repo_name}/issues/{number}")
        return cast(IssuePayload, response.json())

    async def update_issue(
        self, repo_owner: str, repo_name: str, number: int, **fields: Any
    ) -> IssuePayload:
        response = await self._request(
            "PATCH", f"/repos/{repo_owner}/{repo_name}/issues/{number}", body=fields
        )
        return cast(IssuePayload, response.json())

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypedDict

WILDCARD_REPO = "*"

# Watermark for a repository whose event stream was checked and found empty.
# Absent (None) means the repository was never synced.
NO_EVENTS_WATERMARK = -1


class Label(TypedDict, total=False):
    name: str
    color: str
    description: str | None


class Milestone(TypedDict, total=False):
    number: int
    title: str
    state: str
    description: str | None


class IssuePayload(TypedDict, total=False):
    number: int
    title: str
    body: str | None
    state: str
    labels: list[Label]
    milestone: Milestone | None
    pull_request: dict[str, Any] | None
    updated_at: str


class IssueEvent(TypedDict, total=False):
    id: int
    event: str
    created_at: str
    issue: IssuePayload


def to_card_key(repo_owner: str, repo_name: str, number: int) -> str:
    return f"{repo_owner}/{repo_name}#{number}"


@dataclass(frozen=True)
class RepoInfo:
    repo_owner: str
    repo_name: str

    @property
    def is_wildcard(self) -> bool:
        return self.repo_name == WILDCARD_REPO

    @property
    def full_name(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    def to_dict(self) -> dict[str, str]:
        return {"repoOwner": self.repo_owner, "repoName": self.repo_name}


def parse_repo_info(value: str) -> RepoInfo:
    owner, sep, name = value.strip().partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ValueError(f"invalid repository {value!r}, expected owner/name")
    return RepoInfo(owner, name)


@dataclass(frozen=True)
class RepoMetadata:
    repo_owner: str
    repo_name: str
    last_seen_event_id: int | None = None


@dataclass(frozen=True)
class Reference:
    """A textual pointer from one card body to another card."""

    repo_owner: str
    repo_name: str
    number: int
    fixes: bool = False


class Card:
    """Canonical in-memory view of one issue or pull request.

    A card keeps its identity for its whole life; fresher payloads for the
    same identity are applied with ``reset_state`` so every holder of the
    instance (graph edges included) observes the update.
    """

    def __init__(
        self,
        repo_owner: str,
        repo_name: str,
        number: int,
        issue: IssuePayload | None = None,
        pr: dict[str, Any] | None = None,
        pr_statuses: list[dict[str, Any]] | None = None,
    ) -> None:
        if not (repo_owner and repo_name and number):
            raise ValueError(
                f"card identity requires owner, name and number "
                f"(got {repo_owner!r}, {repo_name!r}, {number!r})"
            )
        self.repo_owner = repo_owner
        self.repo_name = repo_name
        self.number = int(number)
        self.issue: IssuePayload = issue or {"number": self.number}
        self.pr = pr
        self.pr_statuses = pr_statuses

    def reset_state(
        self,
        issue: IssuePayload,
        pr: dict[str, Any] | None = None,
        pr_statuses: list[dict[str, Any]] | None = None,
    ) -> None:
        self.issue = issue
        if pr is not None:
            self.pr = pr
        if pr_statuses is not None:
            self.pr_statuses = pr_statuses

    @property
    def key(self) -> str:
        return to_card_key(self.repo_owner, self.repo_name, self.number)

    @property
    def title(self) -> str:
        return str(self.issue.get("title") or "")

    @property
    def body(self) -> str:
        return str(self.issue.get("body") or "")

    @property
    def state(self) -> str:
        return str(self.issue.get("state") or "")

    @property
    def labels(self) -> list[Label]:
        return list(self.issue.get("labels") or [])

    @property
    def label_names(self) -> list[str]:
        return [str(label.get("name") or "") for label in self.labels]

    @property
    def milestone(self) -> Milestone | None:
        return self.issue.get("milestone")

    @property
    def is_pull_request(self) -> bool:
        issue: dict[str, Any] = dict(self.issue)
        return bool(issue.get("pull_request") or issue.get("pullRequest"))

    def __repr__(self) -> str:
        return f"Card({self.key!r})"


@dataclass
class RepoUpdate:
    """Result of syncing one repository."""

    cards: list[Card] = field(default_factory=list)
    repository: RepoMetadata | None = None

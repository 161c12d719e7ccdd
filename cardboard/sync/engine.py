from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..cards import CardCache
from ..events import ChangeOccurred, E, EventBus, MoveLabelRequested, MoveMilestoneRequested
from ..filters import UNCATEGORIZED_NAME, FilterState, is_kanban_label
from ..graph import RelationshipGraph
from ..models import (
    NO_EVENTS_WATERMARK,
    Card,
    IssueEvent,
    IssuePayload,
    Label,
    Milestone,
    RepoInfo,
    RepoMetadata,
    RepoUpdate,
)
from ..progress import NullProgress, ProgressReporter
from ..references import ReferenceExtractor, extract_references
from ..store import CardStorage
from .polling import RELOAD_TIME_LONG_S, RELOAD_TIME_SHORT_S, PollingController, VisibilitySignal

logger = logging.getLogger(__name__)


class MilestoneNotFoundError(LookupError):
    pass


class IssueClient(Protocol):
    async def list_issues(
        self,
        repo_owner: str,
        repo_name: str,
        *,
        state: str = ...,
        per_page: int = ...,
        all_pages: bool = ...,
    ) -> list[IssuePayload]: ...

    async def list_issue_events(
        self, repo_owner: str, repo_name: str, *, per_page: int = ...
    ) -> list[IssueEvent]: ...

    async def list_org_repos(self, owner: str) -> list[dict[str, Any]]: ...

    async def list_milestones(self, repo_owner: str, repo_name: str) -> list[Milestone]: ...

    async def list_labels(self, repo_owner: str, repo_name: str) -> list[Label]: ...

    async def create_label(
        self, repo_owner: str, repo_name: str, opts: dict[str, Any]
    ) -> Label: ...

    async def get_issue(self, repo_owner: str, repo_name: str, number: int) -> IssuePayload: ...

    async def update_issue(
        self, repo_owner: str, repo_name: str, number: int, **fields: Any
    ) -> IssuePayload: ...


def repo_infos_key(repo_infos: Sequence[RepoInfo]) -> str:
    return json.dumps([info.to_dict() for info in repo_infos])


@dataclass
class SyncSession:
    """Card cache, relationship graph and aggregate memo of one sync scope."""

    cards: CardCache = field(default_factory=CardCache)
    memo_key: str | None = None
    memo_cards: list[Card] | None = None
    generation: int = 0
    memo_generation: int = 0

    @property
    def graph(self) -> RelationshipGraph:
        return self.cards.graph

    def begin_cycle(self) -> int:
        self.generation += 1
        return self.generation

    def remember(self, key: str, cards: list[Card], generation: int) -> bool:
        # A cycle that started before the current memo was written loses.
        if generation < self.memo_generation:
            return False
        self.memo_key = key
        self.memo_cards = cards
        self.memo_generation = generation
        return True

    def lookup(self, key: str) -> list[Card] | None:
        if self.memo_cards is not None and self.memo_key == key:
            return self.memo_cards
        return None

    def invalidate(self) -> None:
        self.memo_cards = None

    def clear(self) -> None:
        self.cards.clear_all()
        self.memo_key = None
        self.memo_cards = None
        self.generation += 1
        self.memo_generation = self.generation


def _require_watermark(update: RepoUpdate, repo_owner: str, repo_name: str) -> None:
    if update.repository is not None and update.repository.last_seen_event_id is None:
        raise RuntimeError(f"no new last_seen_event_id found for {repo_owner}/{repo_name}")


class IssueSync:
    """Keeps the cards of the active repositories in sync with GitHub."""

    def __init__(
        self,
        client: IssueClient,
        store: CardStorage,
        filter_state: FilterState,
        *,
        can_cache_lots: bool = True,
        per_page: int = 100,
        session: SyncSession | None = None,
        visibility: VisibilitySignal | None = None,
        poll_short_s: float = RELOAD_TIME_SHORT_S,
        poll_long_s: float = RELOAD_TIME_LONG_S,
        extractor: ReferenceExtractor = extract_references,
    ) -> None:
        self.client = client
        self.store = store
        self.filter_state = filter_state
        self.can_cache_lots = can_cache_lots
        self.per_page = per_page
        self.session = session or SyncSession(CardCache(extractor))
        self.events = EventBus()
        self.polling = PollingController(
            visibility,
            short_s=poll_short_s,
            long_s=poll_long_s,
            on_visible=self.refresh,
        )
        self._inflight: dict[str, asyncio.Task[list[Card]]] = {}

    @property
    def graph(self) -> RelationshipGraph:
        return self.session.graph

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        return self.events.subscribe(event_type, handler)

    def unsubscribe(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        self.events.unsubscribe(event_type, handler)

    def start_polling(self) -> None:
        self.polling.enable()

    def stop_polling(self) -> None:
        self.polling.disable()

    def clear_cache_cards(self) -> None:
        self.session.clear()
        # Later callers must not join a cycle that started before the clear.
        self._inflight.clear()

    async def aclose(self) -> None:
        await self.polling.aclose()

    def issue_number_to_card(
        self,
        repo_owner: str,
        repo_name: str,
        number: int,
        issue: IssuePayload | None = None,
        pr: dict[str, Any] | None = None,
        pr_statuses: list[dict[str, Any]] | None = None,
    ) -> Card:
        if not (repo_owner and repo_name and number):
            raise ValueError("issue_number_to_card requires owner, name and number")
        return self.session.cards.get_or_create(
            repo_owner, repo_name, number, issue, pr, pr_statuses
        )

    def issue_to_card(self, repo_owner: str, repo_name: str, issue: IssuePayload) -> Card:
        if not (repo_owner and repo_name and issue):
            raise ValueError("issue_to_card requires owner, name and issue")
        return self.session.cards.get_or_create(repo_owner, repo_name, issue["number"], issue)

    async def fetch_issues(self, progress: ProgressReporter | None = None) -> list[Card]:
        """Sync the active repositories and return the filtered cards."""
        repo_infos = self.filter_state.repo_infos()
        cards = await self._fetch_all_issues(repo_infos, progress or NullProgress())
        return self.filter_state.filter_cards(cards)

    async def refresh(self) -> list[Card]:
        return await self._fetch_all_issues(
            self.filter_state.repo_infos(), NullProgress(), forced=True
        )

    async def _fetch_all_issues(
        self,
        repo_infos: list[RepoInfo],
        progress: ProgressReporter,
        forced: bool = False,
    ) -> list[Card]:
        self.polling.arm(lambda: self._fetch_all_issues(repo_infos, progress, forced=True))
        key = repo_infos_key(repo_infos)
        if forced:
            return await self._sync_repos(repo_infos, key, progress, forced=True)

        cached = self.session.lookup(key)
        if cached is not None:
            return cached
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._sync_repos(repo_infos, key, progress, forced=False))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget_inflight(key, done))
        return await asyncio.shield(task)

    def _forget_inflight(self, key: str, task: asyncio.Task[list[Card]]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _sync_repos(
        self,
        repo_infos: list[RepoInfo],
        key: str,
        progress: ProgressReporter,
        *,
        forced: bool,
    ) -> list[Card]:
        generation = self.session.begin_cycle()
        graph = self.session.graph
        explicit = {info.full_name for info in repo_infos if not info.is_wildcard}
        grouped = await asyncio.gather(
            *(self._fetch_repo_info(info, explicit, progress) for info in repo_infos)
        )
        updates = [update for group in grouped for update in group]
        # Repositories whose watermark did not move carry no metadata.
        repos = [update.repository for update in updates if update.repository is not None]
        cards = [card for update in updates for card in update.cards]

        if self.session.graph is graph:
            graph.rebuild_from_cards(cards)
            self.session.remember(key, cards, generation)
        else:
            # Cards from before clear_cache_cards() must not reach the new graph.
            logger.debug("card cache cleared during sync; skipping graph rebuild")

        await self.store.put_cards_and_repos(cards, repos)
        logger.info(
            "synced %d repositories: %d cards, %d watermark updates%s",
            len(updates),
            len(cards),
            len(repos),
            " (forced)" if forced else "",
        )
        if forced and cards:
            self.events.emit(ChangeOccurred())
        return cards

    async def _fetch_repo_info(
        self, info: RepoInfo, explicit: set[str], progress: ProgressReporter
    ) -> list[RepoUpdate]:
        if not info.is_wildcard:
            return [await self._fetch_updates_for_repo(info.repo_owner, info.repo_name, progress)]

        owner = info.repo_owner
        progress.add_ticks(1, f"Fetching list of all repositories for {owner}")
        repos = await self.client.list_org_repos(owner)
        progress.tick(f"Fetched list of all repositories for {owner}")
        # Explicitly listed repositories are synced by their own entry.
        names = [
            str(repo["name"]) for repo in repos if f"{owner}/{repo['name']}" not in explicit
        ]
        return list(
            await asyncio.gather(
                *(self._fetch_updates_for_repo(owner, name, progress) for name in names)
            )
        )

    async def _fetch_all_issues_for_repo(
        self,
        repo_owner: str,
        repo_name: str,
        progress: ProgressReporter,
        *,
        state: str,
        all_pages: bool,
    ) -> list[Card]:
        progress.add_ticks(1, f"Fetching issues for {repo_owner}/{repo_name}")
        issues = await self.client.list_issues(
            repo_owner,
            repo_name,
            state=state,
            per_page=self.per_page,
            all_pages=all_pages,
        )
        progress.tick(f"Fetched issues for {repo_owner}/{repo_name}")
        return [
            self.issue_number_to_card(repo_owner, repo_name, issue["number"], issue)
            for issue in issues
        ]

    async def _fetch_last_seen_updates(
        self,
        repo_owner: str,
        repo_name: str,
        progress: ProgressReporter,
        last_seen_event_id: int | None,
    ) -> RepoUpdate:
        events = await self.client.list_issue_events(repo_owner, repo_name, per_page=self.per_page)
        progress.tick(f"Fetched updates for {repo_owner}/{repo_name}")

        new_last_seen: int | None
        if events:
            new_last_seen = events[0].get("id")
        elif last_seen_event_id is not None:
            new_last_seen = last_seen_event_id
        else:
            # Checked and found nothing: record that so the full history is
            # not fetched again next cycle.
            new_last_seen = NO_EVENTS_WATERMARK

        cards: list[Card] = []
        for event in events:
            if last_seen_event_id is not None and event.get("id") == last_seen_event_id:
                break
            issue = event.get("issue")
            if not issue:
                continue
            logger.debug(
                "new event %s/%s %s %s",
                repo_owner,
                repo_name,
                event.get("event"),
                event.get("created_at"),
            )
            cards.append(self.issue_number_to_card(repo_owner, repo_name, issue["number"], issue))
        # Events arrive newest first; storage wants oldest first.
        cards.reverse()

        update = RepoUpdate(cards=cards)
        if new_last_seen != last_seen_event_id:
            update.repository = RepoMetadata(repo_owner, repo_name, new_last_seen)
        return update

    async def _fetch_updates_for_repo(
        self, repo_owner: str, repo_name: str, progress: ProgressReporter
    ) -> RepoUpdate:
        progress.add_ticks(1, f"Fetching updates for {repo_owner}/{repo_name}")
        repo = await self.store.get_repo_or_none(repo_owner, repo_name)
        if repo is not None and repo.last_seen_event_id is not None:
            update = await self._fetch_last_seen_updates(
                repo_owner, repo_name, progress, repo.last_seen_event_id
            )
            _require_watermark(update, repo_owner, repo_name)
            return update

        if not self.can_cache_lots:
            # Bounded mode: first page of open issues, no watermark recorded.
            cards = await self._fetch_all_issues_for_repo(
                repo_owner, repo_name, progress, state="open", all_pages=False
            )
            progress.tick(f"Fetched updates for {repo_owner}/{repo_name}")
            return RepoUpdate(cards=cards)

        all_cards = await self._fetch_all_issues_for_repo(
            repo_owner, repo_name, progress, state="all", all_pages=True
        )
        update = await self._fetch_last_seen_updates(repo_owner, repo_name, progress, None)
        if update.repository is None:
            raise RuntimeError(f"no new last_seen_event_id found for {repo_owner}/{repo_name}")
        _require_watermark(update, repo_owner, repo_name)
        return RepoUpdate(cards=[*all_cards, *update.cards], repository=update.repository)

    async def fetch_milestones(self, repo_owner: str, repo_name: str) -> list[Milestone]:
        return await self.client.list_milestones(repo_owner, repo_name)

    async def fetch_labels(self, repo_owner: str, repo_name: str) -> list[Label]:
        return await self.client.list_labels(repo_owner, repo_name)

    def try_to_move_label(self, card: Card, primary_repo_name: str, label: Label) -> None:
        self.events.emit(MoveLabelRequested(card, primary_repo_name, label))

    def try_to_move_milestone(
        self, card: Card, primary_repo_name: str, milestone: Milestone
    ) -> None:
        self.events.emit(MoveMilestoneRequested(card, primary_repo_name, milestone))

    def _mutated(self) -> None:
        self.session.invalidate()
        self.events.emit(ChangeOccurred())

    async def move_label(
        self, repo_owner: str, repo_name: str, issue: IssuePayload, new_label: Label
    ) -> IssuePayload:
        """Replace the issue's kanban list label with ``new_label``."""
        label_names = [
            name
            for name in (str(label.get("name") or "") for label in issue.get("labels") or [])
            if name and name != UNCATEGORIZED_NAME and not is_kanban_label(name)
        ]
        # Moving to uncategorized just drops the list label.
        if new_label.get("name") != UNCATEGORIZED_NAME:
            label_names.append(str(new_label["name"]))
        updated = await self.client.update_issue(
            repo_owner, repo_name, issue["number"], labels=label_names
        )
        if updated:
            self.issue_to_card(repo_owner, repo_name, updated)
        self._mutated()
        return updated

    async def move_milestone(
        self, repo_owner: str, repo_name: str, issue: IssuePayload, new_milestone: Milestone
    ) -> IssuePayload:
        milestones = await self.client.list_milestones(repo_owner, repo_name)
        matching = next(
            (m for m in milestones if m.get("title") == new_milestone.get("title")), None
        )
        if matching is None:
            raise MilestoneNotFoundError(
                f"no milestone titled {new_milestone.get('title')!r} in {repo_owner}/{repo_name}"
            )
        updated = await self.client.update_issue(
            repo_owner, repo_name, issue["number"], milestone=matching["number"]
        )
        if updated:
            self.issue_to_card(repo_owner, repo_name, updated)
        self._mutated()
        return updated

    async def create_label(
        self, repo_owner: str, repo_name: str, opts: dict[str, Any]
    ) -> Label:
        label = await self.client.create_label(repo_owner, repo_name, opts)
        self._mutated()
        return label

from __future__ import annotations

from typing import Any

from .graph import RelationshipGraph
from .models import Card, IssuePayload, to_card_key
from .references import ReferenceExtractor, extract_references


class CardCache:
    """Keeps exactly one ``Card`` per (owner, repo, number) in a session."""

    def __init__(self, extractor: ReferenceExtractor = extract_references) -> None:
        self._extractor = extractor
        self._cards: dict[str, Card] = {}
        self.graph = RelationshipGraph(extractor)

    def __len__(self) -> int:
        return len(self._cards)

    def __contains__(self, key: object) -> bool:
        return key in self._cards

    def get(self, key: str) -> Card | None:
        return self._cards.get(key)

    def cards(self) -> list[Card]:
        return list(self._cards.values())

    def get_or_create(
        self,
        repo_owner: str,
        repo_name: str,
        number: int,
        issue: IssuePayload | None = None,
        pr: dict[str, Any] | None = None,
        pr_statuses: list[dict[str, Any]] | None = None,
    ) -> Card:
        if not (repo_owner and repo_name and number):
            raise ValueError(
                f"card identity requires owner, name and number "
                f"(got {repo_owner!r}, {repo_name!r}, {number!r})"
            )
        key = to_card_key(repo_owner, repo_name, number)
        card = self._cards.get(key)
        if card is not None:
            if issue:
                card.reset_state(issue, pr, pr_statuses)
            return card
        card = Card(repo_owner, repo_name, number, issue, pr, pr_statuses)
        self.graph.add_node(card)
        self.graph.rebuild_from_cards([card])
        self._cards[key] = card
        return card

    def clear_all(self) -> None:
        self._cards = {}
        self.graph = RelationshipGraph(self._extractor)

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from .models import Card, to_card_key
from .references import ReferenceExtractor, extract_references

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edge:
    source_key: str
    target_key: str
    source: Card
    target: Card
    fixes: bool = False


def card_to_key(card: Card) -> str:
    return to_card_key(card.repo_owner, card.repo_name, card.number)


class RelationshipGraph:
    """Directed graph of cross references between cards.

    Nodes are card keys. An edge ``A -> B`` means card ``B`` mentions card
    ``A``; ``fixes`` is set when the mention closes ``A``. References to
    cards that were never fetched are dropped rather than stored as
    placeholder nodes, so the graph only ever links in-scope cards.
    """

    def __init__(self, extractor: ReferenceExtractor = extract_references) -> None:
        self._extract = extractor
        self._nodes: dict[str, Card] = {}
        self._edges: dict[tuple[str, str], Edge] = {}
        self._outgoing: dict[str, set[str]] = {}
        self._incoming: dict[str, set[str]] = {}

    @staticmethod
    def card_to_key(card: Card) -> str:
        return card_to_key(card)

    def __len__(self) -> int:
        return len(self._nodes)

    def has_node(self, key: str) -> bool:
        return key in self._nodes

    def get_node(self, key: str) -> Card | None:
        return self._nodes.get(key)

    def add_node(self, card: Card) -> None:
        key = card_to_key(card)
        self._nodes[key] = card
        self._outgoing.setdefault(key, set())
        self._incoming.setdefault(key, set())

    def add_edge(
        self,
        source_key: str,
        target_key: str,
        source: Card,
        target: Card,
        fixes: bool = False,
    ) -> bool:
        if source_key not in self._nodes or target_key not in self._nodes:
            return False
        self._edges[(source_key, target_key)] = Edge(
            source_key, target_key, source, target, bool(fixes)
        )
        self._outgoing[source_key].add(target_key)
        self._incoming[target_key].add(source_key)
        return True

    def has_edge(self, source_key: str, target_key: str) -> bool:
        return (source_key, target_key) in self._edges

    def get_edge(self, source_key: str, target_key: str) -> Edge | None:
        return self._edges.get((source_key, target_key))

    def nodes(self) -> list[Card]:
        return list(self._nodes.values())

    def edges(self) -> Iterator[Edge]:
        return iter(list(self._edges.values()))

    def edges_from(self, key: str) -> list[Edge]:
        return [self._edges[(key, target)] for target in sorted(self._outgoing.get(key, ()))]

    def edges_to(self, key: str) -> list[Edge]:
        return [self._edges[(source, key)] for source in sorted(self._incoming.get(key, ()))]

    def related(self, card: Card) -> list[Edge]:
        key = card_to_key(card)
        return [*self.edges_to(key), *self.edges_from(key)]

    def rebuild_from_cards(self, cards: Iterable[Card]) -> int:
        """Link every card in ``cards`` to the cards its body references.

        References resolve against the batch first and then against cards
        the graph already holds. Returns the number of edges written.
        """
        batch = list(cards)
        issues: dict[str, Card] = {}
        pull_requests: dict[str, Card] = {}
        for card in batch:
            key = card_to_key(card)
            if key not in self._nodes:
                self.add_node(card)
            if card.is_pull_request:
                pull_requests[key] = card
            else:
                issues[key] = card

        written = 0
        for card in batch:
            card_key = card_to_key(card)
            for ref in self._extract(card.body, card.repo_owner, card.repo_name):
                other_key = to_card_key(ref.repo_owner, ref.repo_name, ref.number)
                if other_key == card_key:
                    continue
                other = issues.get(other_key) or pull_requests.get(other_key)
                if other is None:
                    other = self._nodes.get(other_key)
                if other is None:
                    continue
                if self.add_edge(other_key, card_key, other, card, ref.fixes):
                    written += 1
        logger.debug("graph rebuild: %d cards, %d edges written", len(batch), written)
        return written

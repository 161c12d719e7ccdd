from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from .models import Card, RepoInfo

# Labels named like "1 - Todo" assign a card to a kanban list.
KANBAN_LABEL = re.compile(r"^\d+ - ")
UNCATEGORIZED_NAME = "999999 - Uncategorized"


def is_kanban_label(name: str) -> bool:
    return bool(KANBAN_LABEL.match(name))


def _label_name(label: Any) -> str:
    if isinstance(label, dict):
        return str(label.get("name") or "")
    if isinstance(label, str):
        return label
    return str(getattr(label, "name", "") or "")


def _card_matches(card: Card, filter_name: str) -> bool:
    names = card.label_names
    if filter_name in names:
        return True
    if filter_name == UNCATEGORIZED_NAME:
        return not any(is_kanban_label(name) for name in names)
    return False


def filter_cards(cards: Sequence[Card], labels: Iterable[Any]) -> list[Card]:
    """Keep cards carrying every label in ``labels``.

    Filters apply in order and stop as soon as nothing is left. The
    uncategorized sentinel matches cards that sit in no kanban list.
    """
    filtered = list(cards)
    for label in labels:
        name = _label_name(label)
        filtered = [card for card in filtered if _card_matches(card, name)]
        if not filtered:
            return []
    return filtered


class FilterState(Protocol):
    def repo_infos(self) -> list[RepoInfo]: ...

    def filter_cards(self, cards: list[Card]) -> list[Card]: ...


class StaticFilterState:
    """Filter state fixed at construction, used by the CLI and tests."""

    def __init__(self, repo_infos: Iterable[RepoInfo], labels: Iterable[Any] = ()) -> None:
        self._repo_infos = list(repo_infos)
        self.labels = list(labels)

    def repo_infos(self) -> list[RepoInfo]:
        return list(self._repo_infos)

    def set_repo_infos(self, repo_infos: Iterable[RepoInfo]) -> None:
        self._repo_infos = list(repo_infos)

    def filter_cards(self, cards: list[Card]) -> list[Card]:
        return filter_cards(cards, self.labels)

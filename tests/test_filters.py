from cardboard.filters import (
    UNCATEGORIZED_NAME,
    StaticFilterState,
    filter_cards,
    is_kanban_label,
)
from cardboard.models import Card, RepoInfo


def _card(number: int, *labels: str) -> Card:
    return Card(
        "octo", "board", number, {"number": number, "labels": [{"name": n} for n in labels]}
    )


def test_is_kanban_label() -> None:
    assert is_kanban_label("1 - Todo")
    assert is_kanban_label("20 - Done")
    assert not is_kanban_label("bug")
    assert not is_kanban_label("1- Todo")


def test_no_labels_keeps_everything() -> None:
    cards = [_card(1), _card(2, "bug")]
    assert filter_cards(cards, []) == cards


def test_every_label_must_match() -> None:
    a = _card(1, "bug", "1 - Todo")
    b = _card(2, "bug")
    c = _card(3, "1 - Todo")

    assert filter_cards([a, b, c], [{"name": "bug"}]) == [a, b]
    assert filter_cards([a, b, c], [{"name": "bug"}, "1 - Todo"]) == [a]


def test_adding_a_label_never_grows_the_result() -> None:
    cards = [_card(1, "bug"), _card(2, "bug", "ui"), _card(3, "ui")]
    fewer = filter_cards(cards, ["bug"])
    more = filter_cards(cards, ["bug", "ui"])
    assert set(map(id, more)) <= set(map(id, fewer))


def test_empty_intermediate_result_short_circuits() -> None:
    seen: list[str] = []

    class _Label:
        def __init__(self, name: str) -> None:
            self._name = name

        @property
        def name(self) -> str:
            seen.append(self._name)
            return self._name

    result = filter_cards([_card(1, "bug")], [_Label("missing"), _Label("bug")])

    assert result == []
    assert seen == ["missing"]


def test_uncategorized_matches_cards_outside_kanban_lists() -> None:
    listed = _card(1, "2 - Doing", "bug")
    loose = _card(2, "bug")

    assert filter_cards([listed, loose], [UNCATEGORIZED_NAME]) == [loose]


def test_static_filter_state() -> None:
    state = StaticFilterState([RepoInfo("octo", "board")], ["bug"])
    cards = [_card(1, "bug"), _card(2)]

    assert state.repo_infos() == [RepoInfo("octo", "board")]
    assert [c.number for c in state.filter_cards(cards)] == [1]

    state.set_repo_infos([RepoInfo("octo", "*")])
    assert state.repo_infos()[0].is_wildcard

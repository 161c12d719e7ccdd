import asyncio
from pathlib import Path

import pytest

from cardboard import db
from cardboard.models import Card, RepoMetadata
from cardboard.store import CardStore


@pytest.fixture
def store(tmp_path: Path):
    store = CardStore(tmp_path / "cards.sqlite")
    try:
        yield store
    finally:
        store.close()


def _card(number: int, **issue) -> Card:
    return Card("octo", "board", number, {"number": number, **issue})


def test_schema_has_tables(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "schema.sqlite")
    try:
        db.initialize_schema(conn)
        db.initialize_schema(conn)
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        card_columns = [row[1] for row in conn.execute("PRAGMA table_info(cards)")]
    finally:
        conn.close()
    assert {"repositories", "cards"} <= tables
    assert card_columns.count("state") == 1


def test_unknown_repo_is_none(store: CardStore) -> None:
    assert asyncio.run(store.get_repo_or_none("octo", "board")) is None


def test_put_cards_and_repos_round_trip(store: CardStore) -> None:
    cards = [_card(2, title="second"), _card(1, title="first", state="open")]
    store.put_cards_and_repos_sync(cards, [RepoMetadata("octo", "board", 11)])

    stored = store.list_cards("octo", "board")
    assert [c.card_key for c in stored] == ["octo/board#2", "octo/board#1"]
    assert stored[1].issue["title"] == "first"
    assert store.get_repo("octo", "board") == RepoMetadata("octo", "board", 11)


def test_rewrite_moves_card_to_the_end(store: CardStore) -> None:
    store.put_cards_and_repos_sync([_card(1), _card(2)], [])
    store.put_cards_and_repos_sync([_card(1, title="updated")], [])

    stored = store.list_cards()
    assert [c.number for c in stored] == [2, 1]
    assert stored[-1].issue["title"] == "updated"


def test_watermark_never_moves_backwards(store: CardStore) -> None:
    store.put_cards_and_repos_sync([], [RepoMetadata("octo", "board", 20)])
    store.put_cards_and_repos_sync([], [RepoMetadata("octo", "board", 5)])
    assert store.get_repo("octo", "board").last_seen_event_id == 20

    store.put_cards_and_repos_sync([], [RepoMetadata("octo", "board", 42)])
    assert store.get_repo("octo", "board").last_seen_event_id == 42


def test_empty_stream_sentinel_is_replaced_by_real_events(store: CardStore) -> None:
    store.put_cards_and_repos_sync([], [RepoMetadata("octo", "board", -1)])
    assert store.get_repo("octo", "board").last_seen_event_id == -1

    store.put_cards_and_repos_sync([], [RepoMetadata("octo", "board", 7)])
    assert store.get_repo("octo", "board").last_seen_event_id == 7


def test_list_repos_is_sorted(store: CardStore) -> None:
    asyncio.run(
        store.put_cards_and_repos(
            [], [RepoMetadata("zeta", "a", 1), RepoMetadata("alpha", "b", None)]
        )
    )
    assert [(r.repo_owner, r.last_seen_event_id) for r in store.list_repos()] == [
        ("alpha", None),
        ("zeta", 1),
    ]


def test_failed_write_rolls_back(store: CardStore) -> None:
    class _Broken(Card):
        @property
        def key(self) -> str:
            raise RuntimeError("no key")

    with pytest.raises(RuntimeError, match="no key"):
        store.put_cards_and_repos_sync([_card(1), _Broken("octo", "board", 2)], [])

    assert store.list_cards() == []

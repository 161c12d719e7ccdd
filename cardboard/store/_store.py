from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from .. import db
from ..models import Card, RepoMetadata
from .types import StoredCard

logger = logging.getLogger(__name__)


class CardStorage(Protocol):
    async def get_repo_or_none(self, repo_owner: str, repo_name: str) -> RepoMetadata | None: ...

    async def put_cards_and_repos(
        self, cards: Sequence[Card], repos: Sequence[RepoMetadata]
    ) -> None: ...


class CardStore:
    """SQLite persistence for synced cards and repository watermarks.

    Cards are written in the order given; ``seq`` preserves that
    chronological insert order across writes. The async methods run their
    sqlite calls directly on the event loop thread and block it while they do.
    """

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)

    def close(self) -> None:
        self.conn.close()

    @staticmethod
    def _now_iso() -> str:
        return dt.datetime.now(dt.UTC).isoformat()

    async def get_repo_or_none(self, repo_owner: str, repo_name: str) -> RepoMetadata | None:
        return self.get_repo(repo_owner, repo_name)

    def get_repo(self, repo_owner: str, repo_name: str) -> RepoMetadata | None:
        row = self.conn.execute(
            """
            SELECT repo_owner, repo_name, last_seen_event_id
            FROM repositories
            WHERE repo_owner = ? AND repo_name = ?
            """,
            (repo_owner, repo_name),
        ).fetchone()
        if row is None:
            return None
        return RepoMetadata(
            row["repo_owner"],
            row["repo_name"],
            int(row["last_seen_event_id"]) if row["last_seen_event_id"] is not None else None,
        )

    def list_repos(self) -> list[RepoMetadata]:
        rows = self.conn.execute(
            """
            SELECT repo_owner, repo_name, last_seen_event_id
            FROM repositories
            ORDER BY repo_owner, repo_name
            """
        ).fetchall()
        return [
            RepoMetadata(
                row["repo_owner"],
                row["repo_name"],
                int(row["last_seen_event_id"]) if row["last_seen_event_id"] is not None else None,
            )
            for row in rows
        ]

    async def put_cards_and_repos(
        self, cards: Sequence[Card], repos: Sequence[RepoMetadata]
    ) -> None:
        self.put_cards_and_repos_sync(cards, repos)

    def put_cards_and_repos_sync(
        self, cards: Sequence[Card], repos: Sequence[RepoMetadata]
    ) -> None:
        now = self._now_iso()
        row = self.conn.execute("SELECT COALESCE(MAX(seq), 0) AS seq FROM cards").fetchone()
        seq = int(row["seq"])
        try:
            for card in cards:
                seq += 1
                self.conn.execute(
                    """
                    INSERT INTO cards(
                        card_key, repo_owner, repo_name, number, is_pull_request, state,
                        issue_json, pr_json, pr_statuses_json, seq, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(card_key) DO UPDATE SET
                        is_pull_request = excluded.is_pull_request,
                        state = excluded.state,
                        issue_json = excluded.issue_json,
                        pr_json = COALESCE(excluded.pr_json, cards.pr_json),
                        pr_statuses_json = COALESCE(excluded.pr_statuses_json, cards.pr_statuses_json),
                        seq = excluded.seq,
                        updated_at = excluded.updated_at
                    """,
                    (
                        card.key,
                        card.repo_owner,
                        card.repo_name,
                        card.number,
                        1 if card.is_pull_request else 0,
                        card.state or None,
                        db.to_json(card.issue),
                        db.to_json(card.pr) if card.pr is not None else None,
                        db.to_json(card.pr_statuses) if card.pr_statuses is not None else None,
                        seq,
                        now,
                    ),
                )
            for repo in repos:
                # Watermarks never move backwards.
                self.conn.execute(
                    """
                    INSERT INTO repositories(repo_owner, repo_name, last_seen_event_id, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(repo_owner, repo_name) DO UPDATE SET
                        last_seen_event_id = CASE
                            WHEN repositories.last_seen_event_id IS NULL
                                THEN excluded.last_seen_event_id
                            WHEN excluded.last_seen_event_id IS NULL
                                THEN repositories.last_seen_event_id
                            ELSE MAX(repositories.last_seen_event_id, excluded.last_seen_event_id)
                        END,
                        updated_at = excluded.updated_at
                    """,
                    (repo.repo_owner, repo.repo_name, repo.last_seen_event_id, now),
                )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.debug("stored %d cards and %d repositories", len(cards), len(repos))

    def list_cards(
        self, repo_owner: str | None = None, repo_name: str | None = None
    ) -> list[StoredCard]:
        clauses: list[str] = []
        params: list[Any] = []
        if repo_owner:
            clauses.append("repo_owner = ?")
            params.append(repo_owner)
        if repo_name:
            clauses.append("repo_name = ?")
            params.append(repo_name)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"""
            SELECT card_key, repo_owner, repo_name, number, issue_json, pr_json,
                   pr_statuses_json, seq
            FROM cards
            {where}
            ORDER BY seq
            """,
            params,
        ).fetchall()
        return [
            StoredCard(
                card_key=row["card_key"],
                repo_owner=row["repo_owner"],
                repo_name=row["repo_name"],
                number=int(row["number"]),
                issue=db.from_json(row["issue_json"]) or {},
                pr=db.from_json(row["pr_json"]),
                pr_statuses=db.from_json(row["pr_statuses_json"]),
                seq=int(row["seq"]),
            )
            for row in rows
        ]

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

DEFAULT_DB_PATH = Path.home() / ".cardboard.sqlite"


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS repositories (
            repo_owner TEXT NOT NULL,
            repo_name TEXT NOT NULL,
            last_seen_event_id INTEGER,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (repo_owner, repo_name)
        );

        CREATE TABLE IF NOT EXISTS cards (
            card_key TEXT PRIMARY KEY,
            repo_owner TEXT NOT NULL,
            repo_name TEXT NOT NULL,
            number INTEGER NOT NULL,
            is_pull_request INTEGER NOT NULL DEFAULT 0,
            state TEXT,
            issue_json TEXT NOT NULL,
            pr_json TEXT,
            pr_statuses_json TEXT,
            seq INTEGER NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_cards_repo ON cards(repo_owner, repo_name, number);
        CREATE INDEX IF NOT EXISTS idx_cards_seq ON cards(seq);
        """
    )
    conn.commit()


def to_json(data: Any) -> str:
    return json.dumps(data if data is not None else {}, ensure_ascii=False)


def from_json(text: str | None) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None

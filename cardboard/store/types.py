from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class StoredCard:
    card_key: str
    repo_owner: str
    repo_name: str
    number: int
    issue: dict[str, Any]
    pr: dict[str, Any] | None
    pr_statuses: list[dict[str, Any]] | None
    seq: int

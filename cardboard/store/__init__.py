from __future__ import annotations

from ._store import CardStorage, CardStore
from .types import StoredCard

__all__ = [
    "CardStorage",
    "CardStore",
    "StoredCard",
]

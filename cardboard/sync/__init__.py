from __future__ import annotations

from .engine import IssueSync, MilestoneNotFoundError, SyncSession
from .polling import PollingController, VisibilitySignal

__all__ = [
    "IssueSync",
    "MilestoneNotFoundError",
    "PollingController",
    "SyncSession",
    "VisibilitySignal",
]

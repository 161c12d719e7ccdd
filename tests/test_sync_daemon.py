from __future__ import annotations

import asyncio
import logging

import pytest

from cardboard.events import ChangeOccurred
from cardboard.filters import StaticFilterState
from cardboard.models import RepoInfo, RepoMetadata
from cardboard.sync import IssueSync
from cardboard.sync.daemon import run_sync_daemon


class _Client:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.event_calls = 0

    async def list_issue_events(self, repo_owner, repo_name, *, per_page=100):
        self.event_calls += 1
        if self.fail:
            raise RuntimeError("github down")
        return []


class _Store:
    async def get_repo_or_none(self, repo_owner, repo_name):
        return RepoMetadata(repo_owner, repo_name, 1)

    async def put_cards_and_repos(self, cards, repos):
        return None


def _engine(client: _Client) -> IssueSync:
    return IssueSync(
        client,  # type: ignore[arg-type]
        _Store(),
        StaticFilterState([RepoInfo("octo", "board")]),
        poll_short_s=60,
    )


def test_daemon_syncs_then_waits_for_stop() -> None:
    client = _Client()
    engine = _engine(client)

    def _on_change(_event: ChangeOccurred) -> None:
        return None

    async def _run() -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(run_sync_daemon(engine, stop_event=stop, on_change=_on_change))
        await asyncio.sleep(0.01)
        assert engine.polling.enabled
        assert engine.polling.scheduled
        assert engine.events.listener_count(ChangeOccurred) == 1
        stop.set()
        await task

    asyncio.run(_run())

    assert client.event_calls == 1
    assert not engine.polling.enabled
    assert not engine.polling.scheduled
    assert engine.events.listener_count(ChangeOccurred) == 0


def test_daemon_survives_failed_initial_sync(caplog: pytest.LogCaptureFixture) -> None:
    client = _Client(fail=True)
    engine = _engine(client)

    async def _run() -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(run_sync_daemon(engine, stop_event=stop))
        await asyncio.sleep(0.01)
        assert not task.done()
        assert engine.polling.scheduled
        stop.set()
        await task

    with caplog.at_level(logging.ERROR, logger="cardboard.sync.daemon"):
        asyncio.run(_run())

    assert "initial sync failed" in caplog.text

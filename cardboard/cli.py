from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import asdict
from typing import Any

import typer
from rich import print
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress

from . import __version__
from .config import CardboardConfig, get_config_path, load_config, read_config_file
from .db import DEFAULT_DB_PATH
from .events import ChangeOccurred
from .filters import StaticFilterState
from .github_client import GitHubAPIError, GitHubClient
from .models import Card, RepoInfo, parse_repo_info
from .progress import RichProgress
from .store import CardStore
from .sync import IssueSync, MilestoneNotFoundError, VisibilitySignal
from .sync.daemon import run_sync_daemon

app = typer.Typer(help="cardboard: incremental GitHub issue sync for kanban boards")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
    )


def _load_config_or_exit() -> CardboardConfig:
    try:
        read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    return load_config()


def _repo_infos_or_exit(cfg: CardboardConfig, repos: list[str] | None) -> list[RepoInfo]:
    values = repos or cfg.repos
    if not values:
        print("[red]No repositories configured; pass --repo owner/name[/red]")
        raise typer.Exit(code=1)
    try:
        return [parse_repo_info(value) for value in values]
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _store(cfg: CardboardConfig, db_path: str | None) -> CardStore:
    return CardStore(db_path or cfg.db_path or DEFAULT_DB_PATH)


@contextlib.asynccontextmanager
async def _engine(
    cfg: CardboardConfig,
    repo_infos: list[RepoInfo],
    *,
    labels: list[str] | None = None,
    db_path: str | None = None,
    visibility: VisibilitySignal | None = None,
) -> AsyncIterator[IssueSync]:
    store = _store(cfg, db_path)
    client = GitHubClient(
        cfg.github_token, base_url=cfg.api_base_url, timeout_s=cfg.request_timeout_s
    )
    filter_state = StaticFilterState(
        repo_infos, [{"name": name} for name in (labels or cfg.labels)]
    )
    engine = IssueSync(
        client,
        store,
        filter_state,
        can_cache_lots=cfg.can_cache_lots,
        per_page=cfg.per_page,
        visibility=visibility,
        poll_short_s=cfg.poll_short_s,
        poll_long_s=cfg.poll_long_s,
    )
    try:
        yield engine
    finally:
        await engine.aclose()
        await client.aclose()
        store.close()


def _split_repo(value: str) -> tuple[str, str]:
    try:
        info = parse_repo_info(value)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    if info.is_wildcard:
        print("[red]A concrete repository is required here[/red]")
        raise typer.Exit(code=1)
    return info.repo_owner, info.repo_name


def _card_line(card: Card) -> str:
    kind = "pr" if card.is_pull_request else "issue"
    labels = ",".join(card.label_names)
    suffix = f" [{labels}]" if labels else ""
    return f"{card.key}|{kind}|{card.state}|{card.title}{suffix}"


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except GitHubAPIError as exc:
        print(f"[red]GitHub request failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc


@app.command("version")
def version() -> None:
    """Print the installed version."""
    print(__version__)


@app.command("sync")
def sync(
    repo: list[str] = typer.Option(None, "--repo", "-r", help="owner/name or owner/*"),
    label: list[str] = typer.Option(None, "--label", "-l", help="Only show cards with label"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    open_only: bool = typer.Option(False, help="Only fetch the first page of open issues"),
) -> None:
    """Run one sync cycle and print the matching cards."""
    cfg = _load_config_or_exit()
    if open_only:
        cfg.can_cache_lots = False
    repo_infos = _repo_infos_or_exit(cfg, repo)

    async def _sync_once() -> list[Card]:
        async with _engine(cfg, repo_infos, labels=label, db_path=db_path) as engine:
            with Progress(transient=True) as bar:
                return await engine.fetch_issues(RichProgress(bar))

    cards = _run(_sync_once())
    for card in cards:
        print(escape(_card_line(card)))
    print(f"[green]{len(cards)} cards[/green]")


@app.command("daemon")
def daemon(
    repo: list[str] = typer.Option(None, "--repo", "-r", help="owner/name or owner/*"),
    label: list[str] = typer.Option(None, "--label", "-l", help="Only show cards with label"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    hidden: bool = typer.Option(False, help="Poll at the long (background) interval"),
) -> None:
    """Keep polling GitHub and report changes."""
    cfg = _load_config_or_exit()
    repo_infos = _repo_infos_or_exit(cfg, repo)

    def _on_change(_event: ChangeOccurred) -> None:
        print("[green]cards changed[/green]")

    async def _serve() -> None:
        visibility = VisibilitySignal(hidden=hidden)
        async with _engine(
            cfg, repo_infos, labels=label, db_path=db_path, visibility=visibility
        ) as engine:
            await run_sync_daemon(engine, on_change=_on_change)

    with contextlib.suppress(KeyboardInterrupt):
        _run(_serve())


@app.command("repos")
def repos(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Show stored repository watermarks."""
    cfg = _load_config_or_exit()
    store = _store(cfg, db_path)
    try:
        rows = store.list_repos()
    finally:
        store.close()
    if not rows:
        print("No repositories synced yet")
        return
    for row in rows:
        watermark = "never" if row.last_seen_event_id is None else str(row.last_seen_event_id)
        print(f"{row.repo_owner}/{row.repo_name}|last_seen_event_id={watermark}")


@app.command("related")
def related(
    card_key: str = typer.Argument(..., help="owner/name#number"),
    repo: list[str] = typer.Option(None, "--repo", "-r", help="owner/name or owner/*"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Sync, then list the cards linked to CARD_KEY."""
    cfg = _load_config_or_exit()
    repo_infos = _repo_infos_or_exit(cfg, repo)

    async def _related() -> list[str]:
        async with _engine(cfg, repo_infos, labels=[], db_path=db_path) as engine:
            await engine.fetch_issues()
            graph = engine.graph
            if not graph.has_node(card_key):
                return []
            lines = []
            for edge in graph.edges_to(card_key):
                verb = "fixes" if edge.fixes else "mentions"
                lines.append(f"{card_key} {verb} {edge.source_key}")
            for edge in graph.edges_from(card_key):
                verb = "fixed by" if edge.fixes else "mentioned by"
                lines.append(f"{card_key} {verb} {edge.target_key}")
            return lines

    lines = _run(_related())
    if not lines:
        print(f"[yellow]No related cards for {card_key}[/yellow]")
        return
    for line in lines:
        print(escape(line))


@app.command("move-label")
def move_label(
    repo: str = typer.Argument(..., help="owner/name"),
    number: int = typer.Argument(...),
    label: str = typer.Argument(..., help="Target kanban list label"),
) -> None:
    """Move an issue to another kanban list."""
    cfg = _load_config_or_exit()
    owner, name = _split_repo(repo)

    async def _move() -> None:
        async with _engine(cfg, [RepoInfo(owner, name)]) as engine:
            issue = await engine.client.get_issue(owner, name, number)
            await engine.move_label(owner, name, issue, {"name": label})

    _run(_move())
    print(f"[green]Moved {owner}/{name}#{number} to {label}[/green]")


@app.command("move-milestone")
def move_milestone(
    repo: str = typer.Argument(..., help="owner/name"),
    number: int = typer.Argument(...),
    title: str = typer.Argument(..., help="Milestone title"),
) -> None:
    """Assign an issue to the milestone with TITLE."""
    cfg = _load_config_or_exit()
    owner, name = _split_repo(repo)

    async def _move() -> None:
        async with _engine(cfg, [RepoInfo(owner, name)]) as engine:
            issue = await engine.client.get_issue(owner, name, number)
            await engine.move_milestone(owner, name, issue, {"title": title})

    try:
        _run(_move())
    except MilestoneNotFoundError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"[green]Moved {owner}/{name}#{number} to milestone {title}[/green]")


@app.command("config-show")
def config_show() -> None:
    """Print the effective configuration."""
    cfg = _load_config_or_exit()
    data = asdict(cfg)
    if data.get("github_token"):
        data["github_token"] = "***"
    typer.echo(f"# {get_config_path()}")
    typer.echo(json.dumps(data, indent=2))

import json
from pathlib import Path

import pytest

from cardboard.config import (
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
)
from cardboard.models import RepoInfo


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_missing_or_blank_config_reads_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "nope.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("  \n")
    assert read_config_file(blank) == {}


def test_get_config_path_uses_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    target = tmp_path / "custom.json"
    monkeypatch.setenv("CARDBOARD_CONFIG", str(target))
    assert get_config_path() == target


def test_load_config_coerces_file_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "repos": ["octo/board", "acme/*"],
                "labels": "bug, 1 - Todo",
                "can_cache_lots": "false",
                "poll_short_s": "10",
                "request_timeout_s": 5,
                "unknown_key": "ignored",
            }
        )
    )

    cfg = load_config(config_path)

    assert cfg.repos == ["octo/board", "acme/*"]
    assert cfg.labels == ["bug", "1 - Todo"]
    assert cfg.can_cache_lots is False
    assert cfg.poll_short_s == 10
    assert cfg.poll_long_s == 300
    assert cfg.request_timeout_s == 5.0
    assert not hasattr(cfg, "unknown_key")
    assert cfg.repo_infos() == [RepoInfo("octo", "board"), RepoInfo("acme", "*")]


def test_env_overrides_win_over_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"repos": ["octo/board"], "per_page": 50}))
    monkeypatch.setenv("CARDBOARD_REPOS", "acme/web,acme/api")
    monkeypatch.setenv("GITHUB_TOKEN", "tok")

    assert get_env_overrides()["repos"] == "acme/web,acme/api"
    cfg = load_config(config_path)

    assert cfg.repos == ["acme/web", "acme/api"]
    assert cfg.per_page == 50
    assert cfg.github_token == "tok"


def test_invalid_int_warns_and_keeps_default(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"per_page": "lots"}))
    with pytest.warns(RuntimeWarning, match="Invalid int for per_page"):
        cfg = load_config(config_path)
    assert cfg.per_page == 100


def test_load_config_ignores_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{oops")
    assert load_config(config_path).repos == []


def test_invalid_bool_warns_and_keeps_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CARDBOARD_CAN_CACHE_LOTS", "sometimes")
    with pytest.warns(RuntimeWarning, match="Invalid bool for can_cache_lots"):
        cfg = load_config()
    assert cfg.can_cache_lots is True


def test_null_values_keep_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"repos": None, "poll_long_s": None}))
    cfg = load_config(config_path)
    assert cfg.repos == []
    assert cfg.poll_long_s == 300

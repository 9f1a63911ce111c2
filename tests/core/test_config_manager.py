from __future__ import annotations

import json
from pathlib import Path

import pytest

from prereg.core.config import ConfigError, ConfigManager
from prereg.core.config_loader import deep_merge, load_json_file, substitute_env_vars
from prereg.core.global_paths import GlobalPath


@pytest.mark.anyio
async def test_defaults_without_any_source(tmp_path: Path) -> None:
    config = await ConfigManager.load(str(tmp_path))

    assert config.language == "ko"
    assert config.backend.type == "local"
    assert config.retry.max_retries == 3
    assert config.validation.debounce == 0.5
    assert ConfigManager.sources() == []


@pytest.mark.anyio
async def test_precedence_global_project_inline_env(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    global_dir = Path(GlobalPath.config())
    global_dir.mkdir(parents=True)
    (global_dir / "prereg.json").write_text(json.dumps({
        "language": "en",
        "retry": {"maxRetries": 5, "delay": 2},
    }))

    project = tmp_path / "project"
    nested = project / "nested"
    nested.mkdir(parents=True)
    (project / "prereg.jsonc").write_text("""
    {
        // project wide
        "retry": {"delay": 0.25},
        "realtime": {"pollInterval": 9}
    }
    """)
    (nested / "prereg.json").write_text(json.dumps({"realtime": {"pollInterval": 1}}))

    monkeypatch.setenv("PREREG_CONFIG_CONTENT", json.dumps({"backend": {"targetMilestone": 10}}))
    monkeypatch.setenv("PREREG_LANGUAGE", "ja")

    config = await ConfigManager.load(str(nested))

    assert config.language == "ja"
    assert config.retry.max_retries == 5
    assert config.retry.delay == 0.25
    assert config.realtime.poll_interval == 1
    assert config.backend.target_milestone == 10
    assert ConfigManager.sources()[-2:] == ["PREREG_CONFIG_CONTENT", "environment"]


@pytest.mark.anyio
async def test_supabase_env_selects_rest_backend(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("PREREG_SUPABASE_URL", "https://demo.supabase.co")
    monkeypatch.setenv("PREREG_SUPABASE_ANON_KEY", "anon")

    config = await ConfigManager.load(str(tmp_path))

    assert config.backend.type == "rest"
    assert config.backend.anon_key == "anon"


@pytest.mark.anyio
async def test_rest_backend_without_key_is_a_config_error(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("PREREG_CONFIG_CONTENT", json.dumps({"backend": {"type": "rest"}}))

    with pytest.raises(ConfigError, match="PREREG_CONFIG_CONTENT"):
        await ConfigManager.load(str(tmp_path))


@pytest.mark.anyio
async def test_configuration_is_cached_until_reset(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    first = await ConfigManager.load(str(tmp_path))
    monkeypatch.setenv("PREREG_LANGUAGE", "en")

    assert await ConfigManager.get() is first

    ConfigManager.reset()
    assert (await ConfigManager.get()).language == "en"


def test_loader_helpers(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("PREREG_KEY", "secret")
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]")
    keyed = tmp_path / "keyed.json"
    keyed.write_text('{"backend": {"anonKey": "{env:PREREG_KEY}"}}')

    assert deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"c": 3}, "d": 4}) == {"a": {"b": 1, "c": 3}, "d": 4}
    assert substitute_env_vars("{env:PREREG_KEY}-{env:PREREG_MISSING}") == "secret-"
    assert load_json_file(tmp_path / "absent.json") == {}
    assert load_json_file(listing) == {}
    assert load_json_file(keyed) == {"backend": {"anonKey": "secret"}}

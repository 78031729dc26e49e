"""Tests for configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from ytdigest.config import load_config
from ytdigest.config.schema import Settings, SupervisorConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("REDIS_URL", "DATABASE_PATH", "TELEGRAM_BOT_TOKEN", "YTDIGEST_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("ytdigest.config.loader.load_dotenv", lambda: None)


def test_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = load_config(tmp_path / "missing.yml")

    assert settings == Settings()
    assert settings.streams.work_stream == "youtube_audio_requested"
    assert settings.streams.result_stream == "summary_created"
    assert settings.streams.failure_stream == "summary_failed"
    assert settings.redis.maxlen is None
    assert settings.redis.claim_min_idle_ms is None


def test_loads_yaml_with_env_expansion(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YTD_BOT_TOKEN", "123:abc")
    config_path = tmp_path / "ytdigest.yml"
    config_path.write_text(
        "\n".join(
            [
                "redis:",
                "  url: redis://cache:6379/2",
                "  maxlen: 10000",
                "streams:",
                "  group: digest",
                "telegram:",
                "  bot_token: ${YTD_BOT_TOKEN}",
                "  allowed_chat_ids: [1, 2]",
                "messages:",
                "  queued: Working on it",
            ]
        ),
        encoding="utf-8",
    )

    settings = load_config(config_path)

    assert settings.redis.url == "redis://cache:6379/2"
    assert settings.redis.maxlen == 10000
    assert settings.streams.group == "digest"
    assert settings.telegram.bot_token == "123:abc"
    assert settings.telegram.allowed_chat_ids == [1, 2]
    assert settings.messages.queued == "Working on it"
    assert settings.messages.invalid == Settings().messages.invalid


def test_env_overrides_connection_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "ytdigest.yml"
    config_path.write_text("redis:\n  url: redis://file:6379\n", encoding="utf-8")
    monkeypatch.setenv("REDIS_URL", "redis://env:6379")
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "env-token")

    settings = load_config(config_path)

    assert settings.redis.url == "redis://env:6379"
    assert settings.database.path == str(tmp_path / "env.db")
    assert settings.telegram.bot_token == "env-token"


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "custom.yml"
    config_path.write_text("streams:\n  group: from-env-path\n", encoding="utf-8")
    monkeypatch.setenv("YTDIGEST_CONFIG", str(config_path))

    assert load_config().streams.group == "from-env-path"


def test_empty_file_yields_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "empty.yml"
    config_path.write_text("", encoding="utf-8")

    assert load_config(config_path) == Settings()


def test_unknown_keys_are_kept_and_warned(tmp_path: Path) -> None:
    config_path = tmp_path / "ytdigest.yml"
    config_path.write_text("redis:\n  colour: blue\nextra_section: 1\n", encoding="utf-8")

    settings = load_config(config_path)

    assert settings.redis.model_extra == {"colour": "blue"}
    assert settings.model_extra == {"extra_section": 1}


def test_invalid_values_raise(tmp_path: Path) -> None:
    config_path = tmp_path / "ytdigest.yml"
    config_path.write_text("redis:\n  block_ms: 0\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_config(config_path)


def test_supervisor_backoff_bounds() -> None:
    with pytest.raises(ValidationError):
        SupervisorConfig(initial_backoff_s=10, max_backoff_s=1)
    assert SupervisorConfig(initial_backoff_s=1, max_backoff_s=1).max_backoff_s == 1

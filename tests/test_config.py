from pathlib import Path

import allure
import pytest

from async_bash.config import Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment settings"),
]


def test_defaults_derive_paths_from_data_dir(monkeypatch, tmp_path: Path) -> None:
    for name in ("ASYNC_BASH_QUEUE_DIR", "ASYNC_BASH_OUTPUT_DIR", "ASYNC_BASH_OUTBOX_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("ASYNC_BASH_DB_PATH", raising=False)
    monkeypatch.delenv("ASYNC_BASH_STORE_BACKEND", raising=False)

    settings = Settings.from_env(data_dir=tmp_path)

    assert settings.storage.queue_dir == tmp_path / "async-jobs"
    assert settings.storage.output_dir == tmp_path / "async-jobs" / "output"
    assert settings.storage.outbox_dir == tmp_path / "outbox"
    assert settings.storage.db_path == tmp_path / "async-bash.db"
    assert settings.storage.backend == "file"
    settings.validate()


def test_env_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ASYNC_BASH_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("ASYNC_BASH_QUEUE_DIR", str(tmp_path / "q"))
    monkeypatch.delenv("ASYNC_BASH_OUTPUT_DIR", raising=False)
    monkeypatch.setenv("ASYNC_BASH_STORE_BACKEND", " SQLite ")
    monkeypatch.setenv("ASYNC_BASH_CONCURRENCY", "4")
    monkeypatch.setenv("ASYNC_BASH_REPORT_SECONDS", "30")
    monkeypatch.setenv("ASYNC_BASH_KILL_GRACE_MS", "250")
    monkeypatch.setenv("ASYNC_BASH_AGENT_URL", "http://127.0.0.1:4096")
    monkeypatch.setenv("ASYNC_BASH_AGENT_SESSION_ID", "ses_1")
    monkeypatch.setenv("ASYNC_BASH_LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.storage.data_dir == tmp_path
    assert settings.storage.output_dir == tmp_path / "q" / "output"
    assert settings.storage.backend == "sqlite"
    assert settings.scheduling.concurrency == 4
    assert settings.scheduling.report_seconds == 30
    assert settings.scheduling.kill_grace_ms == 250
    assert settings.notifications.agent_url == "http://127.0.0.1:4096"
    assert settings.log_level == "DEBUG"
    settings.validate()


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("ASYNC_BASH_STORE_BACKEND", "redis", "ASYNC_BASH_STORE_BACKEND"),
        ("ASYNC_BASH_CONCURRENCY", "0", "ASYNC_BASH_CONCURRENCY"),
        ("ASYNC_BASH_REPORT_SECONDS", "0", "ASYNC_BASH_REPORT_SECONDS"),
        ("ASYNC_BASH_TICK_SECONDS", "0", "ASYNC_BASH_TICK_SECONDS"),
        ("ASYNC_BASH_DEFAULT_TIMEOUT_MS", "-1", "ASYNC_BASH_DEFAULT_TIMEOUT_MS"),
        ("ASYNC_BASH_AGENT_URL", "localhost:4096", "Invalid ASYNC_BASH_AGENT_URL"),
    ],
)
def test_validate_rejects_bad_values(monkeypatch, tmp_path, name, value, message) -> None:
    monkeypatch.delenv("ASYNC_BASH_AGENT_URL", raising=False)
    monkeypatch.delenv("ASYNC_BASH_STORE_BACKEND", raising=False)
    monkeypatch.setenv(name, value)
    monkeypatch.setenv("ASYNC_BASH_AGENT_SESSION_ID", "ses_1")

    with pytest.raises(ValueError, match=message):
        Settings.from_env(data_dir=tmp_path).validate()


def test_agent_url_requires_session(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ASYNC_BASH_AGENT_URL", "https://agent.example")
    monkeypatch.delenv("ASYNC_BASH_AGENT_SESSION_ID", raising=False)

    with pytest.raises(ValueError, match="ASYNC_BASH_AGENT_SESSION_ID"):
        Settings.from_env(data_dir=tmp_path).validate()

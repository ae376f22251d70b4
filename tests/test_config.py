from pathlib import Path

import pytest

from tgdispatch.config import (
    ENV_BOT_TOKEN,
    ENV_CONFIG_PATH,
    ConfigError,
    load_settings,
    require_bot_token,
)
from tgdispatch.webhook import WebhookErrorPolicy


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv(ENV_BOT_TOKEN, raising=False)
    monkeypatch.delenv(ENV_CONFIG_PATH, raising=False)
    monkeypatch.chdir(tmp_path)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_config_file() -> None:
    settings, path = load_settings()

    assert path is None
    assert settings.bot_token is None
    assert settings.polling.limit == 100
    assert settings.polling.timeout_s == 50
    assert settings.webhook.error_policy is WebhookErrorPolicy.ACKNOWLEDGE


def test_local_config_file_is_picked_up(tmp_path) -> None:
    _write(
        tmp_path / "tgdispatch.toml",
        'bot_token = "1:abc"\n'
        "[polling]\n"
        "limit = 20\n"
        'allowed_updates = ["message"]\n'
        "[webhook]\n"
        'url = "https://example.com/hook"\n'
        'secret_token = "s3cret"\n'
        'error_policy = "redeliver"\n',
    )

    settings, path = load_settings()

    assert path == tmp_path / "tgdispatch.toml"
    assert require_bot_token(settings, path) == "1:abc"
    assert settings.polling.limit == 20
    assert settings.polling.allowed_updates == ["message"]
    assert settings.webhook.secret_token is not None
    assert settings.webhook.secret_token.get_secret_value() == "s3cret"
    assert settings.webhook.error_policy is WebhookErrorPolicy.REDELIVER


def test_env_token_overrides_file(monkeypatch, tmp_path) -> None:
    cfg = _write(tmp_path / "bot.toml", 'bot_token = "1:file"\n')
    monkeypatch.setenv(ENV_BOT_TOKEN, " 2:env ")
    monkeypatch.setenv(ENV_CONFIG_PATH, str(cfg))

    settings, path = load_settings()

    assert path == cfg
    assert require_bot_token(settings, path) == "2:env"


def test_explicit_missing_path_raises(tmp_path) -> None:
    with pytest.raises(ConfigError, match="Missing config file"):
        load_settings(tmp_path / "nope.toml")


def test_malformed_toml_raises(tmp_path) -> None:
    cfg = _write(tmp_path / "bad.toml", "bot_token = \n")
    with pytest.raises(ConfigError, match="Malformed TOML"):
        load_settings(cfg)


@pytest.mark.parametrize(
    "text",
    [
        "unknown_key = 1\n",
        "[polling]\nlimit = 500\n",
        "[polling]\nbackoff_initial_s = 10\nbackoff_max_s = 1\n",
        '[webhook]\nerror_policy = "ignore"\n',
    ],
)
def test_invalid_values_raise(tmp_path, text: str) -> None:
    cfg = _write(tmp_path / "bad.toml", text)
    with pytest.raises(ConfigError, match="Invalid config"):
        load_settings(cfg)


def test_missing_token_raises() -> None:
    settings, path = load_settings()
    with pytest.raises(ConfigError, match=ENV_BOT_TOKEN):
        require_bot_token(settings, path)


def test_webhook_security_settings(tmp_path) -> None:
    cfg = _write(
        tmp_path / "hook.toml",
        "[webhook]\n"
        'security_subnets = ["149.154.160.0/20", "91.108.4.0/22"]\n'
        'ip_address = "203.0.113.7"\n',
    )

    settings, _ = load_settings(cfg)

    assert settings.webhook.security_subnets == ["149.154.160.0/20", "91.108.4.0/22"]
    assert settings.webhook.ip_address == "203.0.113.7"


@pytest.mark.parametrize(
    "text",
    [
        '[webhook]\nsecurity_subnets = ["not-a-subnet"]\n',
        '[webhook]\nbackground = true\nerror_policy = "redeliver"\n',
    ],
)
def test_invalid_webhook_settings_raise(tmp_path, text: str) -> None:
    cfg = _write(tmp_path / "bad.toml", text)
    with pytest.raises(ConfigError, match="Invalid config"):
        load_settings(cfg)

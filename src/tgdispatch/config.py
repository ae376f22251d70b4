from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr, ValidationError

from .settings import DispatchSettings

ENV_BOT_TOKEN = "TGDISPATCH_BOT_TOKEN"
ENV_CONFIG_PATH = "TGDISPATCH_CONFIG"

LOCAL_CONFIG_NAME = Path("tgdispatch.toml")


class ConfigError(RuntimeError):
    pass


def _read_config(cfg_path: Path) -> dict[str, Any]:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def resolve_config_path(path: str | Path | None = None) -> Path | None:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path and env_path.strip():
        return Path(env_path.strip()).expanduser()
    candidate = Path.cwd() / LOCAL_CONFIG_NAME
    if candidate.is_file():
        return candidate
    return None


def load_settings(path: str | Path | None = None) -> tuple[DispatchSettings, Path | None]:
    """Load settings from TOML, then apply environment overrides.

    An explicit ``path`` must exist; without one a missing local config file
    means defaults.
    """
    cfg_path = resolve_config_path(path)
    data = _read_config(cfg_path) if cfg_path is not None else {}
    try:
        settings = DispatchSettings.model_validate(data)
    except ValidationError as exc:
        where = cfg_path if cfg_path is not None else "defaults"
        raise ConfigError(f"Invalid config in {where}: {exc}") from exc

    env_token = os.environ.get(ENV_BOT_TOKEN)
    if env_token and env_token.strip():
        settings = settings.model_copy(
            update={"bot_token": SecretStr(env_token.strip())}
        )
    return settings, cfg_path


def require_bot_token(settings: DispatchSettings, config_path: Path | None) -> str:
    token = (
        settings.bot_token.get_secret_value().strip()
        if settings.bot_token is not None
        else ""
    )
    if not token:
        where = config_path if config_path is not None else "the config file"
        raise ConfigError(
            f"Missing bot token. Set {ENV_BOT_TOKEN} environment variable "
            f"or add `bot_token` to {where}."
        )
    return token

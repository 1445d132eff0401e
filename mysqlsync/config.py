"""App configuration loading helpers."""

from __future__ import annotations

import os
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, SecretStr

from .models import ConnectionProfile, Role

CONFIG_FILE = Path.home() / ".config" / "mysqlsync" / "config.toml"
DATA_DIR = Path.home() / ".local" / "share" / "mysqlsync"
CONFIG_MODE = 0o600
LOG_FILE_NAME = "mysqlsync.log"


class ProfileConfig(BaseModel):
    """Connection settings stored under `[local]` or `[remote]`."""

    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: SecretStr | None = None

    def to_profile(self, role: Role, *, saved: bool = True) -> ConnectionProfile:
        secret = self.password.get_secret_value() if self.password is not None else ""
        return ConnectionProfile(
            role=role,
            host=self.host,
            port=self.port,
            user=self.user,
            credential=secret,
            saved=saved,
        )

    @classmethod
    def from_profile(cls, profile: ConnectionProfile) -> ProfileConfig:
        return cls(
            host=profile.host,
            port=profile.port,
            user=profile.user,
            password=SecretStr(profile.credential) if profile.credential else None,
        )


class AppConfig(BaseModel):
    """Shape of the configuration file."""

    local: ProfileConfig = Field(default_factory=ProfileConfig)
    remote: ProfileConfig | None = None
    backup_dir: Path = DATA_DIR / "backups"
    staging_dir: Path = DATA_DIR / "staging"
    log_file: Path | None = Field(default_factory=lambda: DATA_DIR / LOG_FILE_NAME)
    connect_timeout: int = 10
    export_retries: int = 3
    retry_delay: float = 2.0

    def with_local(self, profile: ConnectionProfile) -> AppConfig:
        """Return a copy with the local profile replaced."""

        return self.model_copy(update={"local": ProfileConfig.from_profile(profile)})

    def with_remote(self, profile: ConnectionProfile | None) -> AppConfig:
        """Return a copy with the remote profile replaced (or cleared)."""

        remote = ProfileConfig.from_profile(profile) if profile is not None else None
        return self.model_copy(update={"remote": remote})


def config_exists(path: Path | None = None) -> bool:
    return (path or CONFIG_FILE).is_file()


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()
    return AppConfig(**data)


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    """Persist configuration to disk, readable by the owner only."""

    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f'backup_dir = "{_escape(str(config.backup_dir))}"',
        f'staging_dir = "{_escape(str(config.staging_dir))}"',
    ]
    if config.log_file is not None:
        lines.append(f'log_file = "{_escape(str(config.log_file))}"')
    lines.append(f"connect_timeout = {config.connect_timeout}")
    lines.append(f"export_retries = {config.export_retries}")
    lines.append(f"retry_delay = {config.retry_delay}")
    lines.append("")
    lines.extend(_profile_lines("local", config.local))
    if config.remote is not None:
        lines.append("")
        lines.extend(_profile_lines("remote", config.remote))
    payload = "\n".join(lines) + "\n"
    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CONFIG_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(payload)
    os.chmod(target, CONFIG_MODE)
    return target


def _profile_lines(section: str, profile: ProfileConfig) -> list[str]:
    lines = [
        f"[{section}]",
        f'host = "{_escape(profile.host)}"',
        f"port = {profile.port}",
        f'user = "{_escape(profile.user)}"',
    ]
    if profile.password is not None:
        lines.append(f'password = "{_escape(profile.password.get_secret_value())}"')
    return lines


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if not isinstance(raw, dict):
        return data
    for key in ("backup_dir", "staging_dir", "log_file"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            data[key] = Path(value).expanduser()
    for key in ("connect_timeout", "export_retries"):
        value = raw.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            data[key] = value
    retry_delay = raw.get("retry_delay")
    if isinstance(retry_delay, (int, float)) and not isinstance(retry_delay, bool):
        data["retry_delay"] = float(retry_delay)
    for section in ("local", "remote"):
        profile = raw.get(section)
        if isinstance(profile, dict):
            data[section] = _parse_profile(profile)
    return data


def _parse_profile(raw: dict[str, object]) -> ProfileConfig:
    parsed: dict[str, object] = {}
    for key in ("host", "user"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            parsed[key] = value
    port = raw.get("port")
    if isinstance(port, int) and not isinstance(port, bool):
        parsed["port"] = port
    password = raw.get("password")
    if isinstance(password, str):
        parsed["password"] = SecretStr(password)
    return ProfileConfig(**parsed)


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ProfileConfig",
    "config_exists",
    "load_config",
    "save_config",
]

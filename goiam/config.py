"""Configuration system for goiam using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.goiam] section (project-level)
3. ./goiam.toml (project-level, explicit)
4. ~/.config/goiam/config.toml (user-level, overrides project)
5. The file named by GOIAM_CONFIG_FILE
6. Environment variables (override every file)

Environment variables use a GOIAM_<SECTION>__ prefix per section.
Example: GOIAM_CLIENT__BASE_URL, GOIAM_SESSION__CACHE_TTL_SECONDS
"""

from __future__ import annotations

import logging
import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


logger = logging.getLogger("goiam.config")


def _user_config_path() -> Path:
    """Location of the user-level config file."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~")) / "goiam" / "config.toml"
    return Path("~/.config/goiam/config.toml")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    goiam_toml = Path("goiam.toml")
    if goiam_toml.exists():
        files.append(goiam_toml)

    user_config = _user_config_path().expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("GOIAM_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("goiam", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "redis_url",
}

_REDACTED = "********"


class ClientSettings(BaseSettings):
    """Identity server and client registration settings.

    Environment prefix: GOIAM_CLIENT__
    Example: GOIAM_CLIENT__BASE_URL=https://iam.example.com
    Example: GOIAM_CLIENT__CLIENT_ID=your-client-id
    """

    model_config = SettingsConfigDict(
        env_prefix="GOIAM_CLIENT__",
        extra="ignore",
    )

    base_url: str = Field(
        default="",
        description="Base URL of the GoIAM API (e.g. https://iam.example.com)",
    )
    client_id: str = Field(
        default="",
        description="OAuth2 client ID registered with GoIAM",
    )
    client_secret: str = Field(
        default="",
        description="Client secret for HTTP Basic auth on verify (empty for public clients)",
    )
    login_page_url: str = Field(
        default="/login",
        description="Login page the session-expired redirect navigates to",
    )
    callback_url: str = Field(
        default="",
        description="Redirect URL handed to GoIAM on login",
    )
    profile_variant: Literal["me", "dashboard"] = Field(
        default="me",
        description="Profile endpoint: 'me' (/me/v1/) or 'dashboard' (/me/v1/dashboard)",
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        description="HTTP request timeout in seconds",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended."""
        return v.rstrip("/")


class SessionSettings(BaseSettings):
    """Session caching and login flow settings.

    Environment prefix: GOIAM_SESSION__
    Example: GOIAM_SESSION__CACHE_TTL_SECONDS=60
    """

    model_config = SettingsConfigDict(
        env_prefix="GOIAM_SESSION__",
        extra="ignore",
    )

    cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Seconds a cached profile is served without a network refresh",
    )
    login_timeout_seconds: float = Field(
        default=120.0,
        ge=1.0,
        description="Maximum seconds the native login flow waits for the callback",
    )
    callback_host: str = Field(
        default="127.0.0.1",
        description="Bind address of the native login callback server",
    )
    callback_port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Port of the native login callback server (0 for auto-assign)",
    )


class StoreSettings(BaseSettings):
    """Persistent store settings.

    Environment prefix: GOIAM_STORE__
    Example: GOIAM_STORE__BACKEND=keyring
    """

    model_config = SettingsConfigDict(
        env_prefix="GOIAM_STORE__",
        extra="ignore",
    )

    backend: Literal["memory", "file", "keyring", "redis"] = Field(
        default="file",
        description="Storage backend: memory, file, keyring, or redis",
    )
    path: str = Field(
        default="~/.config/goiam/session.json",
        description="JSON file used by the file backend",
    )
    service_name: str = Field(
        default="goiam",
        description="Service name used by the keyring backend",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Connection URL used by the redis backend",
    )
    prefix: str = Field(
        default="goiam",
        description="Key prefix used by the redis backend",
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: GOIAM_LOG__
    Example: GOIAM_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="GOIAM_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


_SECTIONS: list[tuple[str, str, str]] = [
    # (attribute, env prefix, display name)
    ("client", "CLIENT", "Client"),
    ("session", "SESSION", "Session Cache"),
    ("store", "STORE", "Persistent Store"),
    ("log", "LOG", "Logging"),
]


class _TomlConfigSource(PydanticBaseSettingsSource):
    """The merged TOML files as one settings source."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return _load_toml_config()


class _SectionEnvSource(PydanticBaseSettingsSource):
    """GOIAM_<SECTION>__<FIELD> variables, read with each section's own prefix."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for attr, _, _ in _SECTIONS:
            section_cls = self.settings_cls.model_fields[attr].annotation
            values = EnvSettingsSource(section_cls)()
            if values:
                data[attr] = values
        return data


class GoIamSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: GOIAM__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.goiam] section
    3. ./goiam.toml (project-level)
    4. ~/.config/goiam/config.toml (user-level, overrides project)
    5. The file named by GOIAM_CONFIG_FILE
    6. GOIAM_<SECTION>__<FIELD> environment variables
    7. GOIAM__<SECTION>__<FIELD> environment variables
    8. Keyword arguments (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="GOIAM__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    client: ClientSettings = Field(default_factory=ClientSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Order the sources; earlier entries win."""
        return (
            init_settings,
            env_settings,
            _SectionEnvSource(settings_cls),
            _TomlConfigSource(settings_cls),
            dotenv_settings,
            file_secret_settings,
        )

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# goiam Configuration", "# Generated by: goiam config --toml", ""]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for attr, _, _ in _SECTIONS},
        )

        for attr, _, _ in _SECTIONS:
            lines.append(f"[{attr}]")
            for field_name, field_value in all_data.get(attr, {}).items():
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                elif isinstance(field_value, str):
                    value_str = f'"{field_value}"'
                else:
                    value_str = str(field_value)
                lines.append(f"{field_name} = {value_str}")
            section_cls = type(getattr(self, attr))
            lines.extend(
                f'{rn} = "{_REDACTED}"'
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )
            lines.append("")

        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# goiam Environment Variables",
            "# Generated by: goiam config --env",
            "",
        ]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for attr, _, _ in _SECTIONS},
        )

        for attr, env_prefix, _ in _SECTIONS:
            for field_name, field_value in all_data.get(attr, {}).items():
                env_name = f"GOIAM_{env_prefix}__{field_name.upper()}"
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                else:
                    value_str = str(field_value)
                lines.append(f'export {env_name}="{value_str}"')
            section_cls = type(getattr(self, attr))
            for redacted_name in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys()):
                lines.append(f'export GOIAM_{env_prefix}__{redacted_name.upper()}="{_REDACTED}"')

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["goiam Configuration", "=" * 60]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for attr, _, _ in _SECTIONS},
        )

        for attr, _, display_name in _SECTIONS:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data.get(attr, {}).items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:22} = {value_str}")
            section_cls = type(getattr(self, attr))
            lines.extend(
                f"  {rn:22} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> GoIamSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return GoIamSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()

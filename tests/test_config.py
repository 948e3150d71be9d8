"""Tests for layered configuration."""

from __future__ import annotations

import logging

import pytest

from pydantic import ValidationError

from goiam.config import (
    ClientSettings,
    GoIamSettings,
    SessionSettings,
    _deep_merge,
    clear_settings,
    get_settings,
)


class TestDefaults:
    """Built-in defaults."""

    def test_defaults(self) -> None:
        """The cache lives five minutes and files back the store."""
        settings = GoIamSettings()
        assert settings.session.cache_ttl_seconds == 300
        assert settings.client.login_page_url == "/login"
        assert settings.client.profile_variant == "me"
        assert settings.client.timeout == 10.0
        assert settings.store.backend == "file"
        assert settings.log.level == "WARNING"

    def test_base_url_trailing_slash(self) -> None:
        """The base URL is normalized."""
        assert ClientSettings(base_url="https://iam.test/").base_url == "https://iam.test"

    def test_validation(self) -> None:
        """Invalid values are rejected."""
        with pytest.raises(ValidationError):
            SessionSettings(cache_ttl_seconds=-1)
        with pytest.raises(ValidationError):
            ClientSettings(profile_variant="other")


class TestSources:
    """TOML files and environment variables."""

    def test_pyproject_section(self, tmp_path) -> None:
        """[tool.goiam] in pyproject.toml is read."""
        (tmp_path / "pyproject.toml").write_text(
            '[tool.goiam.client]\nbase_url = "https://from-pyproject"\n', encoding="utf-8"
        )
        assert GoIamSettings().client.base_url == "https://from-pyproject"

    def test_goiam_toml_overrides_pyproject(self, tmp_path) -> None:
        """goiam.toml wins over pyproject.toml."""
        (tmp_path / "pyproject.toml").write_text(
            '[tool.goiam.client]\nbase_url = "https://a"\nclient_id = "keep"\n', encoding="utf-8"
        )
        (tmp_path / "goiam.toml").write_text(
            '[client]\nbase_url = "https://b"\n', encoding="utf-8"
        )
        settings = GoIamSettings()
        assert settings.client.base_url == "https://b"
        assert settings.client.client_id == "keep"

    def test_config_file_env(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        """GOIAM_CONFIG_FILE points at an extra file."""
        extra = tmp_path / "extra.toml"
        extra.write_text("[session]\ncache_ttl_seconds = 42\n", encoding="utf-8")
        monkeypatch.setenv("GOIAM_CONFIG_FILE", str(extra))
        assert GoIamSettings().session.cache_ttl_seconds == 42

    def test_unreadable_file_ignored(self, tmp_path, caplog) -> None:
        """Broken TOML is logged and skipped."""
        (tmp_path / "goiam.toml").write_text("[client\n", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="goiam.config"):
            settings = GoIamSettings()
        assert settings.client.base_url == ""
        assert "Ignoring unreadable config file" in caplog.text

    def test_section_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """GOIAM_<SECTION>__<FIELD> variables are read."""
        monkeypatch.setenv("GOIAM_CLIENT__CLIENT_ID", "env-client")
        monkeypatch.setenv("GOIAM_SESSION__CACHE_TTL_SECONDS", "60")
        settings = GoIamSettings()
        assert settings.client.client_id == "env-client"
        assert settings.session.cache_ttl_seconds == 60

    def test_env_overrides_toml(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Section env vars win over every TOML file, field by field."""
        (tmp_path / "goiam.toml").write_text(
            '[client]\nclient_id = "from-toml"\nbase_url = "https://toml"\n', encoding="utf-8"
        )
        monkeypatch.setenv("GOIAM_CLIENT__CLIENT_ID", "from-env")
        settings = GoIamSettings()
        assert settings.client.client_id == "from-env"
        assert settings.client.base_url == "https://toml"

    def test_env_overrides_config_file_env(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Env vars also win over the GOIAM_CONFIG_FILE file."""
        extra = tmp_path / "extra.toml"
        extra.write_text("[session]\ncache_ttl_seconds = 42\n", encoding="utf-8")
        monkeypatch.setenv("GOIAM_CONFIG_FILE", str(extra))
        monkeypatch.setenv("GOIAM_SESSION__CACHE_TTL_SECONDS", "7")
        assert GoIamSettings().session.cache_ttl_seconds == 7

    def test_nested_env_overrides_toml(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        """GOIAM__<SECTION>__<FIELD> variables also win over TOML."""
        (tmp_path / "goiam.toml").write_text('[store]\nbackend = "memory"\n', encoding="utf-8")
        monkeypatch.setenv("GOIAM__STORE__BACKEND", "keyring")
        assert GoIamSettings().store.backend == "keyring"

    def test_keyword_arguments_win(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Explicit keyword arguments outrank env vars and files."""
        (tmp_path / "goiam.toml").write_text('[client]\nclient_id = "from-toml"\n', encoding="utf-8")
        monkeypatch.setenv("GOIAM_CLIENT__CLIENT_ID", "from-env")
        settings = GoIamSettings(client={"client_id": "from-kwargs"})
        assert settings.client.client_id == "from-kwargs"

    def test_deep_merge(self) -> None:
        """Nested dicts merge key by key."""
        merged = _deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}, "c": 4})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}


class TestExport:
    """TOML / env export with redaction."""

    def test_to_toml_redacts_secret(self) -> None:
        """Secrets never appear in exported TOML."""
        settings = GoIamSettings(client={"client_secret": "hunter2", "client_id": "abc"})
        output = settings.to_toml()
        assert "hunter2" not in output
        assert 'client_secret = "********"' in output
        assert 'client_id = "abc"' in output
        assert "[session]" in output

    def test_to_env(self) -> None:
        """Env export uses section prefixes."""
        output = GoIamSettings(store={"redis_url": "redis://:pw@host"}).to_env()
        assert 'export GOIAM_SESSION__CACHE_TTL_SECONDS="300.0"' in output
        assert "pw@host" not in output
        assert 'export GOIAM_STORE__REDIS_URL="********"' in output

    def test_show(self) -> None:
        """The table lists every section."""
        output = GoIamSettings().show()
        for title in ("Client", "Session Cache", "Persistent Store", "Logging"):
            assert title in output


class TestCache:
    """get_settings caching."""

    def test_cached_until_cleared(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """clear_settings reloads the environment."""
        first = get_settings()
        assert get_settings() is first
        monkeypatch.setenv("GOIAM_CLIENT__CLIENT_ID", "new")
        clear_settings()
        assert get_settings().client.client_id == "new"

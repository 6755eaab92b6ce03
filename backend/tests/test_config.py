"""Tests for casefile.config Settings."""

import pytest

from casefile.config import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Run from an empty directory so no stray .env file is read."""
    monkeypatch.chdir(tmp_path)
    for name in ("ANTHROPIC_API_KEY", "DATABASE_DIR", "BATCH_SIZE", "MAX_WORKERS",
                 "MATCH_THRESHOLD", "ROOT_ENTITY_ALIASES"):
        monkeypatch.delenv(name, raising=False)


class TestSettingsDefaults:
    """Default settings load without errors when no env vars set."""

    def test_default_settings_load(self):
        settings = Settings()
        assert settings.ANTHROPIC_API_KEY is None

    def test_extraction_defaults(self):
        """Batch of 10, 5 workers, 50 requests/minute, 100k character budget."""
        settings = Settings()
        assert settings.BATCH_SIZE == 10
        assert settings.MAX_WORKERS == 5
        assert settings.REQUESTS_PER_MINUTE == 50
        assert settings.BATCH_PAUSE_SECONDS == 1.0
        assert settings.CLAIM_LEASE_SECONDS == 600.0
        assert settings.MAX_EXTRACTION_CHARS == 100_000
        assert settings.LLM_MAX_TOKENS == 8192

    def test_matching_defaults(self):
        settings = Settings()
        assert settings.MATCH_THRESHOLD == 0.7
        assert settings.MATCH_TOP_K == 5

    def test_root_entity_defaults(self):
        settings = Settings()
        assert settings.ROOT_ENTITY_NAME == "Jeffrey Epstein"
        assert settings.ROOT_ENTITY_TYPE == "person"
        assert "J. Epstein" in settings.ROOT_ENTITY_ALIASES

    def test_database_path_inside_database_dir(self):
        settings = Settings(DATABASE_DIR="/tmp/casefile-data")
        assert settings.database_path == "/tmp/casefile-data/casefile.db"


class TestSettingsEnvOverride:
    """Environment variable overrides are respected."""

    def test_database_dir_override(self, monkeypatch):
        monkeypatch.setenv("DATABASE_DIR", "/custom/data/path")
        assert Settings().DATABASE_DIR == "/custom/data/path"

    def test_numeric_overrides_are_coerced(self, monkeypatch):
        monkeypatch.setenv("BATCH_SIZE", "25")
        monkeypatch.setenv("MATCH_THRESHOLD", "0.85")
        settings = Settings()
        assert settings.BATCH_SIZE == 25
        assert settings.MATCH_THRESHOLD == 0.85

    def test_list_override_parses_json(self, monkeypatch):
        monkeypatch.setenv("ROOT_ENTITY_ALIASES", '["A. Root", "Root"]')
        assert Settings().ROOT_ENTITY_ALIASES == ["A. Root", "Root"]

    def test_api_key_from_env_file(self, tmp_path):
        (tmp_path / ".env").write_text("ANTHROPIC_API_KEY=sk-test\n")
        assert Settings().ANTHROPIC_API_KEY == "sk-test"

    def test_unknown_env_keys_ignored(self, tmp_path):
        (tmp_path / ".env").write_text("SOMETHING_ELSE=1\n")
        Settings()

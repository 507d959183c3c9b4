"""Tests for settings loading (``review_ledger.config``)."""

import pytest

from review_ledger.config import LedgerSettings, load_settings
from review_ledger.domain.report import VerificationMode
from review_ledger.exceptions import LedgerConfigError


def _write(tmp_path, text: str):
    path = tmp_path / "ledger.yaml"
    path.write_text(text)
    return path


class TestDefaults:

    def test_defaults_without_file_or_env(self):
        settings = load_settings(environ={})
        assert settings == LedgerSettings()
        assert settings.max_append_attempts == 5
        assert settings.default_verify_mode is VerificationMode.EXHAUSTIVE


class TestYamlFile:

    def test_values_loaded(self, tmp_path):
        path = _write(
            tmp_path,
            "database_url: postgresql://u:p@db/reviews\n"
            "pool_size: 7\n"
            "max_append_attempts: 9\n"
            "default_verify_mode: fail_fast\n"
            "log_level: warning\n"
            "echo: true\n"
            "install_triggers: false\n",
        )

        settings = load_settings(path, environ={})

        assert settings.database_url == "postgresql://u:p@db/reviews"
        assert settings.pool_size == 7
        assert settings.max_append_attempts == 9
        assert settings.default_verify_mode is VerificationMode.FAIL_FAST
        assert settings.log_level == "WARNING"
        assert settings.echo is True
        assert settings.install_triggers is False

    def test_empty_file(self, tmp_path):
        assert load_settings(_write(tmp_path, ""), environ={}) == LedgerSettings()

    def test_path_from_environment(self, tmp_path):
        path = _write(tmp_path, "pool_size: 3\n")
        settings = load_settings(environ={"REVIEW_LEDGER_CONFIG": str(path)})
        assert settings.pool_size == 3

    @pytest.mark.parametrize(
        "text, setting",
        [
            ("unknown_key: 1\n", "unknown_key"),
            ("pool_size: zero\n", "pool_size"),
            ("pool_size: 0\n", "pool_size"),
            ("max_append_attempts: 0\n", "max_append_attempts"),
            ("max_overflow: -1\n", "max_overflow"),
            ("default_verify_mode: sometimes\n", "default_verify_mode"),
            ("log_level: LOUD\n", "log_level"),
            ("echo: maybe\n", "echo"),
            ("database_url: ''\n", "database_url"),
            ("- a list\n", "config_path"),
            ("pool_size: [1\n", "config_path"),
        ],
    )
    def test_invalid_values(self, tmp_path, text, setting):
        with pytest.raises(LedgerConfigError) as exc_info:
            load_settings(_write(tmp_path, text), environ={})
        assert exc_info.value.setting == setting

    def test_missing_file(self, tmp_path):
        with pytest.raises(LedgerConfigError):
            load_settings(tmp_path / "absent.yaml", environ={})


class TestEnvironment:

    def test_environment_overrides_file(self, tmp_path):
        path = _write(tmp_path, "database_url: sqlite:///file.db\nlog_level: DEBUG\n")

        settings = load_settings(
            path,
            environ={
                "REVIEW_LEDGER_DATABASE_URL": "sqlite:///env.db",
                "REVIEW_LEDGER_LOG_LEVEL": "error",
                "REVIEW_LEDGER_MAX_APPEND_ATTEMPTS": "12",
            },
        )

        assert settings.database_url == "sqlite:///env.db"
        assert settings.log_level == "ERROR"
        assert settings.max_append_attempts == 12

    def test_database_url_fallback(self):
        settings = load_settings(environ={"DATABASE_URL": "postgresql://x/y"})
        assert settings.database_url == "postgresql://x/y"

    def test_prefixed_url_wins_over_fallback(self):
        settings = load_settings(
            environ={
                "DATABASE_URL": "postgresql://x/y",
                "REVIEW_LEDGER_DATABASE_URL": "sqlite:///z.db",
            }
        )
        assert settings.database_url == "sqlite:///z.db"

    def test_invalid_environment_value(self):
        with pytest.raises(LedgerConfigError) as exc_info:
            load_settings(environ={"REVIEW_LEDGER_MAX_APPEND_ATTEMPTS": "many"})
        assert exc_info.value.setting == "max_append_attempts"

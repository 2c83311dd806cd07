"""Unit tests for the YAML config loader and env var resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from binlog_cdc.config.loader import load_engine_config, load_yaml, resolve_env_vars

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "examples" / "engine.yaml"


class TestResolveEnvVars:
    def test_plain_string_unchanged(self):
        assert resolve_env_vars("hello") == "hello"

    def test_substitutes_env_var(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MYSQL_HOST", "db.prod")
        assert resolve_env_vars("${MYSQL_HOST}") == "db.prod"

    def test_default_when_var_missing(self):
        assert resolve_env_vars("${MISSING_VAR:-fallback}") == "fallback"

    def test_env_var_overrides_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MYSQL_PORT", "3307")
        assert resolve_env_vars("${MYSQL_PORT:-3306}") == "3307"

    def test_empty_default(self):
        assert resolve_env_vars("${MISSING_VAR:-}") == ""

    def test_missing_var_no_default_raises(self):
        with pytest.raises(ValueError, match="UNDEFINED_VAR"):
            resolve_env_vars("${UNDEFINED_VAR}")

    def test_multiple_vars_in_one_string(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("HOST", "replica")
        monkeypatch.setenv("PORT", "3306")
        assert resolve_env_vars("${HOST}:${PORT}") == "replica:3306"

    def test_recursive(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DB_PASS", "secret123")
        data = {
            "source": {"password": "${DB_PASS}", "port": 3306},
            "exclude_table_regex": ["${SKIP:-^tmp\\.}"],
        }
        result = resolve_env_vars(data)
        assert result["source"] == {"password": "secret123", "port": 3306}
        assert result["exclude_table_regex"] == ["^tmp\\."]

    def test_required_var_message(self):
        with pytest.raises(ValueError, match="required: set the replica password"):
            resolve_env_vars("${CDC_PASSWORD:?set the replica password}")

    def test_required_var_present(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("CDC_PASSWORD", "pw")
        assert resolve_env_vars("${CDC_PASSWORD:?missing}") == "pw"

    def test_escaped_brace_in_default(self):
        assert resolve_env_vars(r"${MISSING:-a\}b}") == "a}b"


class TestLoadYaml:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_yaml(tmp_path / "absent.yaml")

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_invalid_yaml_reports_line(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("source:\n  host: [unclosed\n")
        with pytest.raises(ValueError, match="Failed to parse YAML"):
            load_yaml(path)

    def test_top_level_must_be_mapping(self, tmp_path: Path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(TypeError, match="mapping"):
            load_yaml(path)


class TestLoadEngineConfig:
    def test_defaults_when_no_path(self):
        cfg = load_engine_config()
        assert cfg.source.port == 3306
        assert cfg.dump.execution_path == "mysqldump"

    def test_loads_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("CDC_MYSQL_HOST", "replica.internal")
        path = tmp_path / "engine.yaml"
        path.write_text(
            "source:\n"
            "  host: ${CDC_MYSQL_HOST}\n"
            "  server_id: 4242\n"
            "dump:\n"
            "  table_db: shop\n"
            "  tables: [orders]\n"
            "include_table_regex: ['^shop\\.']\n"
        )
        cfg = load_engine_config(path)
        assert cfg.source.host == "replica.internal"
        assert cfg.source.server_id == 4242
        assert cfg.dump.tables == ["orders"]
        assert cfg.include_table_regex == ["^shop\\."]
        # non-overridden defaults preserved
        assert cfg.source.charset == "utf8mb4"
        assert len(cfg.exclude_table_regex) == 4

    def test_validation_error_names_file(self, tmp_path: Path):
        path = tmp_path / "engine.yaml"
        path.write_text("heartbeat_period_seconds: 30\nread_timeout_seconds: 10\n")
        with pytest.raises(ValueError, match="Invalid engine config"):
            load_engine_config(path)

    def test_example_config_loads(self):
        cfg = load_engine_config(EXAMPLE_CONFIG)
        assert cfg.source.server_id >= 1
        assert cfg.dump.enabled

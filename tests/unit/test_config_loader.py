"""Unit tests for dashcal.config_loader."""

import os
from pathlib import Path

import pytest

from dashcal.config_loader import Config, ConfigManager, load_config, parse_env_file

pytestmark = pytest.mark.unit


@pytest.fixture
def env_manager(tmp_path: Path) -> ConfigManager:
    """ConfigManager pointed at a .env path inside tmp_path."""
    return ConfigManager(tmp_path / ".env")


class TestConfigFromDict:
    """Tests for Config.from_dict coercion."""

    def test_from_dict_when_empty_then_defaults(self) -> None:
        """No data yields the documented defaults."""
        config = Config.from_dict(None)

        assert config.sources == []
        assert config.refresh_interval_seconds == 60
        assert config.timezone is None
        assert config.log_level == "INFO"
        assert config.max_retries == 2
        assert config.max_occurrences_per_rule == 1000
        assert config.enforce_weekly_count is False

    @pytest.mark.parametrize(("raw", "expected"), [(5, 15), (7200, 3600), ("120", 120)])
    def test_from_dict_when_refresh_out_of_range_then_clamped(self, raw, expected: int) -> None:
        """The refresh interval is clamped to 15..3600 seconds."""
        config = Config.from_dict({"refresh_interval_seconds": raw})
        assert config.refresh_interval_seconds == expected

    def test_from_dict_when_int_invalid_then_default(self) -> None:
        """Non-numeric values fall back to defaults."""
        config = Config.from_dict({"refresh_interval_seconds": "often", "max_retries": None})

        assert config.refresh_interval_seconds == 60
        assert config.max_retries == 2

    def test_from_dict_when_sources_mixed_then_normalized(self) -> None:
        """Sources may be URL strings or mappings; mappings without url are skipped."""
        config = Config.from_dict(
            {
                "sources": [
                    "https://a.example.com/a.ics",
                    {"url": " https://b.example.com/b.ics ", "name": '"Kids"', "color": "'#FF0000'"},
                    {"name": "No URL"},
                    "",
                ]
            }
        )

        assert [s.url for s in config.sources] == [
            "https://a.example.com/a.ics",
            "https://b.example.com/b.ics",
        ]
        assert config.sources[1].name == "Kids"
        assert config.sources[1].color == "#FF0000"

    def test_from_dict_when_single_source_string_then_list(self) -> None:
        """A scalar sources value is treated as a one-item list."""
        config = Config.from_dict({"sources": "https://a.example.com/a.ics"})
        assert [s.url for s in config.sources] == ["https://a.example.com/a.ics"]

    def test_from_dict_when_expansion_settings_then_coerced(self) -> None:
        """Boolean strings and invalid caps are handled."""
        config = Config.from_dict({"enforce_weekly_count": "yes", "max_occurrences_per_rule": 0})

        assert config.enforce_weekly_count is True
        assert config.max_occurrences_per_rule == 1000


class TestEnvLayer:
    """Tests for ConfigManager and .env parsing."""

    def test_parse_env_file_when_comments_and_quotes_then_clean_pairs(self, tmp_path: Path) -> None:
        """Comments are skipped; quotes and export prefixes are stripped."""
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\n\nexport DASHCAL_TIMEZONE='Europe/Paris'\nDASHCAL_LOG_LEVEL=\"DEBUG\"\nBROKEN\n"
        )

        assert parse_env_file(env_file) == {
            "DASHCAL_TIMEZONE": "Europe/Paris",
            "DASHCAL_LOG_LEVEL": "DEBUG",
        }

    def test_parse_env_file_when_missing_then_empty(self, tmp_path: Path) -> None:
        assert parse_env_file(tmp_path / "absent.env") == {}

    def test_load_env_file_when_key_already_set_then_not_overridden(
        self, tmp_path: Path, monkeypatch, env_manager: ConfigManager
    ) -> None:
        """Existing environment values win over .env defaults."""
        monkeypatch.setenv("DASHCAL_TIMEZONE", "UTC")
        (tmp_path / ".env").write_text(
            "DASHCAL_TIMEZONE=Europe/Paris\nDASHCAL_LOG_LEVEL=WARNING\n"
        )

        loaded = env_manager.load_env_file()

        assert loaded == ["DASHCAL_LOG_LEVEL"]
        assert os.environ["DASHCAL_TIMEZONE"] == "UTC"
        assert os.environ["DASHCAL_LOG_LEVEL"] == "WARNING"

    def test_build_config_from_env_when_urls_and_overrides_then_sources(
        self, monkeypatch, env_manager: ConfigManager
    ) -> None:
        """Comma-separated URLs become sources with numbered names and colours."""
        monkeypatch.setenv("DASHCAL_CALENDAR_URLS", "https://a/1.ics, https://b/2.ics,")
        monkeypatch.setenv("DASHCAL_CALENDAR_NAME_1", "Work")
        monkeypatch.setenv("DASHCAL_CALENDAR_COLOR_2", "#00FF00")
        monkeypatch.setenv("DASHCAL_REFRESH_INTERVAL", "300")
        monkeypatch.setenv("DASHCAL_TIMEZONE", "America/Chicago")

        cfg = env_manager.build_config_from_env()

        assert cfg["sources"] == [
            {"url": "https://a/1.ics", "name": "Work"},
            {"url": "https://b/2.ics", "color": "#00FF00"},
        ]
        assert cfg["refresh_interval_seconds"] == 300
        assert cfg["timezone"] == "America/Chicago"

    def test_build_config_from_env_when_refresh_invalid_then_ignored(
        self, monkeypatch, env_manager: ConfigManager
    ) -> None:
        monkeypatch.setenv("DASHCAL_REFRESH_INTERVAL", "soon")
        assert "refresh_interval_seconds" not in env_manager.build_config_from_env()


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_config_when_file_missing_then_defaults(
        self, tmp_path: Path, env_manager: ConfigManager
    ) -> None:
        """A missing file is not an error."""
        config = load_config(str(tmp_path / "absent.yaml"), env_manager)
        assert config.sources == []
        assert config.refresh_interval_seconds == 60

    def test_load_config_when_yaml_then_values_loaded(
        self, tmp_path: Path, env_manager: ConfigManager
    ) -> None:
        """YAML mappings are read into Config."""
        path = tmp_path / "dashcal.yaml"
        path.write_text(
            "sources:\n"
            "  - url: https://a.example.com/family.ics\n"
            "    name: Family\n"
            "    color: '#FF6B6B'\n"
            "refresh_interval_seconds: 120\n"
            "timezone: Europe/London\n"
        )

        config = load_config(str(path), env_manager)

        assert config.sources[0].name == "Family"
        assert config.sources[0].color == "#FF6B6B"
        assert config.refresh_interval_seconds == 120
        assert config.timezone == "Europe/London"

    def test_load_config_when_env_set_then_overrides_file(
        self, tmp_path: Path, monkeypatch, env_manager: ConfigManager
    ) -> None:
        """Environment values replace file values."""
        path = tmp_path / "dashcal.yaml"
        path.write_text("refresh_interval_seconds: 120\nsources: [https://file/a.ics]\n")
        monkeypatch.setenv("DASHCAL_REFRESH_INTERVAL", "30")
        monkeypatch.setenv("DASHCAL_CALENDAR_URLS", "https://env/b.ics")

        config = load_config(str(path), env_manager)

        assert config.refresh_interval_seconds == 30
        assert [s.url for s in config.sources] == ["https://env/b.ics"]

    def test_load_config_when_json_then_loaded(
        self, tmp_path: Path, env_manager: ConfigManager
    ) -> None:
        """JSON config files are accepted."""
        path = tmp_path / "dashcal.json"
        path.write_text('{"sources": ["https://a/1.ics"], "log_level": "debug"}')

        config = load_config(str(path), env_manager)

        assert config.log_level == "DEBUG"
        assert len(config.sources) == 1

    def test_load_config_when_top_level_list_then_value_error(
        self, tmp_path: Path, env_manager: ConfigManager
    ) -> None:
        """A non-mapping document is rejected."""
        path = tmp_path / "dashcal.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="mapping"):
            load_config(str(path), env_manager)

    def test_load_config_when_unparseable_then_runtime_error(
        self, tmp_path: Path, env_manager: ConfigManager
    ) -> None:
        """Text that is neither YAML nor JSON raises RuntimeError."""
        path = tmp_path / "dashcal.yaml"
        path.write_text("sources: [unclosed\n")

        with pytest.raises(RuntimeError, match="Unable to parse config"):
            load_config(str(path), env_manager)

    def test_load_config_when_empty_file_then_defaults(
        self, tmp_path: Path, env_manager: ConfigManager
    ) -> None:
        """An empty YAML file is an empty mapping."""
        path = tmp_path / "dashcal.yaml"
        path.write_text("")
        assert load_config(str(path), env_manager).sources == []

    def test_load_config_when_env_file_present_then_applied(
        self, tmp_path: Path, env_manager: ConfigManager
    ) -> None:
        """.env values feed the environment layer."""
        (tmp_path / ".env").write_text("DASHCAL_CALENDAR_URLS=https://dotenv/a.ics\n")

        config = load_config(str(tmp_path / "absent.yaml"), env_manager)

        assert [s.url for s in config.sources] == ["https://dotenv/a.ics"]

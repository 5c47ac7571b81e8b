"""Tests for rde_cli/cloud.py -- local configuration and cache storage.

The autouse ``config_file`` fixture points ``_CONFIG_FILE`` at a temporary
path, so every test starts without a config file.
"""

from __future__ import annotations

import stat
from pathlib import Path

import pytest
from rde_cli.cloud import (
    clear_config,
    load_cache,
    load_config,
    load_settings_overrides,
    save_cache,
    save_config,
)

# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_returns_empty_dict_when_file_missing(self) -> None:
        assert load_config() == {}

    def test_loads_valid_toml(self, config_file: Path) -> None:
        config_file.parent.mkdir(parents=True)
        config_file.write_text('[rde]\nprogram_id = "12"\nenvironment_id = "34"\n', encoding="utf-8")
        assert load_config()["rde"] == {"program_id": "12", "environment_id": "34"}

    def test_returns_empty_dict_on_parse_error(self, config_file: Path) -> None:
        config_file.parent.mkdir(parents=True)
        config_file.write_text("this is not valid toml [[[", encoding="utf-8")
        assert load_config() == {}

    def test_returns_empty_dict_on_binary_content(self, config_file: Path) -> None:
        config_file.parent.mkdir(parents=True)
        config_file.write_bytes(b"\x00\x01\x02\xff\xfe")
        assert load_config() == {}


class TestLoadSettingsOverrides:
    def test_only_known_non_empty_keys(self, config_file: Path) -> None:
        config_file.parent.mkdir(parents=True)
        config_file.write_text(
            '[rde]\nprogram_id = 12\nenvironment_id = ""\ncolour = "blue"\n',
            encoding="utf-8",
        )
        assert load_settings_overrides() == {"program_id": "12"}


# ---------------------------------------------------------------------------
# save_config / clear_config
# ---------------------------------------------------------------------------


class TestSaveConfig:
    def test_creates_file_with_private_permissions(self, config_file: Path) -> None:
        path = save_config(program_id="1", access_token="tok")

        assert path == config_file
        mode = stat.S_IMODE(config_file.stat().st_mode)
        assert mode == stat.S_IRUSR | stat.S_IWUSR

    def test_merges_with_existing_values(self) -> None:
        save_config(program_id="1", environment_id="2")
        save_config(environment_id="3", org_id=None)
        assert load_config()["rde"] == {"program_id": "1", "environment_id": "3"}

    def test_values_with_quotes_survive(self) -> None:
        save_config(api_key='key "with" quotes\\')
        assert load_config()["rde"]["api_key"] == 'key "with" quotes\\'

    def test_rejects_unknown_keys(self) -> None:
        with pytest.raises(ValueError, match="colour"):
            save_config(colour="blue")

    def test_keeps_cache(self) -> None:
        save_cache({"aem-rde.k": {"rdeApiUrl": "https://x/api/rde"}})
        save_config(program_id="1")
        assert load_cache() == {"aem-rde.k": {"rdeApiUrl": "https://x/api/rde"}}


class TestCache:
    def test_round_trip(self) -> None:
        entries = {
            "aem-rde.dev-console-url-cache.cm-p1-e2": {
                "expiry": "2030-01-01T00:00:00Z",
                "rdeApiUrl": "https://x/api/rde",
                "devConsoleUrl": "https://x/",
            }
        }
        save_cache(entries)
        assert load_cache() == entries

    def test_replaces_previous_entries(self) -> None:
        save_cache({"a": {"v": 1}})
        save_cache({"b": {"v": 2}})
        assert load_cache() == {"b": {"v": 2}}

    def test_keeps_settings(self) -> None:
        save_config(program_id="1")
        save_cache({"a": {"v": 1}})
        assert load_settings_overrides() == {"program_id": "1"}


class TestClearConfig:
    def test_removes_file(self, config_file: Path) -> None:
        save_config(program_id="1")
        clear_config()
        assert not config_file.exists()

    def test_missing_file_is_fine(self) -> None:
        clear_config()
        assert load_config() == {}

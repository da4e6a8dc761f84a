"""Tests for the layered config loader."""

import pytest
import yaml

from lmchat.config import _ENV_MAP, LMChatConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _ENV_MAP:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "lmchat.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "llm": {"name": "lmstudio", "model": "qwen", "unknown_key": 1},
                "tools": {"max_passes": 4, "disabled": ["multiply"]},
                "plugins": {"allow_distributions": ["lmchat-weather"]},
                "profiles": {
                    "ollama": {"llm": {"name": "ollama", "model": "llama3"}},
                },
            }
        ),
        encoding="utf-8",
    )
    return path


class TestLoadConfig:
    def test_defaults(self):
        cfg = load_config(None)
        assert cfg.llm.name == "lmstudio"
        assert cfg.llm.url == "http://localhost:1234/v1"
        assert cfg.tools.max_passes == 8
        assert cfg.tools.timeout_seconds == 30.0
        assert cfg.plugins.enabled is False
        assert cfg.plugins.allow_functions == []
        assert cfg.session.reserve_tokens == 200

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.llm.model == ""

    def test_file_values(self, config_file):
        cfg = load_config(config_file)
        assert cfg.llm.model == "qwen"
        assert cfg.tools.max_passes == 4
        assert cfg.tools.disabled == ["multiply"]
        assert cfg.plugins.allow_distributions == ["lmchat-weather"]
        assert not hasattr(cfg.llm, "unknown_key")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "lmchat.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path).llm.name == "lmstudio"

    def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "lmchat.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_non_mapping_section_rejected(self, tmp_path):
        path = tmp_path / "lmchat.yaml"
        path.write_text("tools: nope\n", encoding="utf-8")
        with pytest.raises(ValueError, match="tools"):
            load_config(path)

    def test_profile_overlay(self, config_file):
        cfg = load_config(config_file, profile="ollama")
        assert cfg.llm.name == "ollama"
        assert cfg.llm.model == "llama3"
        assert cfg.tools.max_passes == 4

    def test_unknown_profile_raises(self, config_file):
        with pytest.raises(ValueError, match="Unknown profile"):
            load_config(config_file, profile="missing")

    def test_env_beats_file(self, config_file, monkeypatch):
        monkeypatch.setenv("LMCHAT_LLM_MODEL", "gpt-oss-20b")
        monkeypatch.setenv("LMCHAT_TOOLS_DISABLED", "add, getCurrentTime")
        monkeypatch.setenv("LMCHAT_PLUGINS_ENABLED", "yes")
        monkeypatch.setenv("LMCHAT_TOOLS_TIMEOUT", "2.5")
        cfg = load_config(config_file)
        assert cfg.llm.model == "gpt-oss-20b"
        assert cfg.tools.disabled == ["add", "getCurrentTime"]
        assert cfg.plugins.enabled is True
        assert cfg.tools.timeout_seconds == 2.5

    def test_env_false_words(self, monkeypatch):
        monkeypatch.setenv("LMCHAT_TOOLS_ENABLED", "off")
        assert load_config(None).tools.enabled is False

    def test_cli_beats_env(self, config_file, monkeypatch):
        monkeypatch.setenv("LMCHAT_LLM_MODEL", "from-env")
        cfg = load_config(config_file, cli_overrides={"llm.model": "from-cli"})
        assert cfg.llm.model == "from-cli"

    def test_unknown_cli_key(self):
        with pytest.raises(KeyError):
            load_config(None, cli_overrides={"llm.colour": "blue"})


class TestOverrides:
    def test_set_override(self):
        cfg = LMChatConfig()
        cfg.set_override("tools.max_passes", 2)
        assert cfg.tools.max_passes == 2
        assert cfg.get_override("tools.max_passes") == 2
        assert cfg.get_override("llm.model") is None

    def test_unknown_key_is_not_recorded(self):
        cfg = LMChatConfig()
        with pytest.raises(KeyError, match="Unknown config key"):
            cfg.set_override("llm.nope", 1)
        with pytest.raises(KeyError):
            cfg.set_override("profiles.x", 1)
        assert cfg.get_override("llm.nope") is None

    def test_to_dict_hides_overrides(self):
        cfg = LMChatConfig()
        cfg.set_override("llm.model", "x")
        d = cfg.to_dict()
        assert "_overrides" not in d
        assert d["llm"]["model"] == "x"
        assert d["plugins"]["enabled"] is False


class TestProblems:
    def test_defaults_are_usable(self):
        assert LMChatConfig().problems() == []

    def test_reports_each_problem(self):
        cfg = LMChatConfig()
        cfg.llm.name = "openai"
        cfg.llm.max_output_tokens = cfg.llm.max_context_tokens
        cfg.tools.max_passes = 0
        cfg.logging.level = "chatty"
        found = cfg.problems()
        assert len(found) == 4
        assert found[0].startswith("Unknown provider: openai")
        assert any("max_passes" in p for p in found)
        assert any("chatty" in p for p in found)

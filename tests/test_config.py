"""Tests for conch.config: TOML config file loading, merging, and CLI integration."""

import argparse

import pytest

from conch.config import (
    _UNSET,
    ConfigError,
    apply_config_to_args,
    default_history_path,
    generate_config,
    global_config_dir,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {
        "backend": _UNSET,
        "model": _UNSET,
        "log_level": _UNSET,
        "max_turns": _UNSET,
        "color": _UNSET,
        "no_color": _UNSET,
        "width": _UNSET,
        "height": _UNSET,
        "history": _UNSET,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture
def config_home(tmp_path, monkeypatch):
    home = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    return home / "conch"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_no_files(self, tmp_path, config_home):
        assert load_config(tmp_path / "project") == {}

    def test_global_dir_respects_xdg(self, config_home):
        assert global_config_dir() == config_home
        assert default_history_path() == config_home / "history"

    def test_project_overrides_global(self, tmp_path, config_home):
        _write_toml(config_home / "config.toml", 'backend = "anthropic"\nmax_turns = 5\n')
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", "max_turns = 9\n")
        assert load_config(project) == {"backend": "anthropic", "max_turns": 9}

    def test_unknown_key_warns(self, tmp_path, config_home, capsys):
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", 'colour = true\nmodel = "m"\n')
        assert load_config(project) == {"model": "m"}
        assert "unknown config key 'colour'" in capsys.readouterr().err

    def test_type_mismatch(self, tmp_path, config_home):
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", 'max_turns = "ten"\n')
        with pytest.raises(ConfigError, match="'max_turns' expected int, got str"):
            load_config(project)

    def test_bool_is_not_int(self, tmp_path, config_home):
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", "width = true\n")
        with pytest.raises(ConfigError, match="got bool"):
            load_config(project)

    def test_unknown_backend(self, tmp_path, config_home):
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", 'backend = "llama"\n')
        with pytest.raises(ConfigError, match="'backend' must be one of"):
            load_config(project)

    def test_bad_log_level(self, tmp_path, config_home):
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", 'log_level = "loud"\n')
        with pytest.raises(ConfigError, match="unknown log_level"):
            load_config(project)

    def test_negative_max_turns(self, tmp_path, config_home):
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", "max_turns = -1\n")
        with pytest.raises(ConfigError, match=">= 0"):
            load_config(project)

    def test_invalid_toml(self, tmp_path, config_home):
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", "max_turns = \n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(project)

    def test_relative_history_resolved(self, tmp_path, config_home):
        project = tmp_path / "project"
        _write_toml(project / "conch.toml", 'history = "hist/conch"\n')
        config = load_config(project)
        assert config["history"] == str(project.resolve() / "hist" / "conch")


# ---------------------------------------------------------------------------
# Applying to argparse
# ---------------------------------------------------------------------------


class TestApplyConfig:
    def test_defaults_fill_unset(self):
        args = _make_args()
        apply_config_to_args(args, {})
        assert args.backend == "openai"
        assert args.model is None
        assert args.log_level == "info"
        assert args.max_turns == 50
        assert args.color is False and args.no_color is False

    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"model": "gpt-4o", "width": 120})
        assert args.model == "gpt-4o"
        assert args.width == 120

    def test_cli_wins(self):
        args = _make_args(backend="gemini")
        apply_config_to_args(args, {"backend": "anthropic"})
        assert args.backend == "gemini"

    def test_color_false_sets_no_color(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False})
        assert args.color is False
        assert args.no_color is True

    def test_cli_no_color_beats_config_color(self):
        args = _make_args(no_color=True)
        apply_config_to_args(args, {"color": True})
        assert args.no_color is True
        assert args.color is False


class TestGenerateConfig:
    def test_template_is_all_comments(self):
        text = generate_config()
        body = [line for line in text.splitlines() if line.strip()]
        assert all(line.startswith("#") for line in body)
        assert "Global config" in text

    def test_project_template(self):
        assert "<project>/conch.toml" in generate_config(project=True)

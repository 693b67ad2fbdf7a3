from __future__ import annotations

import os

import pytest

from review_rounds.config.loader import clamp_rounds, list_problems, load_problem, load_settings
from review_rounds.core.errors import ConfigError
from review_rounds.core.types import ProbeKind, RunSettings, StreamFormat


class TestClampRounds:
    def test_within_bounds(self):
        assert clamp_rounds(3, RunSettings()) == 3

    def test_out_of_bounds_snaps_to_nearest(self):
        settings = RunSettings()
        assert clamp_rounds(1, settings) == 2
        assert clamp_rounds(0, settings) == 2
        assert clamp_rounds(-5, settings) == 2
        assert clamp_rounds(7, settings) == 6
        assert clamp_rounds(1000, settings) == 6

    def test_missing_or_unparseable_uses_default(self):
        settings = RunSettings()
        assert clamp_rounds(None, settings) == 5
        assert clamp_rounds("", settings) == 5
        assert clamp_rounds("many", settings) == 5

    def test_numeric_strings(self):
        assert clamp_rounds("4", RunSettings()) == 4
        assert clamp_rounds("12", RunSettings()) == 6


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("REVIEW_ROUNDS_"):
            monkeypatch.delenv(key)
    return monkeypatch


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings()
        assert settings.solver.url == "http://localhost:11434"
        assert settings.reviewer.url == "http://localhost:11435"
        assert settings.solver.model == "deepseek-r1:1.5b"
        assert settings.solver.stream_format is StreamFormat.CHAT
        assert (settings.min_rounds, settings.default_rounds, settings.max_rounds) == (2, 5, 6)
        assert settings.score_threshold == 9
        assert settings.port == 5100
        assert settings.cors_origins == ["http://localhost:5173"]

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "model: mistral\n"
            "solver:\n  url: http://gpu-box:11434\n  stream_format: generate\n"
            "reviewer:\n  probe: version\n  model: llama3\n"
            "rounds:\n  min: 1\n  default: 2\n  max: 3\n"
            "score_threshold: 8\n"
            "server:\n  port: 8080\n  cors_origins: [http://example.test]\n"
        )

        settings = load_settings(path)

        assert settings.solver.url == "http://gpu-box:11434"
        assert settings.solver.model == "mistral"
        assert settings.solver.stream_format is StreamFormat.GENERATE
        assert settings.reviewer.url == "http://localhost:11435"
        assert settings.reviewer.model == "llama3"
        assert settings.reviewer.probe is ProbeKind.VERSION
        assert (settings.min_rounds, settings.default_rounds, settings.max_rounds) == (1, 2, 3)
        assert settings.score_threshold == 8
        assert settings.port == 8080
        assert settings.cors_origins == ["http://example.test"]

    def test_env_overrides_file(self, tmp_path, clean_env):
        path = tmp_path / "settings.yaml"
        path.write_text("rounds:\n  max: 4\n  default: 3\nsolver:\n  url: http://gpu-box:11434\n")
        clean_env.setenv("REVIEW_ROUNDS_MODEL", "qwen2.5-coder")
        clean_env.setenv("REVIEW_ROUNDS_REVIEWER__URL", "http://other:11435")
        clean_env.setenv("REVIEW_ROUNDS_SOLVER__MODEL", "codellama")
        clean_env.setenv("REVIEW_ROUNDS_ROUNDS__MAX", "8")
        clean_env.setenv("REVIEW_ROUNDS_STREAM_FORMAT", "generate")

        settings = load_settings(path)

        assert settings.solver.url == "http://gpu-box:11434"
        assert settings.solver.model == "codellama"
        assert settings.reviewer.model == "qwen2.5-coder"
        assert settings.reviewer.url == "http://other:11435"
        assert settings.max_rounds == 8
        assert settings.default_rounds == 3
        assert settings.solver.stream_format is StreamFormat.GENERATE

    def test_single_cors_origin_string(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("server:\n  cors_origins: http://example.test\n")

        assert load_settings(path).cors_origins == ["http://example.test"]

    def test_comma_separated_cors_origins_from_env(self, clean_env):
        clean_env.setenv("REVIEW_ROUNDS_SERVER__CORS_ORIGINS", "http://a.test, http://b.test")

        assert load_settings().cors_origins == ["http://a.test", "http://b.test"]

    def test_invalid_stream_format(self, clean_env):
        clean_env.setenv("REVIEW_ROUNDS_SOLVER__STREAM_FORMAT", "websocket")
        with pytest.raises(ConfigError, match="solver"):
            load_settings()

    def test_inconsistent_round_bounds(self, clean_env):
        clean_env.setenv("REVIEW_ROUNDS_ROUNDS__DEFAULT", "9")
        with pytest.raises(ConfigError, match="min <= default <= max"):
            load_settings()

    def test_threshold_out_of_range(self, clean_env):
        clean_env.setenv("REVIEW_ROUNDS_SCORE_THRESHOLD", "11")
        with pytest.raises(ConfigError, match="score_threshold"):
            load_settings()

    def test_non_integer(self, clean_env):
        clean_env.setenv("REVIEW_ROUNDS_SERVER__PORT", "http")
        with pytest.raises(ConfigError, match="integer"):
            load_settings()

    @pytest.mark.parametrize("body", ["rounds: 3\n", "server: 8080\n", "solver: fast\n"])
    def test_scalar_section_raises_config_error(self, tmp_path, body):
        path = tmp_path / "settings.yaml"
        path.write_text(body)
        with pytest.raises(ConfigError):
            load_settings(path)

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yaml")


class TestProblemPresets:
    def test_list_problems(self):
        names = list_problems()
        assert "reverse_string" in names
        assert names == sorted(names)

    def test_load_problem(self):
        preset = load_problem("reverse_string")
        assert "reverses a string" in preset["problem"]

    def test_unknown_problem(self):
        with pytest.raises(FileNotFoundError, match="Available"):
            load_problem("does_not_exist")

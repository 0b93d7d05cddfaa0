"""Tests for configuration loading and overrides."""

import os
from pathlib import Path

import pytest
import yaml

from classreplay.config import ReplayConfig, write_default_config
from classreplay.errors import ConfigurationError

ENV_VARS = (
    "CLASSREPLAY_VERBOSE",
    "CLASSREPLAY_DONT_NORMALIZE",
    "CLASSREPLAY_CORPUS",
    "CLASSREPLAY_OUT",
    "CLASSREPLAY_DRY_RUN",
    "CLASSREPLAY_DIAGNOSTICS",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Fresh HOME and working directory, no CLASSREPLAY_* variables."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    return home


class TestReplayConfig:
    """Defaults and validation."""

    def test_defaults(self):
        config = ReplayConfig()
        assert config.verbose is False
        assert config.canonicalize is True
        assert config.corpus == ("out",)
        assert config.out_dir == "out"
        assert config.dry_run is False

    def test_empty_corpus_rejected(self):
        with pytest.raises(ConfigurationError, match="corpus"):
            ReplayConfig(corpus=())

    def test_empty_patterns_rejected(self):
        with pytest.raises(ConfigurationError, match="generated_patterns"):
            ReplayConfig(generated_patterns=())

    def test_invalid_pattern_rejected(self):
        with pytest.raises(ConfigurationError, match="Invalid generated_patterns"):
            ReplayConfig(generated_patterns=(r"\$Proxy(?P<ordinal>\d+",))

    def test_pattern_without_ordinal_rejected(self):
        with pytest.raises(ConfigurationError, match="ordinal"):
            ReplayConfig(generated_patterns=(r"\$Proxy\d+$",))

    def test_immutable(self):
        with pytest.raises(AttributeError):
            ReplayConfig().verbose = True


class TestFromDict:
    def test_string_booleans(self):
        config = ReplayConfig.from_dict({"verbose": "false", "dry_run": "true", "dont_normalize": "no"})
        assert config.verbose is False
        assert config.dry_run is True
        assert config.canonicalize is True

    def test_single_pattern_string(self):
        config = ReplayConfig.from_dict({"generated_patterns": r"\$Helper(?P<ordinal>\d+)$"})
        assert config.generated_patterns == (r"\$Helper(?P<ordinal>\d+)$",)

    def test_dont_normalize(self):
        assert ReplayConfig.from_dict({"dont_normalize": True}).canonicalize is False

    def test_corpus_string_split(self):
        config = ReplayConfig.from_dict({"corpus": os.pathsep.join(["a", "b.jar"])})
        assert config.corpus == ("a", "b.jar")

    def test_round_trip(self):
        config = ReplayConfig(verbose=True, canonicalize=False, corpus=("x", "y"), dry_run=True)
        assert ReplayConfig.from_dict(config.to_dict()) == config


class TestFromYaml:
    def test_load(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text(yaml.safe_dump({"verbose": True, "corpus": ["captured"]}))
        config = ReplayConfig.from_yaml(path)
        assert config.verbose is True
        assert config.corpus == ("captured",)
        assert config.source == str(path)

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("")
        assert ReplayConfig.from_yaml(path) == ReplayConfig()

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("corpus: [unterminated")
        with pytest.raises(ConfigurationError, match="Error loading"):
            ReplayConfig.from_yaml(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            ReplayConfig.from_yaml(path)


class TestEnvironment:
    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CLASSREPLAY_VERBOSE", "true")
        monkeypatch.setenv("CLASSREPLAY_DONT_NORMALIZE", "1")
        monkeypatch.setenv("CLASSREPLAY_CORPUS", os.pathsep.join(["a", "b"]))
        monkeypatch.setenv("CLASSREPLAY_OUT", "dump")
        monkeypatch.setenv("CLASSREPLAY_DRY_RUN", "yes")
        monkeypatch.setenv("CLASSREPLAY_DIAGNOSTICS", "events.jsonl")

        config = ReplayConfig().with_env()
        assert config.verbose is True
        assert config.canonicalize is False
        assert config.corpus == ("a", "b")
        assert config.out_dir == "dump"
        assert config.dry_run is True
        assert config.diagnostics_path == "events.jsonl"

    def test_no_overrides_returns_same(self):
        config = ReplayConfig()
        assert config.with_env() is config


class TestLoad:
    """File search order."""

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "explicit.yaml"
        path.write_text("out_dir: explicit\n")
        assert ReplayConfig.load(path).out_dir == "explicit"

    def test_explicit_path_missing(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ReplayConfig.load(tmp_path / "missing.yaml")

    def test_working_directory_first(self, isolated_env):
        Path("classreplay.yaml").write_text("out_dir: local\n")
        config = ReplayConfig.load()
        assert config.out_dir == "local"
        assert config.source == "classreplay.yaml"

    def test_user_file_created_on_first_use(self, isolated_env):
        config = ReplayConfig.load()
        user_file = isolated_env / ".classreplay" / "config.yaml"
        assert user_file.is_file()
        assert config == ReplayConfig()

    def test_nothing_found(self):
        with pytest.raises(ConfigurationError, match="No configuration file"):
            ReplayConfig.load(create_user_file=False)

    def test_env_applied_after_file(self, monkeypatch):
        Path("classreplay.yaml").write_text("verbose: false\n")
        monkeypatch.setenv("CLASSREPLAY_VERBOSE", "true")
        assert ReplayConfig.load().verbose is True


class TestCorpus:
    def test_require_corpus(self, tmp_path):
        present = tmp_path / "present"
        present.mkdir()
        config = ReplayConfig(corpus=(str(present),))
        assert config.require_corpus() == [present]

    def test_require_corpus_missing(self, tmp_path):
        config = ReplayConfig(corpus=(str(tmp_path / "absent"),))
        with pytest.raises(ConfigurationError, match="absent"):
            config.require_corpus()


class TestWriteDefaultConfig:
    def test_write_and_keep(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        assert write_default_config(path) is True
        assert yaml.safe_load(path.read_text())["dont_normalize"] is False

        path.write_text("verbose: true\n")
        assert write_default_config(path) is False
        assert path.read_text() == "verbose: true\n"

        assert write_default_config(path, overwrite=True) is True
        assert ReplayConfig.from_yaml(path) == ReplayConfig()

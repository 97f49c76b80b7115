"""
Tests for run configuration loading and merging.
"""

import pytest

from flowgraph.config import RunConfig, merge_configs


class TestRunConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FLOWGRAPH_ENV", raising=False)
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        config = RunConfig()

        assert config.timeout_ms == 60000
        assert config.node_timeout_ms is None
        assert config.max_retries == 0
        assert config.environment == "development"
        assert config.timeout_seconds == 60.0
        assert config.node_timeout_seconds is None

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RunConfig(max_retries=-1)

    def test_backoff_doubles_and_caps(self):
        config = RunConfig(retry_backoff_ms=100, retry_backoff_max_ms=350)
        assert config.backoff_seconds(1) == 0.1
        assert config.backoff_seconds(2) == 0.2
        assert config.backoff_seconds(3) == 0.35
        assert config.backoff_seconds(10) == 0.35

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWGRAPH_TIMEOUT_MS", "off")
        monkeypatch.setenv("FLOWGRAPH_NODE_TIMEOUT_MS", "250")
        monkeypatch.setenv("FLOWGRAPH_MAX_RETRIES", "3")
        monkeypatch.setenv("FLOWGRAPH_ENV", "staging")
        config = RunConfig.from_env()

        assert config.timeout_ms is None
        assert config.node_timeout_ms == 250
        assert config.max_retries == 3
        assert config.environment == "staging"
        assert config.model_fields_set == {
            "timeout_ms", "node_timeout_ms", "max_retries", "environment",
        }

    def test_from_env_invalid_value(self, monkeypatch):
        monkeypatch.setenv("FLOWGRAPH_MAX_RETRIES", "lots")
        with pytest.raises(ValueError):
            RunConfig.from_env()

    def test_from_yaml_flat(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text("timeout_ms: 1000\nmax_retries: 2\nenvironment: test\n")
        config = RunConfig.from_yaml(path)

        assert config.timeout_ms == 1000
        assert config.max_retries == 2
        assert config.environment == "test"

    def test_from_yaml_nested(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(
            "runtime:\n"
            "  node_timeout_ms: 200\n"
            "  retry_backoff_ms: 5\n"
            "environment:\n"
            "  name: production\n"
        )
        config = RunConfig.from_yaml(path)

        assert config.node_timeout_ms == 200
        assert config.retry_backoff_ms == 5
        assert config.environment == "production"

    def test_from_yaml_empty_runtime_section(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text("runtime:\nenvironment: test\n")
        config = RunConfig.from_yaml(path)

        assert config.max_retries == 0
        assert config.environment == "test"

    def test_from_yaml_rejects_non_mapping(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            RunConfig.from_yaml(path)


class TestMergeConfigs:
    def test_later_explicit_values_win(self):
        merged = merge_configs(
            RunConfig(max_retries=1, timeout_ms=100),
            RunConfig(max_retries=4),
        )
        assert merged.max_retries == 4
        assert merged.timeout_ms == 100

    def test_defaults_do_not_override(self):
        merged = merge_configs(RunConfig(node_timeout_ms=20), RunConfig())
        assert merged.node_timeout_ms == 20

    def test_none_entries_skipped_and_extra_merged(self):
        merged = merge_configs(
            RunConfig(extra={"a": 1, "b": 1}),
            None,
            RunConfig(extra={"b": 2}),
        )
        assert merged.extra == {"a": 1, "b": 2}

    def test_explicit_none_overrides(self):
        merged = merge_configs(RunConfig(timeout_ms=100), RunConfig(timeout_ms=None))
        assert merged.timeout_ms is None

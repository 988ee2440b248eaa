"""Tests for configuration values and option resolution."""

from pathlib import Path

import pytest

from whisperer.config import (
    DEFAULT_RETRY,
    DEFAULT_SAMPLING,
    DEFAULT_TIMEOUTS,
    ServerConfig,
    resolve_history_path,
    resolve_lines,
    resolve_model_path,
    resolve_server_path,
    resolve_server_port,
)


def test_server_config_frozen():
    """ServerConfig instances are immutable."""
    config = ServerConfig(binary_path="server", model_path="model.bin")
    with pytest.raises(AttributeError):
        config.port = 9000  # type: ignore[misc]


def test_server_config_defaults():
    """ServerConfig has the llama.cpp defaults."""
    config = ServerConfig(binary_path="server", model_path="model.bin")
    assert config.port == 3000
    assert config.host == "127.0.0.1"
    assert config.context_size == 2048


def test_server_config_base_url():
    """base_url has no path; endpoints are added by the client."""
    config = ServerConfig(binary_path="server", model_path="model.bin", port=9000)
    assert config.base_url == "http://127.0.0.1:9000"


def test_sampling_defaults():
    assert DEFAULT_SAMPLING.batch_size == 512
    assert DEFAULT_SAMPLING.top_k == 40
    assert DEFAULT_SAMPLING.top_p == 0.9
    assert DEFAULT_SAMPLING.n_keep == 0
    assert DEFAULT_SAMPLING.n_predict == 100
    assert DEFAULT_SAMPLING.threads == 8


def test_polls_have_no_timeout_by_default():
    """A hung server hangs the poll loop rather than failing it."""
    assert DEFAULT_TIMEOUTS.poll is None


def test_retry_is_bounded_by_default():
    assert DEFAULT_RETRY.max_retries > 0
    assert DEFAULT_RETRY.initial_delay <= DEFAULT_RETRY.max_delay


# === resolve_*() ===


def test_resolve_history_path_flag_takes_priority(monkeypatch):
    """CLI flag overrides WHISPERER_HISTORY_PATH env var."""
    monkeypatch.setenv("WHISPERER_HISTORY_PATH", "/from/env")
    assert resolve_history_path("/from/flag") == Path("/from/flag")


def test_resolve_history_path_env_var_fallback(monkeypatch):
    monkeypatch.setenv("WHISPERER_HISTORY_PATH", "/from/env")
    assert resolve_history_path(None) == Path("/from/env")


def test_resolve_history_path_default_is_expanded(monkeypatch):
    """Default path has the tilde expanded."""
    monkeypatch.delenv("WHISPERER_HISTORY_PATH", raising=False)
    resolved = resolve_history_path(None)
    assert "~" not in str(resolved)
    assert resolved.name == "history"


def test_resolve_server_path_env_var_fallback(monkeypatch):
    monkeypatch.setenv("WHISPERER_SERVER_PATH", "/opt/llama/server")
    assert resolve_server_path(None) == "/opt/llama/server"


def test_resolve_model_path_flag(monkeypatch):
    monkeypatch.setenv("WHISPERER_MODEL_PATH", "/from/env.bin")
    assert resolve_model_path("/from/flag.bin") == "/from/flag.bin"


def test_resolve_server_port_default(monkeypatch):
    monkeypatch.delenv("WHISPERER_SERVER_PORT", raising=False)
    assert resolve_server_port(None) == 3000


def test_resolve_server_port_env_var(monkeypatch):
    monkeypatch.setenv("WHISPERER_SERVER_PORT", "4567")
    assert resolve_server_port(None) == 4567
    assert resolve_server_port(8080) == 8080


def test_resolve_server_port_bad_env_var(monkeypatch):
    monkeypatch.setenv("WHISPERER_SERVER_PORT", "not-a-port")
    with pytest.raises(ValueError):
        resolve_server_port(None)


def test_resolve_lines_zero_flag_is_respected(monkeypatch):
    """An explicit 0 is a value, not a missing flag."""
    monkeypatch.setenv("WHISPERER_LINES", "7")
    assert resolve_lines(0) == 0
    assert resolve_lines(None) == 7

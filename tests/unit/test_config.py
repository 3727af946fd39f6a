"""Unit tests for server configuration.

Tests configuration loading, validation, defaults and environment overrides.
"""

from pathlib import Path

import pytest

from vocaline.config import (
    HealthConfig,
    MatchmakingConfig,
    VocalineConfig,
    WebSocketConfig,
)

ENV_VARS = ("PORT", "HOST", "LOG_LEVEL", "MATCH_DELAY_S")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make sure overrides from the host environment don't leak into tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_websocket_config_defaults() -> None:
    """Test WebSocket configuration defaults."""
    config = WebSocketConfig()
    assert config.host == "0.0.0.0"  # noqa: S104
    assert config.port == 8080
    assert config.max_connections == 1000
    assert config.max_message_bytes == 64 * 1024
    assert config.outbound_queue_size == 64


def test_websocket_config_validation() -> None:
    """Test WebSocket configuration validation."""
    # Valid port
    config = WebSocketConfig(port=9000)
    assert config.port == 9000

    # Invalid port (too low)
    with pytest.raises(ValueError):
        WebSocketConfig(port=80)

    # Invalid port (too high)
    with pytest.raises(ValueError):
        WebSocketConfig(port=70000)

    # Keepalive can be disabled but not zeroed
    assert WebSocketConfig(ping_interval_s=None).ping_interval_s is None
    with pytest.raises(ValueError):
        WebSocketConfig(ping_interval_s=0)


def test_matchmaking_config_defaults() -> None:
    """Test matchmaking configuration defaults."""
    config = MatchmakingConfig()
    assert config.match_delay_s == 1.0
    assert config.random_seed is None


def test_matchmaking_config_validation() -> None:
    """Test match delay bounds."""
    assert MatchmakingConfig(match_delay_s=0).match_delay_s == 0

    with pytest.raises(ValueError):
        MatchmakingConfig(match_delay_s=-1)

    with pytest.raises(ValueError):
        MatchmakingConfig(match_delay_s=120)


def test_health_port_defaults_to_websocket_port_plus_one() -> None:
    """Test health port derivation."""
    config = VocalineConfig()
    assert config.health_port == 8081

    config = VocalineConfig(health=HealthConfig(port=9100))
    assert config.health_port == 9100


def test_log_level_validation() -> None:
    """Test log level is validated and normalized."""
    assert VocalineConfig(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValueError, match="log_level must be one of"):
        VocalineConfig(log_level="VERBOSE")


def test_config_from_yaml(tmp_path: Path) -> None:
    """Test loading configuration from YAML."""
    config_file = tmp_path / "vocaline.yaml"
    config_file.write_text(
        """
transport:
  websocket:
    port: 9090
    max_connections: 10
matchmaking:
  match_delay_s: 0.25
  random_seed: 7
health:
  enabled: false
log_level: WARNING
"""
    )

    config = VocalineConfig.from_yaml(config_file)

    assert config.transport.websocket.port == 9090
    assert config.transport.websocket.max_connections == 10
    assert config.matchmaking.match_delay_s == 0.25
    assert config.matchmaking.random_seed == 7
    assert config.health.enabled is False
    assert config.log_level == "WARNING"


def test_config_from_yaml_missing_file(tmp_path: Path) -> None:
    """Test loading from a missing file raises."""
    with pytest.raises(FileNotFoundError):
        VocalineConfig.from_yaml(tmp_path / "missing.yaml")


def test_config_from_yaml_empty_file(tmp_path: Path) -> None:
    """Test an empty YAML file yields defaults."""
    config_file = tmp_path / "empty.yaml"
    config_file.write_text("")

    config = VocalineConfig.from_yaml(config_file)
    assert config.transport.websocket.port == 8080


def test_config_from_yaml_non_mapping(tmp_path: Path) -> None:
    """Test a YAML list at the root is rejected."""
    config_file = tmp_path / "list.yaml"
    config_file.write_text("- a\n- b\n")

    with pytest.raises(ValueError, match="must be a mapping"):
        VocalineConfig.from_yaml(config_file)


def test_config_from_yaml_null_sections(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test sections left empty in YAML are read as defaults, even with overrides."""
    config_file = tmp_path / "vocaline.yaml"
    config_file.write_text("matchmaking:\nhealth:\n")

    config = VocalineConfig.from_yaml(config_file)
    assert config.matchmaking.match_delay_s == 1.0
    assert config.health.enabled is True

    config_file.write_text("transport:\nmatchmaking:\n")
    monkeypatch.setenv("PORT", "9191")
    monkeypatch.setenv("MATCH_DELAY_S", "0.25")

    config = VocalineConfig.from_yaml(config_file)
    assert config.transport.websocket.port == 9191
    assert config.matchmaking.match_delay_s == 0.25

    config_file.write_text("transport:\n  websocket:\n")
    config = VocalineConfig.from_yaml(config_file)
    assert config.transport.websocket.port == 9191


def test_config_from_yaml_non_mapping_section(tmp_path: Path) -> None:
    """Test a scalar where a section belongs is rejected."""
    config_file = tmp_path / "vocaline.yaml"
    config_file.write_text("transport: websocket\n")

    with pytest.raises(ValueError, match="'transport' must be a mapping"):
        VocalineConfig.from_yaml(config_file)


def test_config_from_yaml_with_defaults_missing_file(tmp_path: Path) -> None:
    """Test defaults are used when the file doesn't exist."""
    config = VocalineConfig.from_yaml_with_defaults(tmp_path / "missing.yaml")
    assert config.transport.websocket.port == 8080
    assert config.matchmaking.match_delay_s == 1.0

    config = VocalineConfig.from_yaml_with_defaults(None)
    assert config.log_level == "INFO"


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test environment variables override file values."""
    config_file = tmp_path / "vocaline.yaml"
    config_file.write_text("transport:\n  websocket:\n    port: 9090\n")

    monkeypatch.setenv("PORT", "10000")
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("MATCH_DELAY_S", "0.5")

    config = VocalineConfig.from_yaml(config_file)

    assert config.transport.websocket.port == 10000
    assert config.transport.websocket.host == "127.0.0.1"
    assert config.log_level == "DEBUG"
    assert config.matchmaking.match_delay_s == 0.5
    assert config.health_port == 10001


def test_env_overrides_without_file(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test environment variables apply when running on defaults."""
    monkeypatch.setenv("PORT", "12345")

    config = VocalineConfig.from_yaml_with_defaults(None)
    assert config.transport.websocket.port == 12345


def test_shipped_config_is_valid() -> None:
    """Test the default config file in the repository loads."""
    config_file = Path(__file__).parent.parent.parent / "configs" / "vocaline.yaml"

    config = VocalineConfig.from_yaml(config_file)
    assert config.transport.websocket.port == 8080
    assert config.health.port is None

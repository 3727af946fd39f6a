"""Configuration schema for the matchmaking server.

Defines Pydantic models for loading and validating server configuration
from YAML files and environment variables.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    max_connections: int = Field(default=1000, ge=1, description="Maximum concurrent connections")
    max_message_bytes: int = Field(
        default=64 * 1024,
        ge=1024,
        description="Maximum inbound message size (handshake envelopes are small)",
    )
    outbound_queue_size: int = Field(
        default=64,
        ge=1,
        description="Per-connection outbound envelope buffer; full means not writable",
    )
    ping_interval_s: float | None = Field(
        default=20.0,
        gt=0,
        description="Keepalive ping interval (None disables keepalive)",
    )
    ping_timeout_s: float | None = Field(
        default=20.0,
        gt=0,
        description="Keepalive pong timeout before the connection is considered dead",
    )


class MatchmakingConfig(BaseModel):
    """Matchmaking behaviour configuration."""

    match_delay_s: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Debounce window between join/partner change and the match attempt",
    )
    random_seed: int | None = Field(
        default=None,
        description="Seed for partner selection (None uses system entropy)",
    )


class HealthConfig(BaseModel):
    """Health check / metrics HTTP server configuration."""

    enabled: bool = Field(default=True, description="Enable health check HTTP server")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int | None = Field(
        default=None,
        ge=1024,
        le=65535,
        description="Bind port (defaults to WebSocket port + 1)",
    )


class TransportConfig(BaseModel):
    """Transport layer configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)


class VocalineConfig(BaseModel):
    """Root server configuration."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    matchmaking: MatchmakingConfig = Field(default_factory=MatchmakingConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @property
    def health_port(self) -> int:
        """Port for the health check server."""
        return self.health.port or self.transport.websocket.port + 1

    @classmethod
    def from_yaml(cls, path: Path) -> "VocalineConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(cls._apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "VocalineConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(cls._apply_env_overrides({}))

    @staticmethod
    def _apply_env_overrides(data: dict) -> dict:
        """Apply environment variable overrides to raw config data."""
        import os

        transport = VocalineConfig._section(data, "transport")
        websocket = VocalineConfig._section(transport, "websocket")
        matchmaking = VocalineConfig._section(data, "matchmaking")
        VocalineConfig._section(data, "health")

        # PORT is what hosting platforms inject for the public listener
        if port := os.getenv("PORT"):
            websocket["port"] = int(port)

        if host := os.getenv("HOST"):
            websocket["host"] = host

        if log_level := os.getenv("LOG_LEVEL"):
            data["log_level"] = log_level

        if match_delay := os.getenv("MATCH_DELAY_S"):
            matchmaking["match_delay_s"] = float(match_delay)

        return data

    @staticmethod
    def _section(data: dict, key: str) -> dict:
        """Nested config section, with an empty (``null``) section read as ``{}``.

        Raises:
            ValueError: If the section is present but not a mapping
        """
        section = data.get(key)
        if section is None:
            section = data[key] = {}
        if not isinstance(section, dict):
            raise ValueError(f"Configuration section '{key}' must be a mapping")
        return section

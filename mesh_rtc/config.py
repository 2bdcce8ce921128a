"""Configuration management for mesh-rtc.

This module handles loading configuration from multiple sources with the following priority:
1. CLI arguments (handled by caller)
2. Environment variables (MESH_RTC_HOST, MESH_RTC_PORT, MESH_RTC_ORIGIN,
   MESH_RTC_MAX_PARTICIPANTS, MESH_RTC_SIGNALING_URL)
3. TOML configuration file
4. Default values

Configuration files are loaded from:
- mesh-rtc.toml in current working directory
- ~/.mesh-rtc/config.toml

Environment selection via MESH_RTC_ENV (development, staging, production).
Defaults to production if not set.
"""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from loguru import logger


@dataclass
class IceServerConfig:
    """A STUN/TURN server handed to the transport engine.

    Attributes:
        urls: One or more server URLs (stun:, turn:).
        username: TURN username, if required.
        credential: TURN credential, if required.
    """

    urls: List[str]
    username: Optional[str] = None
    credential: Optional[str] = None

    def __post_init__(self):
        """Validate ICE server configuration after initialization."""
        if isinstance(self.urls, str):
            self.urls = [self.urls]
        if not self.urls:
            raise ValueError("ICE server urls cannot be empty")

    @classmethod
    def from_dict(cls, data: dict) -> "IceServerConfig":
        """Create IceServerConfig from a TOML [[ice_servers]] entry."""
        return cls(
            urls=data.get("urls", []),
            username=data.get("username"),
            credential=data.get("credential"),
        )


# Default relay settings
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3001
DEFAULT_ORIGIN = "http://localhost:5173"
DEFAULT_MAX_PARTICIPANTS = 4
DEFAULT_SIGNALING_URL = "ws://localhost:3001"

DEFAULT_ICE_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
]

# Valid environment names
VALID_ENVIRONMENTS = {"development", "staging", "production"}


class Config:
    """Configuration manager for mesh-rtc."""

    def __init__(self):
        """Initialize configuration with defaults."""
        self.host: str = DEFAULT_HOST
        self.port: int = DEFAULT_PORT
        self.origin: str = DEFAULT_ORIGIN
        self.max_participants: int = DEFAULT_MAX_PARTICIPANTS
        self.signaling_url: str = DEFAULT_SIGNALING_URL
        self.ice_servers: List[IceServerConfig] = [
            IceServerConfig(urls=[url]) for url in DEFAULT_ICE_SERVERS
        ]
        self.environment: str = "production"
        self._config_data: dict = {}

    def load(self) -> None:
        """Load configuration from all sources.

        Priority order:
        1. Environment variables
        2. TOML configuration file
        3. Default values
        """
        self.environment = self._get_environment()

        config_file = self._find_config_file()
        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _get_environment(self) -> str:
        """Get the current environment from MESH_RTC_ENV.

        Returns:
            Environment name (development, staging, or production).
            Defaults to production if not set or invalid.
        """
        env = os.getenv("MESH_RTC_ENV", "production").lower()
        if env not in VALID_ENVIRONMENTS:
            logger.warning(
                f"Invalid MESH_RTC_ENV value '{env}'. "
                f"Valid values are: {', '.join(sorted(VALID_ENVIRONMENTS))}. "
                f"Defaulting to 'production'."
            )
            env = "production"
        return env

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file.

        Searches in order:
        1. mesh-rtc.toml in current working directory
        2. ~/.mesh-rtc/config.toml

        Returns:
            Path to config file if found, None otherwise.
        """
        cwd_config = Path.cwd() / "mesh-rtc.toml"
        if cwd_config.exists():
            logger.info(f"Loading config from {cwd_config}")
            return cwd_config

        home_config = Path.home() / ".mesh-rtc" / "config.toml"
        if home_config.exists():
            logger.info(f"Loading config from {home_config}")
            return home_config

        logger.debug("No config file found, using defaults")
        return None

    def _load_config_file(self, config_file: Path) -> None:
        """Load configuration from TOML file.

        Args:
            config_file: Path to the TOML configuration file.
        """
        try:
            with open(config_file, "rb") as f:
                self._config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(
                f"Failed to load config file {config_file}: {e}. Using defaults."
            )
            return

        ice_entries = self._config_data.get("ice_servers")
        if ice_entries:
            servers = []
            for entry in ice_entries:
                try:
                    servers.append(IceServerConfig.from_dict(entry))
                except ValueError as e:
                    logger.warning(f"Skipping invalid ICE server entry: {e}")
            if servers:
                self.ice_servers = servers

        environments = self._config_data.get("environments", {})
        env_config = environments.get(self.environment, {})

        if not env_config:
            logger.debug(
                f"No configuration found for environment '{self.environment}' "
                f"in {config_file}, using defaults"
            )
            return

        if "host" in env_config:
            self.host = env_config["host"]
        if "port" in env_config:
            self.port = self._parse_int("port", env_config["port"], self.port)
        if "origin" in env_config:
            self.origin = env_config["origin"]
        if "max_participants" in env_config:
            self.max_participants = self._parse_int(
                "max_participants",
                env_config["max_participants"],
                self.max_participants,
            )
        if "signaling_url" in env_config:
            self.signaling_url = env_config["signaling_url"]
        logger.debug(f"Loaded '{self.environment}' settings from {config_file}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        Environment variables take precedence over config file settings
        but are overridden by CLI arguments (handled by caller).
        """
        host = os.getenv("MESH_RTC_HOST")
        if host:
            self.host = host
            logger.info(f"Overriding host from env: {self.host}")

        port = os.getenv("MESH_RTC_PORT")
        if port:
            self.port = self._parse_int("MESH_RTC_PORT", port, self.port)

        origin = os.getenv("MESH_RTC_ORIGIN")
        if origin:
            self.origin = origin
            logger.info(f"Overriding origin from env: {self.origin}")

        max_participants = os.getenv("MESH_RTC_MAX_PARTICIPANTS")
        if max_participants:
            self.max_participants = self._parse_int(
                "MESH_RTC_MAX_PARTICIPANTS", max_participants, self.max_participants
            )

        signaling_url = os.getenv("MESH_RTC_SIGNALING_URL")
        if signaling_url:
            self.signaling_url = signaling_url
            logger.info(f"Overriding signaling_url from env: {self.signaling_url}")

    @staticmethod
    def _parse_int(name: str, value, default: int) -> int:
        """Parse a positive integer setting, keeping the default on bad input."""
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {name}: {value!r}. Keeping {default}.")
            return default
        if parsed < 1:
            logger.warning(f"{name} must be positive, got {parsed}. Keeping {default}.")
            return default
        return parsed

    def get_allowed_origins(self) -> Optional[List[str]]:
        """Get the origins accepted by the relay's websocket handshake.

        Returns:
            List of allowed origins, or None when any origin is accepted.
        """
        if not self.origin or self.origin == "*":
            return None
        return [o.strip() for o in self.origin.split(",") if o.strip()]


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads configuration on first call.

    Returns:
        Global Config instance.
    """
    global _config
    if _config is None:
        _config = Config()
        _config.load()
    return _config


def reload_config() -> Config:
    """Reload configuration from sources.

    Useful for testing or runtime reconfiguration.

    Returns:
        Reloaded Config instance.
    """
    global _config
    _config = Config()
    _config.load()
    return _config

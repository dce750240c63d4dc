"""
Configuration management for the messages_gateway package.
This module handles config file loading, provider settings, and logging setup.
"""

import logging
import os
from collections.abc import AsyncIterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml

from .providers import BaseProvider, get_provider
from .streaming import StreamState, transcode_stream

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "messages-gateway"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_MAX_CONSECUTIVE_ERRORS = 5

# Default config.yaml template
DEFAULT_CONFIG_TEMPLATE = """# Messages Gateway configuration
# Environment variables take precedence over values in this file.
#
# log_level: DEBUG | INFO | WARNING | ERROR   (env: LOG_LEVEL)
# log_file_path: optional rotating log file    (env: LOG_FILE_PATH)
#
# providers:
#   nvidia:
#     api_base: https://integrate.api.nvidia.com/v1   (env: NVIDIA_API_BASE)
#     api_key: nvapi-...                               (env: NVIDIA_API_KEY)
#     max_consecutive_errors: 5
log_level: WARNING
providers:
  nvidia:
    api_base: https://integrate.api.nvidia.com/v1
"""


def load_config_file(config_path: Path | None = None) -> dict:
    """Load the YAML config file, returning an empty dict if it does not exist.

    Args:
        config_path: Path to config.yaml. If None, uses GATEWAY_CONFIG_FILE or the default location.

    Returns:
        Parsed configuration dictionary
    """
    if config_path is None:
        config_path = Path(os.environ.get("GATEWAY_CONFIG_FILE", str(DEFAULT_CONFIG_FILE)))

    config_path = Path(config_path).expanduser()
    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return {}

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Error loading {config_path}: {e}")
        raise

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping, got {type(data).__name__}")
    return data


def write_default_config(config_path: Path = DEFAULT_CONFIG_FILE) -> Path:
    """Create the config file from the template if it does not exist yet."""
    config_path = Path(config_path).expanduser()
    if config_path.exists():
        return config_path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    logger.info(f"Created default config at {config_path}")
    return config_path


class Config:
    """Gateway transcoder configuration"""

    def __init__(self, config_path: Path | None = None):
        file_config = load_config_file(config_path)
        self.config_file = config_path

        # Priority: env var > config file > default
        self.log_level = os.environ.get("LOG_LEVEL", file_config.get("log_level", DEFAULT_LOG_LEVEL))

        log_path = os.environ.get("LOG_FILE_PATH", file_config.get("log_file_path"))
        self.log_file_path = Path(log_path).expanduser() if log_path else None

        self.providers: dict[str, dict] = {}
        for name, settings in (file_config.get("providers") or {}).items():
            self.providers[name] = dict(settings or {})

        # Per-vendor env overrides, e.g. NVIDIA_API_KEY / NVIDIA_API_BASE
        for name in set(self.providers) | {"nvidia"}:
            prefix = name.upper().replace("-", "_")
            settings = self.providers.setdefault(name, {})
            if f"{prefix}_API_KEY" in os.environ:
                settings["api_key"] = os.environ[f"{prefix}_API_KEY"]
            if f"{prefix}_API_BASE" in os.environ:
                settings["api_base"] = os.environ[f"{prefix}_API_BASE"]

    def provider_settings(self, name: str) -> dict:
        return self.providers.get(name, {})

    def max_consecutive_errors(self, name: str) -> int:
        value = self.provider_settings(name).get("max_consecutive_errors", DEFAULT_MAX_CONSECUTIVE_ERRORS)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(
                f"Invalid max_consecutive_errors '{value}' for {name}, using {DEFAULT_MAX_CONSECUTIVE_ERRORS}"
            )
            return DEFAULT_MAX_CONSECUTIVE_ERRORS

    def build_provider(self, name: str) -> BaseProvider:
        """Create a provider with its configured endpoint and credential."""
        settings = self.provider_settings(name)
        return get_provider(
            name,
            api_key=settings.get("api_key"),
            api_base=settings.get("api_base"),
        )

    def transcode_stream(
        self,
        provider: BaseProvider,
        lines: AsyncIterator[bytes | str],
        state: StreamState | None = None,
    ) -> AsyncIterator[bytes]:
        """
        Run the stream driver with the provider's configured error limit.

        Args:
            provider: Provider built by ``build_provider``
            lines: Async iterator of raw vendor SSE lines
            state: Connection state; a fresh one is created when omitted

        Returns:
            Async iterator of canonical SSE byte blocks
        """
        return transcode_stream(
            provider,
            lines,
            state,
            max_consecutive_errors=self.max_consecutive_errors(provider.name),
        )


def setup_logging(config: Config) -> None:
    """Setup logging configuration to be idempotent."""
    root_logger = logging.getLogger()
    log_level_str = str(config.log_level).upper()
    log_level = getattr(logging, log_level_str, None)
    if not isinstance(log_level, int):
        logger.warning(f"Invalid log level: {log_level_str}, using INFO")
        log_level = logging.INFO

    root_logger.setLevel(log_level)

    # Reduce noise from HTTP client libraries used by the transport layer
    noisy_level = logging.INFO if log_level <= logging.DEBUG else logging.WARNING
    logging.getLogger("openai").setLevel(noisy_level)
    logging.getLogger("httpx").setLevel(noisy_level)

    # Only add handlers if they don't exist yet
    if root_logger.hasHandlers():
        return

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if config.log_file_path:
        config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        # Rotating file handler with 2MB max size and 1 backup log
        file_handler = RotatingFileHandler(
            config.log_file_path,
            mode="a",
            maxBytes=2 * 1024 * 1024,
            backupCount=1,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logger.info("✅ Logging configured for messages gateway.")

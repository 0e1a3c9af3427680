"""
Configuration management for ffjob.

Reads configuration from an optional .env file and environment variables with
sensible defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Default .env file location
DEFAULT_ENV_FILE = Path("ffjob.env")

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

logger = logging.getLogger(__name__)


def _load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("FFJOB_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _get_float(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be a number)")


def _get_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


@dataclass
class FFJobConfig:
    """ffjob configuration loaded from .env file and environment variables."""

    # Executables
    binary: str = "ffmpeg"
    binary_probe: str = "ffprobe"

    # Progress reporting
    progress_period: float = 1.0  # seconds, passed as -stats_period
    listener_host: str = "localhost"

    # Diagnostics kept for JobError
    stderr_lines: int = 10

    # Cancellation: seconds between SIGTERM and SIGKILL
    kill_grace: float = 2.0

    # Logging
    log_level: str = "INFO"

    @classmethod
    def load_config(cls) -> "FFJobConfig":
        """
        Load configuration from environment variables.

        Returns:
            FFJobConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        config = cls(
            binary=os.getenv("FFJOB_FFMPEG_BIN", "ffmpeg"),
            binary_probe=os.getenv("FFJOB_FFPROBE_BIN", "ffprobe"),
            progress_period=_get_float("FFJOB_PROGRESS_PERIOD", "1.0"),
            listener_host=os.getenv("FFJOB_LISTENER_HOST", "localhost"),
            stderr_lines=_get_int("FFJOB_STDERR_LINES", "10"),
            kill_grace=_get_float("FFJOB_KILL_GRACE", "2.0"),
            log_level=os.getenv("FFJOB_LOG_LEVEL", "INFO"),
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.binary:
            raise ValueError("Invalid FFJOB_FFMPEG_BIN: must not be empty")

        if not self.binary_probe:
            raise ValueError("Invalid FFJOB_FFPROBE_BIN: must not be empty")

        if self.progress_period <= 0:
            raise ValueError(f"Invalid progress period: {self.progress_period} (must be > 0)")

        if self.stderr_lines <= 0:
            raise ValueError(f"Invalid stderr lines: {self.stderr_lines} (must be > 0)")

        if self.kill_grace < 0:
            raise ValueError(f"Invalid kill grace: {self.kill_grace} (must be >= 0)")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(VALID_LOG_LEVELS)})"
            )


def load_config() -> FFJobConfig:
    """
    Load and validate ffjob configuration from environment variables.

    Returns:
        FFJobConfig instance with loaded and validated values

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return FFJobConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise

"""Configuration management for declreaper.

Loads environment variables (optionally from a ``.env`` file) and provides
centralized config access. Command-line flags override these values.
"""
import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

__version__ = "1.0.0"

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _split_list(raw: Optional[str]) -> List[str]:
    """Split a comma or whitespace separated environment value."""
    if not raw:
        return []
    return [item for item in raw.replace(",", " ").split() if item]


class Config:
    """Configuration loader with environment variable support."""

    def __init__(self, env_path: Optional[Path] = None):
        """Initialize config by loading a .env file.

        Args:
            env_path: Explicit .env location; defaults to ``.env`` in the
                      current working directory. Variables already set in
                      the environment win over the file.
        """
        load_dotenv(env_path or Path.cwd() / ".env")

    def _flag(self, key: str) -> bool:
        """Read a boolean environment variable.

        Raises:
            ValueError: If the value is not a recognised boolean
        """
        raw = os.getenv(key, "").strip().lower()
        if raw in TRUE_VALUES:
            return True
        if raw in FALSE_VALUES:
            return False
        raise ValueError(f"{key} must be a boolean, got {raw!r}")

    @property
    def all_at_once(self) -> bool:
        """Collapse every candidate into a single instance (REAPER_ALL_AT_ONCE)."""
        return self._flag("REAPER_ALL_AT_ONCE")

    @property
    def retain_external(self) -> bool:
        """Treat externally visible function definitions as required output.

        Returns:
            Value of REAPER_RETAIN_EXTERNAL, False when unset
        """
        return self._flag("REAPER_RETAIN_EXTERNAL")

    @property
    def required_names(self) -> List[str]:
        """Declaration names that must never be removed (REAPER_REQUIRED_NAMES)."""
        return _split_list(os.getenv("REAPER_REQUIRED_NAMES"))

    @property
    def protected_patterns(self) -> List[str]:
        """fnmatch patterns of origin files whose text is protected.

        Returns:
            Patterns from REAPER_PROTECTED_FILES
        """
        return _split_list(os.getenv("REAPER_PROTECTED_FILES"))

    @property
    def log_level(self) -> int:
        """Get logging level from environment with fallback.

        Returns:
            ``logging`` level number (WARNING when unset)

        Raises:
            ValueError: If REAPER_LOG_LEVEL names an unknown level
        """
        name = os.getenv("REAPER_LOG_LEVEL", "WARNING").strip().upper()
        if name not in LOG_LEVELS:
            raise ValueError(
                f"REAPER_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {name!r}"
            )
        return getattr(logging, name)


# Singleton instance
_config = None


def get_config() -> Config:
    """Get or create singleton Config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config():
    """Drop the cached Config so the next get_config() re-reads the environment."""
    global _config
    _config = None

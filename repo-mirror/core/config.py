"""Configuration for the repository mirror."""

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class MirrorConfig:
    """Configuration for cloning, refreshing and searching the mirror."""

    def __init__(self) -> None:
        """Initialize mirror configuration from environment variables."""
        self.repository_url = self._get_required_env("REPOSITORY_URL")
        self.context_file = os.getenv("CONTEXT_FILE", "LLMS.md")

        # Refresh loop
        self.refresh_interval = self._get_float("REFRESH_INTERVAL_SECONDS", 900.0)
        self.retry_backoff = self._get_float("PULL_RETRY_BACKOFF_SECONDS", 30.0)

        # External tools
        self.git_path = os.getenv("GIT_PATH", "git")
        self.clone_depth = self._get_optional_int("CLONE_DEPTH")
        self.rg_path = os.getenv("RG_PATH", "rg")
        self.search_context_lines = self._get_optional_int("SEARCH_CONTEXT_LINES")
        if self.search_context_lines is None:
            self.search_context_lines = 3
        # 0 means no cap
        self.search_max_per_file = self._get_optional_int("SEARCH_MAX_PER_FILE") or None

    @staticmethod
    def _get_required_env(key: str) -> str:
        """Get required environment variable or raise descriptive error."""
        value = os.getenv(key)
        if not value:
            raise ValueError(f"Required environment variable {key} is not set")
        return value

    @staticmethod
    def _get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        if not value:
            return default
        try:
            result = float(value)
        except ValueError:
            raise ValueError(f"Environment variable {key} must be a number, got {value!r}")
        if result <= 0:
            raise ValueError(f"Environment variable {key} must be positive, got {value!r}")
        return result

    @staticmethod
    def _get_optional_int(key: str) -> Optional[int]:
        value = os.getenv(key)
        if not value:
            return None
        try:
            result = int(value)
        except ValueError:
            raise ValueError(f"Environment variable {key} must be an integer, got {value!r}")
        if result < 0:
            raise ValueError(f"Environment variable {key} must not be negative, got {value!r}")
        return result

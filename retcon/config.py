"""retcon configuration.

Settings come from three layers, later layers winning:

1. Defaults on :class:`RetconSettings`.
2. ``RETCON_*`` environment variables (and a local ``.env`` file).
3. The ``[retcon]`` table of ``<repo>/.retcon.toml``.

CLI flags are applied on top by the commands themselves.

Example ``.retcon.toml``::

    [retcon]
    history_limit = 200
    sync_author_to_committer = false
"""
from __future__ import annotations

import logging
import pathlib
import tomllib
from functools import lru_cache

from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_CONFIG_FILENAME = ".retcon.toml"
_CONFIG_TABLE = "retcon"


class RetconSettings(BaseSettings):
    """Runtime configuration for the retcon engine and CLI."""

    model_config = SettingsConfigDict(
        env_prefix="RETCON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    history_limit: int = 50
    # Editing an author field also updates the matching committer field
    # unless the committer field carries its own override.
    sync_author_to_committer: bool = True
    backup_ref_prefix: str = "refs/original/refs/heads/"
    stash_message: str = "retcon: auto-stash before history rewrite"
    debug: bool = False

    @field_validator("history_limit")
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("history_limit must be at least 1")
        return value

    @field_validator("backup_ref_prefix")
    @classmethod
    def _ref_prefix(cls, value: str) -> str:
        if not value.startswith("refs/"):
            raise ValueError("backup_ref_prefix must start with 'refs/'")
        return value if value.endswith("/") else value + "/"

    def backup_ref_for(self, branch: str) -> str:
        """Full backup ref name for *branch*, e.g. ``refs/original/refs/heads/main``."""
        return f"{self.backup_ref_prefix}{branch}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _config_path(repo_root: pathlib.Path) -> pathlib.Path:
    return repo_root.resolve() / _CONFIG_FILENAME


def _load_repo_overrides(config_path: pathlib.Path) -> dict[str, object]:
    """Return the ``[retcon]`` table, or an empty dict if absent or unreadable."""
    if not config_path.is_file():
        return {}
    try:
        with config_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("⚠️ Failed to parse %s: %s", config_path, exc)
        return {}
    table = data.get(_CONFIG_TABLE, {})
    if not isinstance(table, dict):
        logger.warning("⚠️ [%s] in %s is not a table — ignored", _CONFIG_TABLE, config_path)
        return {}
    return table


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@lru_cache()
def get_settings() -> RetconSettings:
    """Get cached environment-level settings."""
    return RetconSettings()


def load_settings(repo_root: pathlib.Path | None = None) -> RetconSettings:
    """Environment settings overlaid with ``<repo_root>/.retcon.toml``.

    Unknown keys in the file are ignored; invalid values are logged and the
    environment-level settings are returned unchanged.
    """
    base = get_settings()
    if repo_root is None:
        return base

    config_path = _config_path(repo_root)
    overrides = _load_repo_overrides(config_path)
    known = {k: v for k, v in overrides.items() if k in RetconSettings.model_fields}
    if not known:
        return base
    try:
        merged = RetconSettings(**{**base.model_dump(), **known})
    except PydanticValidationError as exc:
        logger.warning("⚠️ Ignoring invalid settings in %s: %s", config_path, exc)
        return base
    logger.debug("✅ Loaded %d setting(s) from %s", len(known), config_path)
    return merged

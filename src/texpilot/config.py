"""Runtime settings for texpilot.

Values come from environment variables prefixed with ``TEXPILOT_`` and,
with lower priority, from an optional ``.texpilot.json`` file at the
workspace root.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from texpilot.models import Engine

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".texpilot.json"


class Settings(BaseSettings):
    """Environment-driven configuration for compile policy and timeouts."""

    model_config = SettingsConfigDict(
        env_prefix="TEXPILOT_",
        case_sensitive=False,
        extra="ignore",
        json_file=None,
    )

    workspace_root: Optional[Path] = Field(
        None,
        description="When set, every path handled by texpilot must live under this directory.",
    )
    allow_shell_escape: bool = Field(
        False,
        description="Permit -shell-escape; requests asking for it are downgraded otherwise.",
    )
    default_engine: Engine = "pdflatex"
    watch_buffer_lines: int = Field(2000, gt=0)
    compile_timeout: float = Field(120.0, gt=0)
    pass_timeout: float = Field(90.0, gt=0)
    clean_timeout: float = Field(30.0, gt=0)
    lint_workers: int = Field(4, ge=1)

    @field_validator("workspace_root")
    @classmethod
    def _resolve_root(cls, value: Optional[Path]) -> Optional[Path]:
        return value.expanduser().resolve() if value is not None else None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Earlier sources win: environment over the workspace JSON file.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def _workspace_settings(config_file: Path) -> type[Settings]:
    """Settings class that also reads ``config_file``."""

    class WorkspaceSettings(Settings):
        model_config = SettingsConfigDict(json_file=config_file)

    return WorkspaceSettings


_cache: Optional[Settings] = None


def load_settings(workspace: Optional[Path] = None) -> Settings:
    """Load settings once and cache them.

    Args:
        workspace: Directory searched for ``.texpilot.json``. Defaults to the
            configured workspace root, then the current directory.

    Returns:
        The merged settings; environment variables win over file values.
    """
    global _cache
    if _cache is not None:
        return _cache

    from_env = Settings()
    config_file = Path(workspace or from_env.workspace_root or Path.cwd()) / CONFIG_FILENAME
    if config_file.is_file():
        try:
            _cache = _workspace_settings(config_file)()
        except (ValueError, TypeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            _cache = from_env
    else:
        _cache = from_env
    logger.debug("Loaded settings: %s", _cache.model_dump())
    return _cache


def reload_settings(workspace: Optional[Path] = None) -> Settings:
    """Drop the cached settings and load them again."""
    global _cache
    _cache = None
    return load_settings(workspace)

"""
Configuration data models for tbd.

These models define the structure of .tbd/config.yml and
~/.config/tbd/config.yml, with validation and type safety via Pydantic.
"""

import re

from pydantic import BaseModel, Field, field_validator

# Restricted so names can never be read as git options or shell syntax
_BRANCH_NAME_RE = re.compile(r"^[a-zA-Z0-9._/-]+$")
_REMOTE_NAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")


class SyncConfig(BaseModel):
    """
    Where and how records are synchronized.
    """

    branch: str = Field(
        default="tbd-sync",
        min_length=1,
        max_length=255,
        description="Name of the sync branch (never checked out)",
    )
    remote: str = Field(
        default="origin",
        min_length=1,
        max_length=255,
        description="Name of the git remote to sync with",
    )
    max_push_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Push attempts before giving up on non-fast-forward rejections",
    )

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        """Only allow alphanumerics, dots, underscores, hyphens and slashes."""
        if not _BRANCH_NAME_RE.match(v) or v.startswith("-"):
            raise ValueError(
                "Invalid branch name: only alphanumeric, dots, underscores, "
                "hyphens, and slashes allowed"
            )
        return v

    @field_validator("remote")
    @classmethod
    def validate_remote(cls, v: str) -> str:
        """Only allow alphanumerics, dots, underscores and hyphens."""
        if not _REMOTE_NAME_RE.match(v) or v.startswith("-"):
            raise ValueError(
                "Invalid remote name: only alphanumeric, dots, underscores, "
                "and hyphens allowed"
            )
        return v


class DisplayConfig(BaseModel):
    """How ids are shown to people."""

    id_prefix: str = Field(
        default="bd",
        pattern=r"^[a-z]+$",
        description="Prefix for display ids (bd-a7k2)",
    )


class TbdConfig(BaseModel):
    """
    Project configuration stored in .tbd/config.yml.

    Example:
        >>> config = TbdConfig()
        >>> config.sync.branch
        'tbd-sync'
        >>> config.display.id_prefix
        'bd'
    """

    tbd_version: str = Field(default="0.3.0-dev", description="Version that wrote the file")
    sync: SyncConfig = Field(default_factory=SyncConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)

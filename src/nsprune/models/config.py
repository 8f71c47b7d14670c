"""Configuration model for nsprune.

PruneConfig holds the settings of one prune run: where repositories live,
which storage backend to use, and how lock contention is retried.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field

HOME_ENV_VAR = "RAD_HOME"
DEFAULT_HOME_DIRNAME = ".radicle"
STORAGE_DIRNAME = "storage"

Backend = Literal["auto", "sqlite", "git"]


def default_home(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Resolve the node home directory from ``RAD_HOME`` or ``~/.radicle``."""
    env = os.environ if environ is None else environ
    value = env.get(HOME_ENV_VAR)
    if value:
        return Path(value).expanduser()
    return Path.home() / DEFAULT_HOME_DIRNAME


class PruneConfig(BaseModel):
    """Per-run configuration."""

    home: Path = Field(default_factory=default_home)
    backend: Backend = "auto"
    lock_retries: int = Field(default=1, ge=1)  # total attempts per operation
    lock_wait_max: float = Field(default=2.0, ge=0.0)  # seconds
    dry_run: bool = False

    @property
    def storage_root(self) -> Path:
        """Directory under which every repository is stored."""
        return self.home / STORAGE_DIRNAME

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, **overrides: object
    ) -> PruneConfig:
        """Build a config whose home comes from the environment."""
        values: dict[str, object] = {"home": default_home(environ)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

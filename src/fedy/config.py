"""Configuration defaults and env vars for FEDY."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


VERSION = "0.3.0"

DEFAULT_PLAN_DIR = ".fedy"


@dataclass
class Config:
    """Runtime configuration — mirrors the CLI flags."""

    # Storage
    plan_dir: str = ""
    lock_timeout: float = 5.0
    lock_poll_interval: float = 0.05

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.plan_dir:
            self.plan_dir = os.environ.get("FEDY_PLAN_DIR") or DEFAULT_PLAN_DIR
        env_timeout = os.environ.get("FEDY_LOCK_TIMEOUT")
        if env_timeout:
            try:
                self.lock_timeout = float(env_timeout)
            except ValueError:
                raise ValueError(f"FEDY_LOCK_TIMEOUT must be a number, got {env_timeout!r}") from None
        if self.lock_timeout < 0:
            raise ValueError("lock_timeout cannot be negative")

    @property
    def plan_path(self) -> Path:
        return Path(self.plan_dir)

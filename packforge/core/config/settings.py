"""
Settings — tool-level configuration (not per-project).

Sources, lowest to highest precedence:

    1. defaults
    2. settings file (``packforge.yml`` in the working directory, or --config)
    3. environment variables

Environment variables:

    PACKFORGE_SECURE_STORE   secure store root directory
    PACKFORGE_MAX_WORKERS    concurrent format providers per run
    PACKFORGE_AUDIT          write the run ledger (true/false)

Example settings file:

    secure_store: ~/.packforge/secure-store
    max_workers: 4
    audit: true
    agents:
      macos:
        name: mac-builder
        capabilities:
          mac.remote.sshHost: mac-builder.internal
          mac.remote.sshUser: ci
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, Field, ValidationError

from packforge.core.config.loader import ConfigError, read_document
from packforge.core.models.packaging import PackagingPlatform, is_true

logger = logging.getLogger(__name__)

SETTINGS_FILE = "packforge.yml"
DEFAULT_SECURE_STORE = "~/.packforge/secure-store"


class AgentSettings(BaseModel):
    name: str
    capabilities: dict[str, str] = Field(default_factory=dict)


class Settings(BaseModel):
    secure_store: str = DEFAULT_SECURE_STORE
    max_workers: int = Field(default=4, ge=1)
    audit: bool = True
    agents: dict[PackagingPlatform, AgentSettings] = Field(default_factory=dict)

    @property
    def secure_store_path(self) -> Path:
        return Path(self.secure_store).expanduser()


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from file and environment.

    Raises:
        ConfigError: If an explicit settings file is invalid.
    """
    env = os.environ if environ is None else environ
    data: dict = {}

    if path is None:
        default = Path.cwd() / SETTINGS_FILE
        if default.is_file():
            path = default
    if path is not None:
        logger.debug("Loading settings from %s", path)
        data = read_document(path)

    if env.get("PACKFORGE_SECURE_STORE"):
        data["secure_store"] = env["PACKFORGE_SECURE_STORE"]
    if env.get("PACKFORGE_MAX_WORKERS"):
        data["max_workers"] = env["PACKFORGE_MAX_WORKERS"]
    if env.get("PACKFORGE_AUDIT"):
        data["audit"] = is_true(env["PACKFORGE_AUDIT"])

    agents = data.get("agents") or {}
    if isinstance(agents, dict):
        try:
            data["agents"] = {PackagingPlatform.parse(str(k)): v for k, v in agents.items()}
        except ValueError as e:
            raise ConfigError(f"Unknown platform in agents: {e}") from e

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e

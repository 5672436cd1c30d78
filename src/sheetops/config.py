"""Runtime configuration: ``sheetops.yaml`` plus ``SHEETOPS_*`` environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel

from sheetops.io.fileops import read_text_safe

CONFIG_FILENAME = "sheetops.yaml"
ENV_PREFIX = "SHEETOPS_"
_TRUTHY = {"1", "true", "yes", "on"}


class SheetOpsConfig(BaseModel):
    broker_url: str = "https://backend.composio.dev"
    broker_api_key: str = ""
    agent_url: str = ""
    agent_api_key: str = ""
    user_id: str = "anonymous"
    app_name: str = "googlesheets"
    default_tab: str = "Sheet1"
    default_range: str = "A1:Z1000"
    timeout_seconds: float = 30.0
    auth_mode: Literal["oauth", "service"] = "oauth"
    events: bool = False
    workbook_root: str | None = None

    @classmethod
    def load(cls, path: str | Path) -> "SheetOpsConfig":
        """Load config from a YAML file (no environment overrides)."""
        data = yaml.safe_load(read_text_safe(path)) or {}
        return cls.model_validate(data)


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name, field in SheetOpsConfig.model_fields.items():
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        if field.annotation is bool:
            overrides[name] = raw.strip().lower() in _TRUTHY
        else:
            overrides[name] = raw
    return overrides


def load_config(
    directory: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> SheetOpsConfig:
    """Read ``sheetops.yaml`` from ``directory`` (default cwd) if present, then apply env vars.

    Raises pydantic.ValidationError for values of the wrong type.
    """
    env = os.environ if env is None else env
    path = Path(directory or Path.cwd()) / CONFIG_FILENAME
    data: dict[str, Any] = {}
    if path.exists():
        data = yaml.safe_load(read_text_safe(path)) or {}
    data.update(_env_overrides(env))
    return SheetOpsConfig.model_validate(data)

"""Engine configuration: merge policies and logging settings.

Settings come from an optional YAML file, then environment overrides.
"""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from api_consolidator.errors import ConsolidatorError

DEFAULT_OPENAPI_VERSION = "3.0.3"
DEFAULT_VERSION = "1.0.0"
DEFAULT_SPEC_NAME = "unified-api"

ENV_LOG_LEVEL = "API_CONSOLIDATOR_LOG_LEVEL"
ENV_JSON_LOGS = "API_CONSOLIDATOR_JSON_LOGS"


class MergePolicy(BaseModel):
    """Explicit precedence rules for every last-write-wins decision."""

    # status code present in both operations
    response_collision: Literal["first", "last"] = "last"
    # same property in two same-named object schemas
    schema_property_collision: Literal["first", "last"] = "last"
    # same request body property, source tracking disabled
    untracked_property_collision: Literal["first", "last"] = "last"
    # document a "#/" ref inside an inlined sibling subtree is looked up in
    local_ref_scope: Literal["main", "current"] = "main"
    max_ref_depth: int = Field(default=64, ge=1)
    keep_cyclic_refs: bool = False


class Settings(BaseModel):
    policy: MergePolicy = Field(default_factory=MergePolicy)
    log_level: str = "INFO"
    json_logs: bool = False


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from a YAML file (if given) and apply env overrides."""
    data: dict = {}
    if path is not None:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConsolidatorError(f"Invalid config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConsolidatorError(f"Config file {path} must contain a mapping")

    level = os.getenv(ENV_LOG_LEVEL)
    if level:
        data["log_level"] = level
    json_logs = os.getenv(ENV_JSON_LOGS)
    if json_logs:
        data["json_logs"] = json_logs.lower() in ("1", "true", "yes")

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConsolidatorError(f"Invalid settings: {e}") from e

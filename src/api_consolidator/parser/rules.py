"""Rule file loader.

A rule file is YAML or JSON with two optional top-level lists::

    consolidations:      # 2-to-1 rules
      - endpoint1Ref: "0:get:/users/{id}"
        endpoint2Ref: {apiIndex: 1, opIndex: 0}
        path: /api/user-profile/{id}
        method: get
    aggregations:        # N-to-1 mappings
      - name: dashboard
        sourceEndpoints: ["0:get:/users", "1:get:/orders"]
        consolidatedPath: /api/dashboard
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from api_consolidator.errors import RuleFileError

from .base import AggregationMapping, ConsolidationRule


class RuleSet(BaseModel):
    consolidations: list[ConsolidationRule] = Field(default_factory=list)
    aggregations: list[AggregationMapping] = Field(default_factory=list)


def load_rules(file_path: Path) -> RuleSet:
    """Load consolidation rules and aggregation mappings from a file."""
    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise RuleFileError(f"Cannot parse rule file {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise RuleFileError(f"Rule file {file_path} must contain a mapping")

    try:
        return RuleSet.model_validate(data)
    except ValidationError as e:
        raise RuleFileError(f"Invalid rule file {file_path}:\n{e}") from e

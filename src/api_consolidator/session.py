"""Caller-owned merge session.

Holds the loaded documents and user-authored rules. Every method passes
the current state into the pure engine functions, so edits are visible
on the next call and nothing is cached.
"""

from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from api_consolidator.config import DEFAULT_SPEC_NAME, MergePolicy
from api_consolidator.engine.aggregate import AggregateOptions, aggregate, find_duplicate_operations
from api_consolidator.engine.common import resolve_source_endpoint
from api_consolidator.engine.consolidate import consolidate
from api_consolidator.engine.view import add_aggregations, build_view
from api_consolidator.parser.base import (
    AggregationMapping,
    ApiDocument,
    CombinedView,
    ConsolidationRule,
    EndpointRef,
)
from api_consolidator.parser.rules import RuleSet
from api_consolidator.parser.swagger import parse_openapi

logger = structlog.get_logger(__name__)


class MergeSession(BaseModel):
    documents: list[ApiDocument] = Field(default_factory=list)
    consolidation_rules: list[ConsolidationRule] = Field(default_factory=list)
    aggregation_mappings: list[AggregationMapping] = Field(default_factory=list)
    policy: MergePolicy = Field(default_factory=MergePolicy)

    def load(self, file_path: Path) -> int:
        """Parse and append a document; returns its document index."""
        document = parse_openapi(file_path)
        self.documents.append(document)
        logger.info(
            "document_loaded",
            path=str(file_path),
            title=document.title,
            operations=len(document.operations),
            index=len(self.documents) - 1,
        )
        return len(self.documents) - 1

    def remove(self, index: int) -> ApiDocument:
        """Drop a document. Rules referring to it stop resolving."""
        return self.documents.pop(index)

    def add_rules(self, rules: RuleSet) -> None:
        self.consolidation_rules.extend(rules.consolidations)
        self.aggregation_mappings.extend(rules.aggregations)

    def view(self, source_refs: list) -> CombinedView:
        return build_view(source_refs, self.documents)

    def consolidate(self, rule: ConsolidationRule, co2_enabled: bool = False) -> dict | None:
        """Synthesize one rule's operation, or None when an endpoint is gone."""
        endpoint1 = resolve_source_endpoint(rule.endpoint1_ref, self.documents)
        endpoint2 = resolve_source_endpoint(rule.endpoint2_ref, self.documents)
        if endpoint1 is None or endpoint2 is None:
            logger.warning("consolidation_rule_skipped", rule=rule.id or f"{rule.method} {rule.path}")
            return None
        return consolidate(endpoint1, endpoint2, rule, co2_enabled=co2_enabled, policy=self.policy)

    def aggregate(self, name: str = DEFAULT_SPEC_NAME, enable_tracking: bool = False) -> dict:
        """Unified document with all consolidation rules and aggregation mappings applied."""
        spec = aggregate(
            self.documents,
            AggregateOptions(
                name=name,
                enable_tracking=enable_tracking,
                consolidation_rules=self.consolidation_rules,
                policy=self.policy,
            ),
        )
        if self.aggregation_mappings:
            spec = add_aggregations(spec, self.aggregation_mappings, self.documents)
        return spec

    def duplicates(self) -> dict[str, list[EndpointRef]]:
        return find_duplicate_operations(self.documents)

"""Pairwise (2-to-1) consolidation of two operations into one synthetic operation.

A rule carrying user-edited field lists is rebuilt from those lists;
otherwise the two source operations are merged automatically. Both paths
produce the same operation shape with an ``x-consolidation`` block.
"""

import copy
import re

import structlog

from api_consolidator.config import MergePolicy
from api_consolidator.engine.co2 import co2_impact, consolidated_estimate, estimate_operation
from api_consolidator.engine.common import (
    ERROR_RESPONSES,
    SyntheticOperation,
    body_schema,
    merge_parameter_groups,
    resolve_source_endpoint,
    sanitize_name,
    success_response,
    unique_key,
)
from api_consolidator.parser.base import (
    ApiDocument,
    ConsolidationRule,
    MergedField,
    SourceEndpoint,
)

logger = structlog.get_logger(__name__)


def consolidate(
    endpoint1: SourceEndpoint,
    endpoint2: SourceEndpoint,
    rule: ConsolidationRule,
    co2_enabled: bool = False,
    policy: MergePolicy | None = None,
) -> dict:
    """Synthesize one OpenAPI operation that stands for both endpoints."""
    policy = policy or MergePolicy()
    op1, op2 = endpoint1.operation, endpoint2.operation

    if rule.is_user_edited:
        mode = "user-data"
        parameters = _parameters_from_fields(rule)
        request_body = _request_body_from_fields(rule.merged_request_body_fields or [])
        response_schema = _response_from_fields(endpoint1, endpoint2, rule.merged_response_fields or [])
    else:
        mode = "auto"
        parameters = merge_tracked_parameters(endpoint1, endpoint2)
        request_body = merge_request_bodies(
            endpoint1, endpoint2, rule.rules.add_source_tracking, policy.untracked_property_collision
        )
        response_schema = merge_responses(endpoint1, endpoint2)

    operation = {
        "operationId": rule.operation_id or _default_operation_id(rule),
        "summary": rule.summary or f"Consolidated endpoint combining {op1.path} and {op2.path}",
        "description": (
            "This endpoint calls both:\n"
            f"- {op1.method} {op1.path} ({endpoint1.source})\n"
            f"- {op2.method} {op2.path} ({endpoint2.source})\n\n"
            "And merges their responses into a unified result."
        ),
        "tags": ["Consolidated"],
        "parameters": parameters,
    }
    if request_body is not None:
        operation["requestBody"] = request_body
    operation["responses"] = {
        "200": {
            "description": "Successful consolidated response",
            "content": {"application/json": {"schema": response_schema}},
        },
        **copy.deepcopy(ERROR_RESPONSES),
    }
    operation["x-consolidation"] = {
        "type": "2-to-1",
        "mode": mode,
        "sources": [_source_entry(endpoint1), _source_entry(endpoint2)],
        "execution": "parallel" if rule.rules.parallel_calls else "sequential",
        "sourceTracking": rule.rules.add_source_tracking,
    }

    if co2_enabled:
        estimate1, estimate2 = estimate_operation(op1), estimate_operation(op2)
        operation["x-co2-impact"] = co2_impact(
            consolidated_estimate(estimate1, estimate2),
            {
                f"{endpoint1.source} {op1.method} {op1.path}": estimate1,
                f"{endpoint2.source} {op2.method} {op2.path}": estimate2,
            },
        )

    return operation


def apply_consolidation_rules(
    rules: list[ConsolidationRule],
    documents: list[ApiDocument],
    co2_enabled: bool = False,
    policy: MergePolicy | None = None,
) -> list[SyntheticOperation]:
    """Consolidate every rule whose two endpoints still resolve.

    Rules pointing at missing documents or operations are skipped with a
    warning; the remaining rules are still applied.
    """
    results = []
    for rule in rules:
        endpoint1 = resolve_source_endpoint(rule.endpoint1_ref, documents)
        endpoint2 = resolve_source_endpoint(rule.endpoint2_ref, documents)
        if endpoint1 is None or endpoint2 is None:
            missing = [
                str(locator)
                for locator, endpoint in ((rule.endpoint1_ref, endpoint1), (rule.endpoint2_ref, endpoint2))
                if endpoint is None
            ]
            logger.warning(
                "consolidation_rule_skipped",
                rule=rule.id or f"{rule.method} {rule.path}",
                unresolved=missing,
            )
            continue
        operation = consolidate(endpoint1, endpoint2, rule, co2_enabled=co2_enabled, policy=policy)
        results.append(SyntheticOperation(path=rule.path, method=rule.method, operation=operation))
    return results


def _default_operation_id(rule: ConsolidationRule) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", rule.path).strip("_")
    return f"consolidated_{rule.method.lower()}_{slug}"


def _source_entry(endpoint: SourceEndpoint) -> dict:
    return {
        "client": endpoint.source,
        "endpoint": f"{endpoint.operation.method} {endpoint.operation.path}",
    }


def _response_envelope() -> dict:
    return {
        "success": {"type": "boolean", "description": "Whether the consolidated operation succeeded"},
        "timestamp": {"type": "string", "format": "date-time", "description": "Response timestamp"},
    }


# -- user-data path -----------------------------------------------------------


def _field_schema(field: MergedField) -> dict:
    schema = copy.deepcopy(field.schema_) if field.schema_ else {"type": field.type}
    if field.description:
        schema["description"] = field.description
    if field.default_value not in (None, ""):
        schema["default"] = field.default_value
    return schema


def _field_parameter(field: MergedField, location: str) -> dict:
    param = {
        "name": field.name,
        "in": location,
        "required": True if location == "path" else field.required,
    }
    if field.description:
        param["description"] = field.description
    schema = copy.deepcopy(field.schema_) if field.schema_ else {"type": field.type}
    if field.default_value not in (None, ""):
        schema["default"] = field.default_value
    param["schema"] = schema
    if field.sources:
        param["x-sources"] = list(field.sources)
    elif field.source:
        param["x-source"] = field.source
    return param


def _parameters_from_fields(rule: ConsolidationRule) -> list[dict]:
    parameters = []
    for location, fields in (
        ("header", rule.merged_headers),
        ("query", rule.merged_query_params),
        ("path", rule.merged_path_params),
    ):
        parameters.extend(_field_parameter(f, location) for f in fields or [] if f.enabled)
    return parameters


def _request_body_from_fields(fields: list[MergedField]) -> dict | None:
    enabled = [f for f in fields if f.enabled]
    if not enabled:
        return None
    schema: dict = {"type": "object", "properties": {f.name: _field_schema(f) for f in enabled}}
    required = [f.name for f in enabled if f.required]
    if required:
        schema["required"] = required
    return {
        "description": "Consolidated request body",
        "required": True,
        "content": {"application/json": {"schema": schema}},
    }


def _response_from_fields(endpoint1: SourceEndpoint, endpoint2: SourceEndpoint, fields: list[MergedField]) -> dict:
    properties = _response_envelope()
    for endpoint in (endpoint1, endpoint2):
        op = endpoint.operation
        properties[unique_key(properties, f"{sanitize_name(endpoint.source)}Data")] = {
            "type": "object",
            "description": f"Response from {endpoint.source} ({op.method} {op.path})",
        }
    envelope = set(properties)
    for field in fields:
        if field.enabled:
            name = unique_key(properties, field.name) if field.name in envelope else field.name
            properties[name] = _field_schema(field)
    return {"type": "object", "properties": properties}


# -- auto-merge path ----------------------------------------------------------


def merge_tracked_parameters(endpoint1: SourceEndpoint, endpoint2: SourceEndpoint) -> list[dict]:
    """Deduplicated parameters tagged with ``x-source`` or ``x-sources``.

    When both endpoints come from the same document the tags name the
    operation too, so the two contributors stay distinguishable.
    """
    endpoints = (endpoint1, endpoint2)
    if endpoint1.source == endpoint2.source:
        labels = [f"{e.source}:{e.operation.method} {e.operation.path}" for e in endpoints]
    else:
        labels = [e.source for e in endpoints]
    parameters = []
    for param, sources in merge_parameter_groups([
        (label, e.operation.parameters) for label, e in zip(labels, endpoints)
    ]):
        rendered = param.to_openapi()
        if len(sources) > 1:
            rendered["x-sources"] = sources
        else:
            rendered["x-source"] = sources[0]
        parameters.append(rendered)
    return parameters


def merge_request_bodies(
    endpoint1: SourceEndpoint,
    endpoint2: SourceEndpoint,
    track_sources: bool,
    collision: str = "last",
) -> dict | None:
    """Union the JSON body properties of both endpoints.

    A property already contributed by the first endpoint is renamed
    ``<prop>_<source>`` when tracking sources; otherwise ``collision``
    decides which side wins.
    """
    bodies = [(e, e.operation.request_body) for e in (endpoint1, endpoint2) if e.operation.request_body is not None]
    if not bodies:
        return None

    properties: dict[str, dict] = {}
    required: list[str] = []
    body_required = False
    for endpoint, request_body in bodies:
        body_required = body_required or bool(request_body.get("required"))
        schema = body_schema(request_body)
        if schema is None:
            continue
        if "properties" not in schema:
            key = unique_key(properties, f"{sanitize_name(endpoint.source)}Body")
            properties[key] = copy.deepcopy(schema)
            if request_body.get("required"):
                required.append(key)
            continue

        schema_required = schema.get("required") or []
        for prop, prop_schema in schema["properties"].items():
            name = prop
            if prop in properties:
                if track_sources:
                    name = unique_key(properties, f"{prop}_{sanitize_name(endpoint.source)}")
                elif collision == "first":
                    continue
            properties[name] = copy.deepcopy(prop_schema)
            if prop in schema_required and name not in required:
                required.append(name)

    merged_schema: dict = {"type": "object", "properties": properties}
    if required:
        merged_schema["required"] = required
    return {
        "description": "Consolidated request body from multiple endpoints",
        "required": body_required,
        "content": {"application/json": {"schema": merged_schema}},
    }


def merge_responses(endpoint1: SourceEndpoint, endpoint2: SourceEndpoint) -> dict:
    """One ``<source>Response`` wrapper per endpoint."""
    properties: dict[str, dict] = {}
    for endpoint in (endpoint1, endpoint2):
        op = endpoint.operation
        response = success_response(op.responses)
        schema = body_schema(response) if response else None
        wrapper = copy.deepcopy(schema) if schema else {"type": "object"}
        wrapper.setdefault("description", f"Response from {endpoint.source} ({op.method} {op.path})")
        properties[unique_key(properties, f"{sanitize_name(endpoint.source)}Response")] = wrapper
    return {"type": "object", "properties": properties}

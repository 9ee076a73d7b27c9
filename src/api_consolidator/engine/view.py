"""N-to-1 aggregation: combined views, previews and synthetic operations.

``build_view`` is pure and cheap; it is meant to be called again after
every edit of the source list or of the loaded documents.
"""

import copy

import structlog

from api_consolidator.engine.common import (
    ERROR_RESPONSES,
    SyntheticOperation,
    body_schema,
    ref_name,
    resolve_endpoint,
    sanitize_name,
    success_response,
    unique_key,
)
from api_consolidator.errors import InvalidEndpointRefError
from api_consolidator.parser.base import (
    AggregationMapping,
    ApiDocument,
    CombinedView,
    EndpointRef,
    ResponseField,
    SourceEndpoint,
    ViewField,
)

logger = structlog.get_logger(__name__)

VIEW_SUCCESS_CODES = ("200", "201", "default")

_PARAM_GROUPS = {"header": "headers", "query": "query_params", "path": "path_params"}


def _coerce_ref(value) -> EndpointRef | None:
    try:
        return EndpointRef.coerce(value)
    except InvalidEndpointRefError:
        return None


def resolve_sources(source_refs: list, documents: list[ApiDocument]) -> list[SourceEndpoint]:
    """Resolved source endpoints, in order; empty or dangling refs are dropped."""
    resolved = []
    for value in source_refs:
        ref = _coerce_ref(value)
        if ref is None:
            continue
        endpoint = resolve_endpoint(ref, documents)
        if endpoint is not None:
            resolved.append(endpoint)
    return resolved


def _source_label(endpoint: SourceEndpoint) -> str:
    return f"{endpoint.source}:{endpoint.operation.method} {endpoint.operation.path}"


def build_view(source_refs: list, documents: list[ApiDocument]) -> CombinedView:
    """Deduplicated, source-annotated view over the given endpoints."""
    groups: dict[str, dict[str, ViewField]] = {name: {} for name in _PARAM_GROUPS.values()}
    payload: dict[str, ViewField] = {}
    responses: dict[str, ResponseField] = {}
    source_count = 0

    for endpoint in resolve_sources(source_refs, documents):
        source_count += 1
        label = _source_label(endpoint)
        op = endpoint.operation

        for param in op.parameters:
            group = _PARAM_GROUPS.get(param.location)
            if group is None:
                continue
            fields = groups[group]
            key = param.name.lower()
            required = param.required or param.location == "path"
            if key not in fields:
                fields[key] = ViewField(
                    name=param.name,
                    required=required,
                    description=param.description,
                    schema_=copy.deepcopy(param.schema_),
                    sources=[label],
                )
            else:
                _add_sighting(fields[key], required, label)

        _collect_payload(payload, op.request_body, label)
        _collect_responses(responses, op.responses, label, source_count)

    return CombinedView(
        headers=list(groups["headers"].values()),
        query_params=list(groups["query_params"].values()),
        path_params=list(groups["path_params"].values()),
        payload=list(payload.values()),
        responses=list(responses.values()),
        source_count=source_count,
    )


def _add_sighting(field: ViewField, required: bool, label: str) -> None:
    field.required = field.required or required
    field.sources.append(label)


def _collect_payload(payload: dict[str, ViewField], request_body: dict | None, label: str) -> None:
    schema = body_schema(request_body)
    if schema is None:
        return
    if "properties" in schema:
        required_names = schema.get("required") or []
        for prop, prop_schema in schema["properties"].items():
            key = prop.lower()
            required = prop in required_names
            if key not in payload:
                payload[key] = ViewField(
                    name=prop,
                    required=required,
                    description=prop_schema.get("description", ""),
                    type=prop_schema.get("type", "object"),
                    schema_=copy.deepcopy(prop_schema),
                    sources=[label],
                )
            else:
                _add_sighting(payload[key], required, label)
    elif "$ref" in schema:
        name = ref_name(schema["$ref"])
        required = bool(request_body.get("required"))
        if name.lower() not in payload:
            payload[name.lower()] = ViewField(
                name=name,
                required=required,
                description=f"Reference to {name}",
                type="object",
                sources=[label],
            )
        else:
            _add_sighting(payload[name.lower()], required, label)


def _collect_responses(responses: dict[str, ResponseField], op_responses: dict, label: str, position: int) -> None:
    response = success_response(op_responses, VIEW_SUCCESS_CODES)
    schema = body_schema(response)
    if schema is None:
        return
    if "properties" in schema:
        for prop, prop_schema in schema["properties"].items():
            responses.setdefault(prop.lower(), ResponseField(
                name=prop,
                type=prop_schema.get("type", "object"),
                description=prop_schema.get("description", ""),
                source=label,
            ))
    elif "$ref" in schema:
        name = ref_name(schema["$ref"])
        responses.setdefault(name.lower(), ResponseField(name=name, type="object", source=label))
    elif "type" in schema:
        responses.setdefault(label, ResponseField(name=f"response_{position}", type=schema["type"], source=label))


# -- field overrides ----------------------------------------------------------


def _field_config(mapping: AggregationMapping, kind: str, name: str):
    return mapping.field_config.get(f"{kind}:{name}")


def is_field_enabled(mapping: AggregationMapping, kind: str, name: str) -> bool:
    config = _field_config(mapping, kind, name)
    return config.enabled if config else True


def field_rename(mapping: AggregationMapping, kind: str, name: str) -> str:
    config = _field_config(mapping, kind, name)
    return config.rename if config else ""


def field_target(mapping: AggregationMapping, kind: str, name: str) -> str:
    config = _field_config(mapping, kind, name)
    return (config.target or "all") if config else "all"


def field_conflict(mapping: AggregationMapping, name: str) -> str:
    config = _field_config(mapping, "response", name)
    return config.conflict if config else "merge"


def _placeholder(type_: str | None, default: str):
    if type_ == "array":
        return []
    if type_ == "object":
        return {}
    if type_ in ("integer", "number"):
        return 0
    if type_ == "boolean":
        return False
    return f"<{type_ or default}>"


def _target_title(target: str, documents: list[ApiDocument]) -> str:
    ref = _coerce_ref(target)
    if ref is not None and ref.document_index < len(documents):
        return documents[ref.document_index].title
    return "target"


def build_request_preview(view: CombinedView, mapping: AggregationMapping, documents: list[ApiDocument]) -> dict:
    """Example request body after field overrides are applied."""
    preview = {}
    for field in view.payload:
        if not is_field_enabled(mapping, "request", field.name):
            continue
        name = field_rename(mapping, "request", field.name) or field.name
        target = field_target(mapping, "request", field.name)
        if target != "all":
            name = f"{name} -> {_target_title(target, documents)}"
        preview[name] = _placeholder(field.type, "string")
    return preview or {"_note": "No request body fields"}


def build_response_preview(view: CombinedView, mapping: AggregationMapping) -> dict:
    """Example merged response, annotated with non-default conflict strategies."""
    preview = {}
    for field in view.responses:
        if not is_field_enabled(mapping, "response", field.name):
            continue
        name = field_rename(mapping, "response", field.name) or field.name
        conflict = field_conflict(mapping, field.name)
        if field.type == "array" or conflict == "array":
            value = [f"<{field.type or 'any'}>"]
        elif field.type == "object":
            value = {}
        else:
            value = f"<{field.type or 'any'}>"
        if conflict != "merge":
            name = f"{name} ({conflict})"
        preview[name] = value
    return preview or {"_note": "Response fields will be merged"}


# -- synthetic operation ------------------------------------------------------


def _view_parameter(field: ViewField, location: str) -> dict:
    param = {
        "name": field.name,
        "in": location,
        "required": True if location == "path" else field.required,
    }
    if field.description:
        param["description"] = field.description
    param["schema"] = copy.deepcopy(field.schema_) if field.schema_ else {"type": "string"}
    if len(field.sources) > 1:
        param["x-sources"] = list(field.sources)
    else:
        param["x-source"] = field.sources[0]
    return param


def _aggregated_request_body(view: CombinedView, mapping: AggregationMapping) -> dict | None:
    properties = {}
    required = []
    for field in view.payload:
        if not is_field_enabled(mapping, "request", field.name):
            continue
        name = field_rename(mapping, "request", field.name) or field.name
        schema = copy.deepcopy(field.schema_) if field.schema_ else {"type": field.type or "object"}
        if field.description and "description" not in schema:
            schema["description"] = field.description
        target = field_target(mapping, "request", field.name)
        if target != "all":
            schema["x-target"] = target
        properties[name] = schema
        if field.required:
            required.append(name)
    if not properties:
        return None
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return {
        "description": "Aggregated request body",
        "required": bool(required),
        "content": {"application/json": {"schema": schema}},
    }


def _aggregated_response_schema(view: CombinedView, mapping: AggregationMapping, sources: list[SourceEndpoint]) -> dict:
    properties = {
        "success": {"type": "boolean", "description": "Whether the aggregated call succeeded"},
        "timestamp": {"type": "string", "format": "date-time", "description": "Response timestamp"},
    }
    for field in view.responses:
        if not is_field_enabled(mapping, "response", field.name):
            continue
        name = field_rename(mapping, "response", field.name) or field.name
        schema = {"type": field.type or "object", "description": field.description or f"From {field.source}"}
        if field_conflict(mapping, field.name) == "array" and field.type != "array":
            schema = {"type": "array", "items": schema}
        properties[unique_key(properties, name)] = schema

    for source in dict.fromkeys(e.source for e in sources):
        properties[unique_key(properties, f"{sanitize_name(source)}Data")] = {
            "type": "object",
            "description": f"Response data from {source}",
        }
    return {"type": "object", "properties": properties}


def build_aggregated_description(mapping: AggregationMapping, documents: list[ApiDocument]) -> str:
    refs = [ref for ref in mapping.source_endpoints if ref is not None]
    lines = ["**Aggregated Endpoint**", "", f"This endpoint consolidates {len(refs)} API calls:"]
    for position, ref in enumerate(refs, start=1):
        title = documents[ref.document_index].title if ref.document_index < len(documents) else "Unknown"
        lines.append(f"{position}. `{ref.method} {ref.path}` ({title})")
    lines.append("")
    lines.append(f"Execution: {'parallel' if mapping.parallel else 'sequential'}")
    lines.append(f"Merge strategy: {mapping.merge_strategy}")
    return "\n".join(lines)


def build_aggregated_operation(mapping: AggregationMapping, documents: list[ApiDocument]) -> SyntheticOperation:
    """Synthesize the path item for one aggregation mapping."""
    sources = resolve_sources(mapping.source_endpoints, documents)
    if len(sources) < len([ref for ref in mapping.source_endpoints if ref is not None]):
        logger.warning(
            "aggregation_sources_dropped",
            mapping=mapping.name or mapping.consolidated_path,
            resolved=len(sources),
            declared=len(mapping.source_endpoints),
        )
    view = build_view(mapping.source_endpoints, documents)

    parameters = [
        _view_parameter(field, location)
        for location, group in _PARAM_GROUPS.items()
        for field in getattr(view, group)
    ]

    operation = {
        "operationId": f"consolidated_{sanitize_name(mapping.name or mapping.consolidated_path)}",
        "summary": f"Consolidated: {mapping.name or 'Aggregated Endpoint'}",
        "description": build_aggregated_description(mapping, documents),
        "tags": ["Consolidated", "Aggregator"],
        "parameters": parameters,
    }
    request_body = _aggregated_request_body(view, mapping)
    if request_body is not None:
        operation["requestBody"] = request_body
    operation["responses"] = {
        "200": {
            "description": "Aggregated response",
            "content": {"application/json": {"schema": _aggregated_response_schema(view, mapping, sources)}},
        },
        **copy.deepcopy(ERROR_RESPONSES),
    }
    operation["x-consolidation"] = {
        "type": "2-to-1",
        "sources": [
            {"client": e.source, "endpoint": f"{e.operation.method} {e.operation.path}"} for e in sources
        ],
        "execution": "parallel" if mapping.parallel else "sequential",
        "mergeStrategy": mapping.merge_strategy,
    }
    return SyntheticOperation(path=mapping.consolidated_path, method=mapping.method, operation=operation)


def add_aggregations(spec: dict, mappings: list[AggregationMapping], documents: list[ApiDocument]) -> dict:
    """Return a copy of ``spec`` with one synthetic path item per mapping."""
    result = copy.deepcopy(spec)
    paths = result.setdefault("paths", {})
    for mapping in mappings:
        entry = build_aggregated_operation(mapping, documents)
        paths.setdefault(entry.path, {})[entry.method.lower()] = entry.operation
    return result

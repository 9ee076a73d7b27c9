"""Full aggregation of N normalized documents into one unified OpenAPI document."""

import copy
import json

import structlog
from pydantic import BaseModel, Field

from api_consolidator.config import DEFAULT_OPENAPI_VERSION, DEFAULT_SPEC_NAME, DEFAULT_VERSION, MergePolicy
from api_consolidator.engine.co2 import co2_impact, estimate_operation
from api_consolidator.engine.common import merge_parameter_groups, sanitize_name, unique_key
from api_consolidator.engine.consolidate import apply_consolidation_rules
from api_consolidator.errors import EmptyInputError
from api_consolidator.parser.base import ApiDocument, ConsolidationRule, EndpointRef, Operation, Schema

logger = structlog.get_logger(__name__)


class AggregateOptions(BaseModel):
    name: str = DEFAULT_SPEC_NAME
    enable_tracking: bool = False
    consolidation_rules: list[ConsolidationRule] = Field(default_factory=list)
    policy: MergePolicy = Field(default_factory=MergePolicy)


def aggregate(documents: list[ApiDocument], options: AggregateOptions | None = None) -> dict:
    """Merge ``documents`` (in order) into a single OpenAPI document.

    Earlier documents win scalar precedence ties. Raises EmptyInputError
    when there is nothing to merge.
    """
    if not documents:
        raise EmptyInputError("aggregate() needs at least one document")
    options = options or AggregateOptions()
    policy = options.policy

    operations = merge_all_operations(documents, policy)

    paths: dict[str, dict] = {}
    for op in operations:
        item = op.to_openapi()
        if options.enable_tracking:
            item["x-co2-impact"] = co2_impact(estimate_operation(op))
        paths.setdefault(op.path, {})[op.method.lower()] = item

    synthetic = apply_consolidation_rules(
        options.consolidation_rules, documents, co2_enabled=options.enable_tracking, policy=policy
    )
    for entry in synthetic:
        paths.setdefault(entry.path, {})[entry.method.lower()] = entry.operation

    security_schemes: dict = {}
    for doc in documents:
        for name, scheme in doc.security_schemes.items():
            security_schemes.setdefault(name, copy.deepcopy(scheme))

    logger.info(
        "documents_aggregated",
        documents=len(documents),
        operations=len(operations),
        consolidations=len(synthetic),
    )

    return {
        "openapi": DEFAULT_OPENAPI_VERSION,
        "info": _build_info(documents, options),
        "servers": [{"url": url} for url in dict.fromkeys(d.base_url for d in documents if d.base_url)],
        "paths": paths,
        "components": {
            "schemas": merge_all_schemas(documents, policy),
            "parameters": collect_header_parameters(documents),
            "responses": {},
            "securitySchemes": security_schemes,
        },
    }


def _build_info(documents: list[ApiDocument], options: AggregateOptions) -> dict:
    titles = ", ".join(d.title for d in documents)
    info = {
        "title": options.name,
        "version": DEFAULT_VERSION,
        "description": f"Aggregated from {len(documents)} specification(s): {titles}",
        "x-source-apis": [{"title": d.title, "version": d.version} for d in documents],
    }
    if options.enable_tracking:
        info["x-co2-tracking"] = True
    return info


# -- operations ---------------------------------------------------------------


def merge_all_operations(documents: list[ApiDocument], policy: MergePolicy | None = None) -> list[Operation]:
    """Merge operations of all documents by ``METHOD:path`` in input order."""
    policy = policy or MergePolicy()
    merged: dict[str, Operation] = {}
    for doc in documents:
        for op in doc.operations:
            if op.source_api is None:
                op = op.model_copy(update={"source_api": doc.title})
            existing = merged.get(op.key)
            merged[op.key] = op if existing is None else merge_operations(existing, op, policy)
    return list(merged.values())


def merge_operations(first: Operation, second: Operation, policy: MergePolicy | None = None) -> Operation:
    """Merge two operations sharing a key into a new Operation."""
    policy = policy or MergePolicy()

    responses = dict(first.responses)
    for code, response in second.responses.items():
        if code not in responses or policy.response_collision == "last":
            responses[code] = response

    contributors = first.merged_from or [first.source_api]
    merged_from = [s for s in dict.fromkeys([*contributors, second.source_api]) if s]

    return first.model_copy(update={
        "operation_id": first.operation_id or second.operation_id,
        "summary": first.summary or second.summary,
        "description": _merge_descriptions(first, second),
        "tags": list(dict.fromkeys([*first.tags, *second.tags])),
        "parameters": [
            param for param, _ in merge_parameter_groups([
                ("first", first.parameters),
                ("second", second.parameters),
            ])
        ],
        "request_body": first.request_body if first.request_body is not None else second.request_body,
        "responses": responses,
        "merged_from": merged_from,
    })


def _merge_descriptions(first: Operation, second: Operation) -> str:
    if not second.description or second.description == first.description:
        return first.description
    if not first.description:
        return second.description
    marker = f"merged from {second.source_api}" if second.source_api else "merged"
    return f"{first.description}\n\n({marker})\n{second.description}"


# -- schemas ------------------------------------------------------------------


def merge_schemas(first: Schema, second: Schema, source_title: str, policy: MergePolicy | None = None) -> list[Schema]:
    """Merge two same-named schemas.

    Returns one schema when they merge (or the first wins), two when the
    types differ and ``second`` is renamed ``<name>_<source>``.
    """
    policy = policy or MergePolicy()
    if first.schema_type != second.schema_type:
        renamed = Schema(name=f"{first.name}_{sanitize_name(source_title)}", definition=second.definition)
        return [first, renamed]
    if first.schema_type == "object":
        definition = merge_object_schemas(first.definition, second.definition, policy.schema_property_collision)
        return [Schema(name=first.name, definition=definition)]
    return [first]


def merge_object_schemas(first: dict, second: dict, collision: str = "last") -> dict:
    merged = copy.deepcopy(first)
    properties = merged.get("properties") or {}
    for name, prop in (second.get("properties") or {}).items():
        if name not in properties or collision == "last":
            properties[name] = copy.deepcopy(prop)
    if properties:
        merged["properties"] = properties

    required = list(dict.fromkeys([*(first.get("required") or []), *(second.get("required") or [])]))
    if required:
        merged["required"] = required
    return merged


def merge_all_schemas(documents: list[ApiDocument], policy: MergePolicy | None = None) -> dict[str, dict]:
    schemas: dict[str, Schema] = {}
    for doc in documents:
        for schema in doc.schemas:
            existing = schemas.get(schema.name)
            if existing is None:
                schemas[schema.name] = schema
                continue
            kept, *renamed = merge_schemas(existing, schema, doc.title, policy)
            schemas[kept.name] = kept
            for extra in renamed:
                name = unique_key(schemas, extra.name)
                logger.warning(
                    "schema_type_conflict",
                    schema=schema.name,
                    existing_type=existing.schema_type,
                    incoming_type=schema.schema_type,
                    renamed_to=name,
                    source=doc.title,
                )
                schemas[name] = extra.model_copy(update={"name": name})
    return {name: copy.deepcopy(s.definition) for name, s in schemas.items()}


# -- header parameters --------------------------------------------------------


def collect_header_parameters(documents: list[ApiDocument]) -> dict[str, dict]:
    """Reusable header parameters, deduplicated by their full serialized form."""
    params: dict[str, dict] = {}
    seen: set[str] = set()
    for doc in documents:
        for op in doc.operations:
            for param in op.parameters:
                if param.location != "header":
                    continue
                rendered = param.to_openapi()
                fingerprint = json.dumps(rendered, sort_keys=True, default=str)
                if fingerprint in seen:
                    continue
                seen.add(fingerprint)
                params[unique_key(params, param.name)] = rendered
    return params


# -- duplicates ---------------------------------------------------------------


def find_duplicate_operations(documents: list[ApiDocument]) -> dict[str, list[EndpointRef]]:
    """Endpoints (``METHOD path``) declared by more than one document."""
    occurrences: dict[str, list[EndpointRef]] = {}
    for index, doc in enumerate(documents):
        for op in doc.operations:
            ref = EndpointRef(document_index=index, method=op.method, path=op.path)
            occurrences.setdefault(f"{op.method} {op.path}", []).append(ref)
    return {
        key: refs for key, refs in occurrences.items()
        if len({ref.document_index for ref in refs}) > 1
    }

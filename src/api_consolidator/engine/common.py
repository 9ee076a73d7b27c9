"""Helpers shared by the aggregator, consolidator and view builder."""

import re

from pydantic import BaseModel

from api_consolidator.parser.base import (
    ApiDocument,
    EndpointRef,
    OperationSlot,
    Parameter,
    SourceEndpoint,
)

JSON_CONTENT_TYPES = ("application/json", "*/*")
SUCCESS_CODES = ("200", "201")

ERROR_RESPONSES = {
    "400": {"description": "Bad Request"},
    "500": {"description": "Internal Server Error"},
}


def sanitize_name(value: str) -> str:
    """Lower-case and drop everything outside [a-z0-9]: 'User API' -> 'userapi'."""
    return re.sub(r"[^a-z0-9]", "", value.lower())


def unique_key(mapping: dict, key: str) -> str:
    """Return ``key`` or the first ``key_N`` (N >= 2) not present in ``mapping``."""
    if key not in mapping:
        return key
    n = 2
    while f"{key}_{n}" in mapping:
        n += 1
    return f"{key}_{n}"


def body_schema(request_body: dict | None) -> dict | None:
    """JSON schema of a request body or response object, if it has one."""
    if not request_body:
        return None
    content = request_body.get("content") or {}
    for content_type in JSON_CONTENT_TYPES:
        media = content.get(content_type)
        if media and media.get("schema") is not None:
            return media["schema"]
    return None


def success_response(responses: dict, codes: tuple[str, ...] = SUCCESS_CODES) -> dict | None:
    for code in codes:
        if code in responses:
            return responses[code]
    return None


def ref_name(ref: str) -> str:
    """'#/components/schemas/User' -> 'User'."""
    return ref.rstrip("/").split("/")[-1]


def resolve_endpoint(ref: EndpointRef, documents: list[ApiDocument]) -> SourceEndpoint | None:
    """Look up ``ref`` in the loaded documents; None when it no longer exists."""
    if ref.document_index >= len(documents):
        return None
    document = documents[ref.document_index]
    operation = document.find_operation(ref.method, ref.path)
    if operation is None:
        return None
    return SourceEndpoint(source=document.title, operation=operation, ref=ref)


def resolve_slot(slot: OperationSlot, documents: list[ApiDocument]) -> SourceEndpoint | None:
    if slot.api_index >= len(documents):
        return None
    document = documents[slot.api_index]
    if slot.op_index >= len(document.operations):
        return None
    operation = document.operations[slot.op_index]
    ref = EndpointRef(document_index=slot.api_index, method=operation.method, path=operation.path)
    return SourceEndpoint(source=document.title, operation=operation, ref=ref)


def resolve_source_endpoint(
    locator: EndpointRef | OperationSlot, documents: list[ApiDocument]
) -> SourceEndpoint | None:
    if isinstance(locator, OperationSlot):
        return resolve_slot(locator, documents)
    return resolve_endpoint(locator, documents)


class SyntheticOperation(BaseModel):
    """A generated operation ready to be spliced into ``paths[path][method]``."""

    path: str
    method: str
    operation: dict


def merge_parameter_groups(groups: list[tuple[str, list[Parameter]]]) -> list[tuple[Parameter, list[str]]]:
    """Deduplicate parameters by ``in:lowercase(name)`` across sources.

    On a collision ``required`` is ORed and description/schema fall back to
    whichever side has one (first side wins ties). Returns each surviving
    parameter with the sources that declared it, one entry per contributing
    group even when two groups share a source name.
    """
    merged: dict[str, tuple[Parameter, list[int]]] = {}
    for position, (_, params) in enumerate(groups):
        for param in params:
            if param.key not in merged:
                merged[param.key] = (param, [position])
                continue
            existing, positions = merged[param.key]
            combined = existing.model_copy(update={
                "required": existing.required or param.required,
                "description": existing.description or param.description,
                "schema_": existing.schema_ or param.schema_,
            })
            merged[param.key] = (combined, positions if position in positions else [*positions, position])
    return [(param, [groups[i][0] for i in positions]) for param, positions in merged.values()]

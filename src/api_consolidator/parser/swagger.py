"""OpenAPI / Swagger document normalizer.

Parses OpenAPI 3.x and Swagger 2.0 documents into ApiDocument models.
"""

from pathlib import Path

import yaml

from api_consolidator.errors import DocumentFormatError

from .base import HTTP_METHODS, ApiDocument, Operation, Parameter, Schema
from .detect import classify_document


def load_raw_document(file_path: Path) -> dict:
    """Read a YAML or JSON document into a plain dict."""
    return _load_text(file_path.read_text(encoding="utf-8"), str(file_path))


def parse_openapi(file_path: Path) -> ApiDocument:
    """Parse an OpenAPI/Swagger file into an ApiDocument."""
    return normalize_document(load_raw_document(file_path), source=str(file_path))


def parse_openapi_text(text: str, source: str = "<string>") -> ApiDocument:
    return normalize_document(_load_text(text, source), source=source)


def normalize_document(doc: dict, source: str = "<document>") -> ApiDocument:
    """Extract title, version, base URL, operations and schemas from a raw document."""
    doc_format = classify_document(doc)
    if doc_format == "unknown":
        raise DocumentFormatError(f"{source} is not an OpenAPI or Swagger document")

    swagger2 = doc_format == "swagger"
    info = doc.get("info") or {}
    title = str(info.get("title") or Path(source).stem)

    operations = []
    for path, path_item in (doc.get("paths") or {}).items():
        if not isinstance(path_item, dict):
            continue
        shared_params = path_item.get("parameters") or []
        for method, operation in path_item.items():
            if method.upper() not in HTTP_METHODS or not isinstance(operation, dict):
                continue
            operations.append(_parse_operation(path, method, operation, shared_params, title, swagger2))

    if swagger2:
        raw_schemas = doc.get("definitions") or {}
        security = doc.get("securityDefinitions") or {}
    else:
        components = doc.get("components") or {}
        raw_schemas = components.get("schemas") or {}
        security = components.get("securitySchemes") or {}

    schemas = [
        Schema(name=name, definition=schema)
        for name, schema in raw_schemas.items()
        if isinstance(schema, dict) and "$ref" not in schema
    ]

    return ApiDocument(
        title=title,
        version=str(info.get("version") or ""),
        base_url=_swagger2_base_url(doc) if swagger2 else _openapi_base_url(doc),
        operations=operations,
        schemas=schemas,
        security_schemes=security,
    )


def _load_text(text: str, source: str) -> dict:
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DocumentFormatError(f"Cannot parse {source}: {e}") from e
    if not isinstance(doc, dict):
        raise DocumentFormatError(f"{source} does not contain a mapping")
    return doc


def _parse_operation(
    path: str, method: str, operation: dict, shared_params: list, source: str, swagger2: bool
) -> Operation:
    raw_params = [*shared_params, *(operation.get("parameters") or [])]
    request_body = operation.get("requestBody")
    if swagger2:
        request_body = _swagger2_body(raw_params, operation.get("consumes"))

    return Operation(
        operation_id=operation.get("operationId") or generate_operation_id(method, path),
        method=method,
        path=path,
        summary=operation.get("summary") or "",
        description=operation.get("description") or "",
        parameters=_parse_parameters(raw_params),
        request_body=request_body,
        responses={str(code): resp for code, resp in (operation.get("responses") or {}).items()},
        tags=operation.get("tags") or [],
        source_api=source,
    )


def _parse_parameters(params: list[dict]) -> list[Parameter]:
    """Operation-level parameters override path-level ones with the same name and location."""
    result: dict[tuple[str, str], Parameter] = {}
    for p in params:
        # Unresolved refs and Swagger 2.0 body/formData params are not parameters here
        if not isinstance(p, dict) or "$ref" in p or p.get("in") in ("body", "formData"):
            continue
        schema = p.get("schema")
        if schema is None and "type" in p:
            schema = {k: p[k] for k in ("type", "format", "enum", "items", "default") if k in p}
        param = Parameter(
            name=p["name"],
            location=p.get("in", "query"),
            required=bool(p.get("required", False)) or p.get("in") == "path",
            schema_=schema,
            description=p.get("description") or "",
        )
        result[(param.location, param.name)] = param
    return list(result.values())


def _swagger2_body(params: list, consumes: list | None) -> dict | None:
    for p in params:
        if isinstance(p, dict) and p.get("in") == "body":
            content_type = (consumes or ["application/json"])[0]
            body = {
                "required": bool(p.get("required", False)),
                "content": {content_type: {"schema": p.get("schema") or {}}},
            }
            if p.get("description"):
                body["description"] = p["description"]
            return body
    return None


def _openapi_base_url(doc: dict) -> str | None:
    servers = doc.get("servers") or []
    if servers and isinstance(servers[0], dict):
        return servers[0].get("url")
    return None


def _swagger2_base_url(doc: dict) -> str | None:
    host = doc.get("host")
    if not host:
        return doc.get("basePath")
    scheme = (doc.get("schemes") or ["https"])[0]
    return f"{scheme}://{host}{doc.get('basePath', '')}"


def generate_operation_id(method: str, path: str) -> str:
    """Build an id from method and path: GET /users/{id}/posts -> getUsersIdPosts."""
    segments = [s for s in path.replace("{", "").replace("}", "").split("/") if s]
    clean = "".join(s if i == 0 else s[:1].upper() + s[1:] for i, s in enumerate(segments))
    return f"{method.lower()}{clean[:1].upper()}{clean[1:]}"

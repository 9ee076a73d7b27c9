"""Unified data models for normalized API documents and merge rules.

The Normalizer converts every input document into these models; the
engine reads them and emits plain OpenAPI dicts. Field names are
snake_case, the OpenAPI/camelCase spellings are accepted and emitted
through aliases.
"""

import copy
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from api_consolidator.errors import InvalidEndpointRefError

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD")


class Parameter(BaseModel):
    """A single operation parameter (path, query, header, or cookie)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    location: str = Field(alias="in")  # path / query / header / cookie
    required: bool = False
    schema_: dict | None = Field(default=None, alias="schema")
    description: str = ""

    @property
    def key(self) -> str:
        """Identity used for deduplication: ``in:lowercase(name)``."""
        return f"{self.location}:{self.name.lower()}"

    def to_openapi(self) -> dict:
        data: dict[str, Any] = {
            "name": self.name,
            "in": self.location,
            "required": self.required,
        }
        if self.description:
            data["description"] = self.description
        data["schema"] = copy.deepcopy(self.schema_) if self.schema_ else {"type": "string"}
        return data


class Operation(BaseModel):
    """One HTTP method + path entry. Frozen: merges build new instances."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    operation_id: str = Field(default="", alias="operationId")
    method: str  # GET / POST / PUT / DELETE / PATCH / OPTIONS / HEAD
    path: str
    summary: str = ""
    description: str = ""
    parameters: list[Parameter] = Field(default_factory=list)
    request_body: dict | None = Field(default=None, alias="requestBody")
    responses: dict = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    source_api: str | None = Field(default=None, alias="sourceAPI")
    merged_from: list[str] = Field(default_factory=list)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @property
    def key(self) -> str:
        return f"{self.method}:{self.path}"

    def to_openapi(self) -> dict:
        """Render as an OpenAPI operation object."""
        data: dict[str, Any] = {}
        if self.operation_id:
            data["operationId"] = self.operation_id
        if self.summary:
            data["summary"] = self.summary
        if self.description:
            data["description"] = self.description
        if self.tags:
            data["tags"] = list(self.tags)
        if self.parameters:
            data["parameters"] = [p.to_openapi() for p in self.parameters]
        if self.request_body is not None:
            data["requestBody"] = copy.deepcopy(self.request_body)
        data["responses"] = copy.deepcopy(self.responses) or {"200": {"description": "Success"}}
        if self.source_api:
            data["x-source-api"] = self.source_api
        if self.merged_from:
            data["x-merged-from"] = list(self.merged_from)
        return data


class Schema(BaseModel):
    """A named JSON-Schema-like type definition."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    definition: dict = Field(default_factory=dict, alias="schema")

    @property
    def schema_type(self) -> str | None:
        if "type" in self.definition:
            return self.definition["type"]
        return "object" if "properties" in self.definition else None


class ApiDocument(BaseModel):
    """A normalized API document."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    version: str = ""
    base_url: str | None = Field(default=None, alias="baseURL")
    operations: list[Operation] = Field(default_factory=list)
    schemas: list[Schema] = Field(default_factory=list)
    security_schemes: dict = Field(default_factory=dict, alias="securitySchemes")

    def find_operation(self, method: str, path: str) -> Operation | None:
        method = method.upper()
        for op in self.operations:
            if op.method == method and op.path == path:
                return op
        return None


class EndpointRef(BaseModel):
    """Reference to one operation of one loaded document.

    The string form ``"{documentIndex}:{method}:{path}"`` is produced by
    ``str(ref)`` and read back by :meth:`parse`; nothing else splits it.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    document_index: int = Field(alias="documentIndex", ge=0)
    method: str
    path: str

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def parse(cls, value: str) -> "EndpointRef":
        index, sep, rest = value.partition(":")
        method, sep2, path = rest.partition(":")
        if not sep or not sep2 or not method or not path:
            raise InvalidEndpointRefError(f"Invalid endpoint reference {value!r}, expected 'index:method:path'")
        try:
            document_index = int(index)
        except ValueError:
            raise InvalidEndpointRefError(f"Invalid document index in endpoint reference {value!r}") from None
        if document_index < 0:
            raise InvalidEndpointRefError(f"Negative document index in endpoint reference {value!r}")
        return cls(document_index=document_index, method=method, path=path)

    @classmethod
    def coerce(cls, value: "EndpointRef | dict | str | None") -> "EndpointRef | None":
        """Accept a ref, its dict or string form; empty values give None."""
        if value is None or value == "":
            return None
        if isinstance(value, EndpointRef):
            return value
        if isinstance(value, dict):
            return cls.model_validate(value)
        return cls.parse(str(value))

    def __str__(self) -> str:
        return f"{self.document_index}:{self.method}:{self.path}"


class OperationSlot(BaseModel):
    """Positional endpoint locator: operation ``op_index`` of document ``api_index``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    api_index: int = Field(alias="apiIndex", ge=0)
    op_index: int = Field(alias="opIndex", ge=0)


class SourceEndpoint(BaseModel):
    """An operation resolved from a loaded document, with its provenance."""

    source: str  # title of the owning document
    operation: Operation
    ref: EndpointRef | None = None


# -- consolidation rules (2-to-1) ---------------------------------------------


class MergedField(BaseModel):
    """A user-editable field of a consolidated endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    enabled: bool = True
    required: bool = False
    description: str | None = None
    default_value: Any = Field(default=None, alias="defaultValue")
    type: str = "string"
    schema_: dict | None = Field(default=None, alias="schema")
    source: str | None = None
    sources: list[str] = Field(default_factory=list)


class ConsolidationFlags(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parallel_calls: bool = Field(default=False, alias="parallelCalls")
    add_source_tracking: bool = Field(default=False, alias="addSourceTracking")


class ConsolidationRule(BaseModel):
    """Synthesize ``method path`` from two existing operations."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    endpoint1_ref: EndpointRef | OperationSlot = Field(alias="endpoint1Ref")
    endpoint2_ref: EndpointRef | OperationSlot = Field(alias="endpoint2Ref")
    path: str
    method: str = "GET"
    summary: str | None = None
    operation_id: str | None = Field(default=None, alias="operationId")
    merged_headers: list[MergedField] | None = Field(default=None, alias="mergedHeaders")
    merged_query_params: list[MergedField] | None = Field(default=None, alias="mergedQueryParams")
    merged_path_params: list[MergedField] | None = Field(default=None, alias="mergedPathParams")
    merged_request_body_fields: list[MergedField] | None = Field(default=None, alias="mergedRequestBodyFields")
    merged_response_fields: list[MergedField] | None = Field(default=None, alias="mergedResponseFields")
    rules: ConsolidationFlags = Field(default_factory=ConsolidationFlags)

    @field_validator("endpoint1_ref", "endpoint2_ref", mode="before")
    @classmethod
    def _parse_ref_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return EndpointRef.parse(value)
        return value

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @property
    def is_user_edited(self) -> bool:
        return any((
            self.merged_headers,
            self.merged_query_params,
            self.merged_path_params,
            self.merged_request_body_fields,
            self.merged_response_fields,
        ))


# -- aggregation mappings (N-to-1) --------------------------------------------


class FieldConfig(BaseModel):
    """Per-field override attached to an aggregation mapping."""

    enabled: bool = True
    rename: str = ""
    target: str = "all"  # "all" or an endpoint reference string
    conflict: Literal["merge", "first", "last", "array"] = "merge"


class AggregationMapping(BaseModel):
    """Synthesize ``method consolidated_path`` from any number of operations."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    source_endpoints: list[EndpointRef | None] = Field(default_factory=list, alias="sourceEndpoints")
    consolidated_path: str = Field(alias="consolidatedPath")
    method: str = "GET"
    merge_strategy: Literal["combine", "wrap", "first"] = Field(default="combine", alias="mergeStrategy")
    parallel: bool = True
    field_config: dict[str, FieldConfig] = Field(default_factory=dict, alias="fieldConfig")

    @field_validator("source_endpoints", mode="before")
    @classmethod
    def _parse_refs(cls, value: Any) -> Any:
        return [EndpointRef.coerce(item) for item in value or []]

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()


# -- combined view ------------------------------------------------------------


class ViewField(BaseModel):
    """A deduplicated parameter or payload field with its contributors."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    required: bool = False
    description: str = ""
    type: str | None = None
    schema_: dict | None = Field(default=None, alias="schema")
    sources: list[str] = Field(default_factory=list)


class ResponseField(BaseModel):
    name: str
    type: str = "object"
    description: str = ""
    source: str


class CombinedView(BaseModel):
    """Deduplicated, source-annotated view over N source operations."""

    model_config = ConfigDict(populate_by_name=True)

    headers: list[ViewField] = Field(default_factory=list)
    query_params: list[ViewField] = Field(default_factory=list, alias="queryParams")
    path_params: list[ViewField] = Field(default_factory=list, alias="pathParams")
    payload: list[ViewField] = Field(default_factory=list)
    responses: list[ResponseField] = Field(default_factory=list)
    source_count: int = Field(default=0, alias="sourceCount")

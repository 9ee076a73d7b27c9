from pathlib import Path

import pytest
from structlog.testing import capture_logs

from api_consolidator.config import MergePolicy
from api_consolidator.engine.aggregate import (
    AggregateOptions,
    aggregate,
    collect_header_parameters,
    find_duplicate_operations,
    merge_all_schemas,
    merge_object_schemas,
    merge_operations,
    merge_schemas,
)
from api_consolidator.errors import EmptyInputError
from api_consolidator.parser.base import (
    ApiDocument,
    ConsolidationRule,
    EndpointRef,
    Operation,
    Parameter,
    Schema,
)
from api_consolidator.parser.swagger import parse_openapi

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def documents() -> list[ApiDocument]:
    return [parse_openapi(FIXTURES / "users.yaml"), parse_openapi(FIXTURES / "profile.yaml")]


class TestAggregate:
    def test_empty_input(self):
        with pytest.raises(EmptyInputError):
            aggregate([])

    def test_document_shape(self, documents):
        spec = aggregate(documents, AggregateOptions(name="Unified"))
        assert spec["openapi"] == "3.0.3"
        assert spec["info"]["title"] == "Unified"
        assert spec["info"]["x-source-apis"] == [
            {"title": "User API", "version": "1.2.0"},
            {"title": "Profile API", "version": "2.0.0"},
        ]
        assert set(spec["components"]) == {"schemas", "parameters", "responses", "securitySchemes"}
        assert set(spec["paths"]) == {"/users/{id}", "/users", "/health", "/profile/{id}", "/profile"}

    def test_servers_deduplicated(self, documents):
        spec = aggregate([*documents, documents[0]])
        assert spec["servers"] == [
            {"url": "https://users.example.com/v1"},
            {"url": "https://profile.example.com"},
        ]

    def test_security_schemes_first_wins(self, documents):
        schemes = aggregate(documents)["components"]["securitySchemes"]
        assert schemes["bearerAuth"] == {"type": "http", "scheme": "bearer"}
        assert "apiKey" in schemes

    def test_duplicate_operation_merged(self, documents):
        health = aggregate(documents)["paths"]["/health"]["get"]
        assert health["summary"] == "Health check"
        assert health["tags"] == ["ops", "monitoring"]
        assert health["description"] == (
            "Reports service health.\n\n(merged from Profile API)\nProfile service health."
        )
        assert health["responses"]["200"] == {"description": "Profile service healthy"}
        assert "503" in health["responses"]
        assert health["x-merged-from"] == ["User API", "Profile API"]
        assert [p["name"] for p in health["parameters"]] == ["verbose"]

    def test_tracking_adds_co2(self, documents):
        spec = aggregate(documents, AggregateOptions(enable_tracking=True))
        assert spec["info"]["x-co2-tracking"] is True
        impact = spec["paths"]["/users/{id}"]["get"]["x-co2-impact"]
        assert impact["estimatedGramsPerRequest"] == 0.17

    def test_no_tracking_by_default(self, documents):
        spec = aggregate(documents)
        assert "x-co2-tracking" not in spec["info"]
        assert "x-co2-impact" not in spec["paths"]["/users/{id}"]["get"]

    def test_consolidation_rules_spliced(self, documents):
        rule = ConsolidationRule(
            endpoint1_ref=EndpointRef.parse("0:GET:/users/{id}"),
            endpoint2_ref=EndpointRef.parse("1:GET:/profile/{id}"),
            path="/api/user-profile/{id}",
        )
        spec = aggregate(documents, AggregateOptions(consolidation_rules=[rule]))
        operation = spec["paths"]["/api/user-profile/{id}"]["get"]
        assert operation["x-consolidation"]["type"] == "2-to-1"

    def test_unresolvable_rule_skipped(self, documents):
        good = ConsolidationRule(
            endpoint1_ref=EndpointRef.parse("0:GET:/users/{id}"),
            endpoint2_ref=EndpointRef.parse("1:GET:/profile/{id}"),
            path="/api/ok",
        )
        bad = ConsolidationRule(
            endpoint1_ref=EndpointRef.parse("0:GET:/users/{id}"),
            endpoint2_ref=EndpointRef.parse("7:GET:/nowhere"),
            path="/api/broken",
        )
        with capture_logs() as logs:
            spec = aggregate(documents, AggregateOptions(consolidation_rules=[bad, good]))
        assert "/api/ok" in spec["paths"]
        assert "/api/broken" not in spec["paths"]
        assert any(e["event"] == "consolidation_rule_skipped" for e in logs)

    def test_repeatable(self, documents):
        assert aggregate(documents) == aggregate(documents)


class TestMergeOperations:
    def test_parameter_dedup_ors_required(self):
        first = Operation(method="GET", path="/a", parameters=[Parameter(name="Token", location="header")])
        second = Operation(method="GET", path="/a", parameters=[
            Parameter(name="token", location="header", required=True, description="auth"),
            Parameter(name="token", location="query"),
        ])
        merged = merge_operations(first, second)
        assert [p.key for p in merged.parameters] == ["header:token", "query:token"]
        header = merged.parameters[0]
        assert header.name == "Token"
        assert header.required is True
        assert header.description == "auth"

    def test_first_side_wins_ties(self):
        first = Operation(method="GET", path="/a", parameters=[
            Parameter(name="id", location="query", schema_={"type": "integer"}, description="first"),
        ])
        second = Operation(method="GET", path="/a", parameters=[
            Parameter(name="id", location="query", schema_={"type": "string"}, description="second"),
        ])
        param = merge_operations(first, second).parameters[0]
        assert param.schema_ == {"type": "integer"}
        assert param.description == "first"

    def test_summary_falls_back_to_second(self):
        merged = merge_operations(Operation(method="GET", path="/a"), Operation(method="GET", path="/a", summary="S"))
        assert merged.summary == "S"

    def test_response_collision_policy(self):
        first = Operation(method="GET", path="/a", responses={"200": {"description": "one"}})
        second = Operation(method="GET", path="/a", responses={"200": {"description": "two"}})
        assert merge_operations(first, second).responses["200"]["description"] == "two"
        kept = merge_operations(first, second, MergePolicy(response_collision="first"))
        assert kept.responses["200"]["description"] == "one"

    def test_inputs_untouched(self):
        first = Operation(method="GET", path="/a", tags=["x"])
        second = Operation(method="GET", path="/a", tags=["y"])
        merge_operations(first, second)
        assert first.tags == ["x"]


class TestMergeSchemas:
    def test_required_union(self):
        merged = merge_object_schemas(
            {"type": "object", "required": ["a"]},
            {"type": "object", "required": ["b", "a"]},
        )
        assert sorted(merged["required"]) == ["a", "b"]
        assert len(merged["required"]) == 2

    def test_object_properties_incoming_wins(self):
        merged = merge_object_schemas(
            {"type": "object", "properties": {"a": {"type": "string"}, "b": {"type": "string"}}},
            {"type": "object", "properties": {"a": {"type": "integer"}}},
        )
        assert merged["properties"] == {"a": {"type": "integer"}, "b": {"type": "string"}}

    def test_object_properties_first_policy(self):
        merged = merge_object_schemas(
            {"properties": {"a": {"type": "string"}}},
            {"properties": {"a": {"type": "integer"}}},
            collision="first",
        )
        assert merged["properties"]["a"] == {"type": "string"}

    def test_type_conflict_renames_incoming(self):
        result = merge_schemas(
            Schema(name="X", definition={"type": "string"}),
            Schema(name="X", definition={"type": "object"}),
            source_title="Source B",
        )
        assert [s.name for s in result] == ["X", "X_sourceb"]
        assert result[0].definition == {"type": "string"}
        assert result[1].definition == {"type": "object"}

    def test_same_type_non_object_first_wins(self):
        result = merge_schemas(
            Schema(name="X", definition={"type": "string", "enum": ["a"]}),
            Schema(name="X", definition={"type": "string", "enum": ["b"]}),
            source_title="B",
        )
        assert len(result) == 1
        assert result[0].definition["enum"] == ["a"]

    def test_merge_all_schemas(self, documents):
        with capture_logs() as logs:
            schemas = merge_all_schemas(documents)
        assert set(schemas) == {"User", "Status", "Status_profileapi"}
        assert set(schemas["User"]["properties"]) == {"id", "name", "email"}
        assert schemas["User"]["required"] == ["id", "email"]
        assert schemas["Status"]["type"] == "string"
        assert logs[0]["event"] == "schema_type_conflict"
        assert logs[0]["renamed_to"] == "Status_profileapi"

    def test_renamed_name_taken(self):
        docs = [
            ApiDocument(title="A", schemas=[Schema(name="X", definition={"type": "string"})]),
            ApiDocument(title="B", schemas=[Schema(name="X", definition={"type": "integer"})]),
            ApiDocument(title="B", schemas=[Schema(name="X", definition={"type": "boolean"})]),
        ]
        schemas = merge_all_schemas(docs)
        assert list(schemas) == ["X", "X_b", "X_b_2"]


class TestHeaderParameters:
    def test_distinct_headers_with_same_name_kept(self):
        docs = [
            ApiDocument(title="A", operations=[Operation(method="GET", path="/a", parameters=[
                Parameter(name="Authorization", location="header"),
            ])]),
            ApiDocument(title="B", operations=[Operation(method="GET", path="/b", parameters=[
                Parameter(name="Authorization", location="header", required=True),
                Parameter(name="Authorization", location="header"),
            ])]),
        ]
        params = collect_header_parameters(docs)
        assert list(params) == ["Authorization", "Authorization_2"]
        assert params["Authorization_2"]["required"] is True

    def test_only_headers(self, documents):
        params = collect_header_parameters(documents)
        assert set(params) == {"X-Request-ID", "Authorization"}


class TestDuplicates:
    def test_find_duplicate_operations(self, documents):
        found = find_duplicate_operations(documents)
        assert list(found) == ["GET /health"]
        assert [ref.document_index for ref in found["GET /health"]] == [0, 1]

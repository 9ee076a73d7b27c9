import copy
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from api_consolidator.config import MergePolicy
from api_consolidator.engine.refs import bundle, find_unresolved_refs, json_pointer_get, resolve
from api_consolidator.errors import CyclicReferenceError, ReferenceDepthError, ReferenceResolutionError

FIXTURES = Path(__file__).parent / "fixtures"

USER_SCHEMA = {"type": "object", "required": ["id"], "properties": {"id": {"type": "string"}}}


def _main_doc(ref: str) -> dict:
    return {
        "openapi": "3.0.3",
        "paths": {"/users": {"get": {"responses": {"200": {"schema": {"$ref": ref}}}}}},
        "components": {"schemas": {"User": USER_SCHEMA}},
    }


class TestJsonPointer:
    def test_nested_lookup(self):
        assert json_pointer_get({"a": {"b": [10, 20]}}, "/a/b/1") == 20

    def test_escaped_tokens(self):
        doc = {"paths": {"/users/{id}": {"get": 1}}}
        assert json_pointer_get(doc, "/paths/~1users~1{id}/get") == 1

    def test_missing_key(self):
        with pytest.raises(KeyError):
            json_pointer_get({"a": {}}, "/a/b")


class TestInternalRefs:
    def test_internal_ref_round_trip(self):
        doc = _main_doc("#/components/schemas/User")
        result = resolve(doc, "main.yaml")
        inlined = result["paths"]["/users"]["get"]["responses"]["200"]["schema"]
        assert inlined == USER_SCHEMA
        assert "$ref" not in inlined

    def test_input_not_mutated(self):
        doc = _main_doc("#/components/schemas/User")
        snapshot = copy.deepcopy(doc)
        resolve(doc, "main.yaml")
        assert doc == snapshot

    def test_missing_fragment_kept_with_warning(self):
        doc = _main_doc("#/components/schemas/Nope")
        with capture_logs() as logs:
            result = resolve(doc, "main.yaml")
        assert result["paths"]["/users"]["get"]["responses"]["200"]["schema"] == {"$ref": "#/components/schemas/Nope"}
        assert logs[0]["event"] == "reference_target_not_found"
        assert logs[0]["log_level"] == "warning"

    def test_unsupported_ref_left_untouched(self):
        doc = _main_doc("https://example.com/schemas/user.json")
        with capture_logs() as logs:
            result = resolve(doc, "main.yaml")
        assert result["paths"]["/users"]["get"]["responses"]["200"]["schema"] == {
            "$ref": "https://example.com/schemas/user.json"
        }
        assert logs == []

    def test_same_ref_in_separate_branches_is_not_a_cycle(self):
        doc = {
            "a": {"$ref": "#/components/schemas/User"},
            "b": {"$ref": "#/components/schemas/User"},
            "components": {"schemas": {"User": USER_SCHEMA}},
        }
        result = resolve(doc, "main.yaml")
        assert result["a"] == result["b"] == USER_SCHEMA


class TestSiblingRefs:
    def _sibling_error(self) -> tuple[dict, dict]:
        doc = _main_doc("./common.yaml#/components/schemas/Error")
        doc["components"]["schemas"]["Code"] = {"type": "string"}
        siblings = {"common.yaml": {"components": {"schemas": {
            "Error": {"type": "object", "properties": {"code": {"$ref": "#/components/schemas/Code"}}},
            "Code": {"type": "integer"},
        }}}}
        return doc, siblings

    def test_local_ref_in_sibling_uses_main_document(self):
        doc, siblings = self._sibling_error()
        result = resolve(doc, "main.yaml", siblings)
        error = result["paths"]["/users"]["get"]["responses"]["200"]["schema"]
        assert error == {"type": "object", "properties": {"code": {"type": "string"}}}

    def test_local_ref_in_sibling_uses_current_document(self):
        doc, siblings = self._sibling_error()
        result = resolve(doc, "main.yaml", siblings, MergePolicy(local_ref_scope="current"))
        error = result["paths"]["/users"]["get"]["responses"]["200"]["schema"]
        assert error == {"type": "object", "properties": {"code": {"type": "integer"}}}

    def test_local_ref_missing_from_main_kept(self):
        doc = _main_doc("./common.yaml#/components/schemas/Error")
        siblings = {"common.yaml": {"components": {"schemas": {
            "Error": {"type": "object", "properties": {"code": {"$ref": "#/components/schemas/Code"}}},
            "Code": {"type": "integer"},
        }}}}
        with capture_logs() as logs:
            result = resolve(doc, "main.yaml", siblings)
        error = result["paths"]["/users"]["get"]["responses"]["200"]["schema"]
        assert error["properties"]["code"] == {"$ref": "#/components/schemas/Code"}
        assert logs[0]["event"] == "reference_target_not_found"
        assert logs[0]["document"] == "main.yaml"

    def test_parent_relative_ref(self):
        doc = {"x": {"$ref": "../shared/common.yaml#/Thing"}}
        result = resolve(doc, "main.yaml", {"shared/common.yaml": {"Thing": {"type": "string"}}})
        assert result["x"] == {"type": "string"}

    def test_whole_sibling_document(self):
        doc = {"x": {"$ref": "./thing.yaml"}}
        result = resolve(doc, "main.yaml", {"thing.yaml": {"type": "boolean"}})
        assert result["x"] == {"type": "boolean"}

    def test_missing_sibling_kept_with_warning(self):
        doc = _main_doc("./missing.yaml#/components/schemas/Error")
        with capture_logs() as logs:
            result = resolve(doc, "main.yaml", {})
        assert result["paths"]["/users"]["get"]["responses"]["200"]["schema"] == {
            "$ref": "./missing.yaml#/components/schemas/Error"
        }
        assert [e["event"] for e in logs] == ["sibling_document_not_found"]


class TestCycles:
    def _cyclic(self) -> dict:
        return {
            "components": {"schemas": {"Node": {
                "type": "object",
                "properties": {"children": {"type": "array", "items": {"$ref": "#/components/schemas/Node"}}},
            }}},
        }

    def test_self_reference_raises(self):
        with pytest.raises(CyclicReferenceError) as exc:
            resolve(self._cyclic(), "main.yaml")
        assert "main.yaml#/components/schemas/Node" in str(exc.value)
        assert isinstance(exc.value, ReferenceResolutionError)

    def test_cross_document_cycle_raises(self):
        main = {"x": {"$ref": "./b.yaml#/B"}, "A": {"next": {"$ref": "./b.yaml#/B"}}}
        siblings = {"b.yaml": {"B": {"next": {"$ref": "./main.yaml#/A"}}}}
        with pytest.raises(CyclicReferenceError):
            resolve(main, "main.yaml", siblings)

    def test_cycle_kept_when_configured(self):
        with capture_logs() as logs:
            result = resolve(self._cyclic(), "main.yaml", policy=MergePolicy(keep_cyclic_refs=True))
        items = result["components"]["schemas"]["Node"]["properties"]["children"]["items"]
        assert items["properties"]["children"]["items"] == {"$ref": "#/components/schemas/Node"}
        assert logs[0]["event"] == "cyclic_reference_kept"

    def test_depth_limit(self):
        chain = {f"S{i}": {"$ref": f"#/S{i + 1}"} for i in range(5)}
        chain["S5"] = {"type": "string"}
        with pytest.raises(ReferenceDepthError):
            resolve({"root": {"$ref": "#/S0"}, **chain}, "main.yaml", policy=MergePolicy(max_ref_depth=3))


class TestBundle:
    def test_bundle_files(self):
        with capture_logs() as logs:
            result = bundle(FIXTURES / "bundle" / "main.yaml", [FIXTURES / "bundle" / "common.yaml"])
        responses = result["paths"]["/users"]["get"]["responses"]
        assert responses["200"]["content"]["application/json"]["schema"] == {
            "type": "object", "properties": {"id": {"type": "string"}},
        }
        error = responses["404"]["content"]["application/json"]["schema"]
        assert error["properties"]["code"] == {"type": "string"}
        assert responses["500"]["content"]["application/json"]["schema"] == {
            "$ref": "./missing.yaml#/components/schemas/Error"
        }
        assert any(e["event"] == "sibling_document_not_found" for e in logs)

    def test_bundle_files_current_scope(self):
        policy = MergePolicy(local_ref_scope="current")
        result = bundle(FIXTURES / "bundle" / "main.yaml", [FIXTURES / "bundle" / "common.yaml"], policy)
        error = result["paths"]["/users"]["get"]["responses"]["404"]["content"]["application/json"]["schema"]
        assert error["properties"]["code"] == {"type": "integer", "format": "int32"}

    def test_find_unresolved_refs(self):
        result = bundle(FIXTURES / "bundle" / "main.yaml", [FIXTURES / "bundle" / "common.yaml"])
        assert find_unresolved_refs(result) == ["./missing.yaml#/components/schemas/Error"]

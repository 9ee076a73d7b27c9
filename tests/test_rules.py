from pathlib import Path

import pytest

from api_consolidator.errors import RuleFileError
from api_consolidator.parser.base import EndpointRef, OperationSlot
from api_consolidator.parser.rules import load_rules

FIXTURES = Path(__file__).parent / "fixtures"


class TestLoadRules:
    def test_load_fixture(self):
        rules = load_rules(FIXTURES / "rules.yaml")
        assert [r.id for r in rules.consolidations] == ["user-profile", "dangling"]
        first = rules.consolidations[0]
        assert first.endpoint1_ref == EndpointRef(document_index=0, method="GET", path="/users/{id}")
        assert first.rules.parallel_calls is True
        assert rules.consolidations[1].endpoint2_ref == OperationSlot(api_index=5, op_index=0)

        mapping = rules.aggregations[0]
        assert mapping.source_endpoints[2] is None
        assert mapping.field_config["response:avatar"].enabled is False

    def test_empty_file(self, tmp_path):
        f = tmp_path / "rules.yaml"
        f.write_text("")
        rules = load_rules(f)
        assert rules.consolidations == []
        assert rules.aggregations == []

    def test_json_rules(self, tmp_path):
        f = tmp_path / "rules.json"
        f.write_text('{"aggregations": [{"sourceEndpoints": ["0:get:/a"], "consolidatedPath": "/b"}]}')
        assert load_rules(f).aggregations[0].consolidated_path == "/b"

    def test_invalid_yaml(self, tmp_path):
        f = tmp_path / "rules.yaml"
        f.write_text("consolidations: [oops\n")
        with pytest.raises(RuleFileError):
            load_rules(f)

    def test_not_a_mapping(self, tmp_path):
        f = tmp_path / "rules.yaml"
        f.write_text("- a\n- b\n")
        with pytest.raises(RuleFileError):
            load_rules(f)

    def test_bad_endpoint_ref(self, tmp_path):
        f = tmp_path / "rules.yaml"
        f.write_text("consolidations:\n  - endpoint1Ref: 'nope'\n    endpoint2Ref: '0:get:/a'\n    path: /x\n")
        with pytest.raises(RuleFileError, match="Invalid rule file"):
            load_rules(f)

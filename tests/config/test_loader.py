"""Tests for rule parsing and YAML loading."""

from __future__ import annotations

import pytest
import yaml

from campaign_config.loader import deep_merge, load_rule_set, load_yaml_file, parse_rule
from campaign_kernel.domain.context import EntityType
from campaign_kernel.domain.rules import ActionKind, ConditionOperator
from campaign_kernel.exceptions import InvalidRuleError, UnknownActionKindError


def _rule(**overrides):
    data = {
        "id": "r1",
        "trigger": {"entity_type": "order", "to_state": "approved"},
        "actions": [{"type": "create_contract"}],
    }
    data.update(overrides)
    return data


class TestParseRule:
    def test_minimal_rule(self):
        rule = parse_rule(_rule())
        assert rule.id == "r1"
        assert rule.name == "r1"
        assert rule.trigger.entity_type is EntityType.ORDER
        assert rule.trigger.from_state is None
        assert rule.actions[0].kind is ActionKind.CREATE_CONTRACT
        assert rule.actions[0].fatal is False
        assert rule.is_active

    def test_conditions_and_fatal_flag(self):
        rule = parse_rule(_rule(
            trigger={
                "entity_type": "campaign",
                "from_state": "talent_approval",
                "to_state": "admin_approval",
                "conditions": [{"field": "budget", "operator": "greater_than", "value": 5000}],
            },
            actions=[{"type": "create_reservation", "fatal": True}],
            active=False,
        ))
        (condition,) = rule.trigger.conditions
        assert condition.operator is ConditionOperator.GREATER_THAN
        assert condition.value == 5000
        assert rule.actions[0].fatal
        assert not rule.is_active

    def test_unknown_action_kind(self):
        with pytest.raises(UnknownActionKindError) as exc_info:
            parse_rule(_rule(actions=[{"type": "create_ad_request"}]))
        assert exc_info.value.kind == "create_ad_request"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"id": ""},
            {"trigger": None},
            {"trigger": {"entity_type": "order"}},
            {"trigger": {"entity_type": "invoice", "to_state": "paid"}},
            {"trigger": {"entity_type": "order", "to_state": "approved",
                         "conditions": [{"field": "x", "operator": "matches", "value": 1}]}},
            {"trigger": {"entity_type": "order", "to_state": "approved",
                         "conditions": [{"operator": "equals", "value": 1}]}},
            {"actions": []},
            {"actions": [{"config": {}}]},
            {"actions": [{"type": "assign_task", "config": ["role", "producer"]}]},
        ],
    )
    def test_malformed_rules_rejected(self, overrides):
        with pytest.raises(InvalidRuleError):
            parse_rule(_rule(**overrides))


class TestYamlFiles:
    def test_load_rule_file_as_mapping(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(yaml.safe_dump({"rules": [_rule(id="a"), _rule(id="b")]}))
        assert [r.id for r in load_rule_set(path)] == ["a", "b"]

    def test_load_rule_file_as_list(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(yaml.safe_dump([_rule(id="only")]))
        assert len(load_rule_set(path)) == 1

    def test_non_mapping_settings_file_rejected(self, tmp_path):
        path = tmp_path / "tenant.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(ValueError):
            load_yaml_file(path)

    def test_malformed_yaml_propagates(self, tmp_path):
        path = tmp_path / "tenant.yaml"
        path.write_text("billing: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_yaml_file(path)


class TestDeepMerge:
    def test_nested_mappings_merge_and_lists_replace(self):
        base = {"billing": {"invoice_prefix": "INV", "payment_terms": "Net 30"}, "roles": ["a", "b"]}
        merged = deep_merge(base, {"billing": {"payment_terms": "Net 15"}, "roles": ["c"]})
        assert merged == {"billing": {"invoice_prefix": "INV", "payment_terms": "Net 15"}, "roles": ["c"]}
        assert base["billing"]["payment_terms"] == "Net 30"

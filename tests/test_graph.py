from __future__ import annotations

"""Unit tests for workflow definition loading and validation."""

import json

import pytest

from rulesflow.graph import GenericConfig, RuleTaskConfig, ScriptConfig, ServiceTaskConfig, WorkflowDefinition


def linear_payload() -> dict:
    return {
        "id": "onboarding",
        "name": "Onboarding",
        "nodes": [
            {"id": "start", "type": "start", "position": {"x": 0, "y": 0}, "data": {}},
            {"id": "rules", "type": "ruleTask", "data": {"ruleSetId": "pricing", "label": "Price"}},
            {"id": "decide", "type": "decision", "data": {}},
            {"id": "pass", "type": "end", "data": {"label": "Passed"}},
            {"id": "fail", "type": "end", "data": {}},
        ],
        "edges": [
            {"id": "e1", "source": "start", "target": "rules"},
            {"id": "e2", "source": "rules", "target": "decide"},
            {"id": "e3", "source": "decide", "target": "pass", "data": {"condition": "score >= 80"}},
            {"id": "e4", "source": "decide", "target": "fail", "label": "default", "data": None},
        ],
    }


def test_from_dict_builds_typed_nodes() -> None:
    definition = WorkflowDefinition.from_dict(linear_payload())

    assert definition.id == "onboarding"
    assert definition.start_node().id == "start"
    rules = definition.get_node("rules")
    assert isinstance(rules.config, RuleTaskConfig)
    assert rules.config.rule_set_id == "pricing"
    assert rules.label == "Price"
    assert definition.get_node("fail").label == "End"
    assert definition.get_node("start").position == {"x": 0, "y": 0}


def test_edges_keep_definition_order() -> None:
    definition = WorkflowDefinition.from_dict(linear_payload())

    outgoing = definition.get_edges("decide")
    assert [edge.id for edge in outgoing] == ["e3", "e4"]
    assert outgoing[0].condition == "score >= 80"
    assert not outgoing[0].is_default
    assert outgoing[1].is_default
    assert definition.get_edges("pass") == []


def test_labelled_else_edge_is_default_even_when_guarded() -> None:
    payload = linear_payload()
    payload["edges"][3] = {"source": "decide", "target": "fail", "label": "Else", "data": {"condition": "x == 1"}}
    definition = WorkflowDefinition.from_dict(payload)

    edge = definition.get_edges("decide")[1]
    assert edge.is_default
    assert edge.id == "e3-decide-fail"


def test_nodes_and_edges_may_be_serialized() -> None:
    payload = linear_payload()
    payload["nodes"] = json.dumps(payload["nodes"])
    payload["edges"] = json.dumps(payload["edges"])

    definition = WorkflowDefinition.from_dict(payload)
    assert len(definition.nodes) == 5
    assert len(definition.edges) == 4


def test_node_configs_per_type() -> None:
    payload = {
        "nodes": [
            {
                "id": "svc",
                "type": "serviceTask",
                "data": {"adapterId": "crm", "path": "/score", "outputField": "crm.score"},
            },
            {"id": "calc", "type": "script", "data": {"assignments": [{"field": "a", "value": 1}, {"field": "b"}]}},
            {"id": "odd", "type": "webhook", "data": {"url": "http://example.test"}},
        ]
    }
    definition = WorkflowDefinition.from_dict(payload)

    svc = definition.get_node("svc").config
    assert isinstance(svc, ServiceTaskConfig)
    assert (svc.adapter_id, svc.method, svc.path, svc.output_field) == ("crm", "POST", "/score", "crm.score")

    calc = definition.get_node("calc").config
    assert isinstance(calc, ScriptConfig)
    assert [a.has_value for a in calc.assignments] == [True, False]

    odd = definition.get_node("odd")
    assert isinstance(odd.config, GenericConfig)
    assert odd.label == "webhook"


def test_duplicate_node_ids_rejected() -> None:
    payload = linear_payload()
    payload["nodes"].append({"id": "start", "type": "end"})
    with pytest.raises(ValueError, match="Duplicate node id"):
        WorkflowDefinition.from_dict(payload)


def test_bad_shape_rejected() -> None:
    with pytest.raises(ValueError, match="Invalid workflow definition"):
        WorkflowDefinition.from_dict({"id": "broken", "edges": []})
    with pytest.raises(ValueError, match="Invalid workflow definition"):
        WorkflowDefinition.from_dict({"nodes": "[not json"})


def test_get_node_unknown_raises() -> None:
    definition = WorkflowDefinition.from_dict(linear_payload())
    with pytest.raises(KeyError):
        definition.get_node("ghost")


def test_validate_accepts_well_formed_graph() -> None:
    assert WorkflowDefinition.from_dict(linear_payload()).validate() == []


def test_validate_reports_problems() -> None:
    payload = {
        "id": "broken",
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "a", "type": "script"},
            {"id": "b", "type": "ruleTask"},
            {"id": "decide", "type": "decision"},
            {"id": "orphan", "type": "timer"},
        ],
        "edges": [
            {"id": "s1", "source": "start", "target": "a"},
            {"id": "s2", "source": "start", "target": "b"},
            {"id": "a1", "source": "a", "target": "decide"},
            {"id": "b1", "source": "b", "target": "ghost"},
            {"id": "d1", "source": "decide", "target": "a", "data": {"condition": "score"}},
        ],
    }
    issues = WorkflowDefinition.from_dict(payload).validate()

    assert "No end node found." in issues
    assert "Edge 'b1' references unknown node 'ghost'." in issues
    assert "Node 'start' (start) has 2 outgoing edges; expected exactly 1." in issues
    assert "Node 'orphan' (timer) has 0 outgoing edges; expected exactly 1." in issues
    assert "Rule task 'b' has no rule set configured." in issues
    assert "Node 'orphan' is not reachable from the start node." in issues
    assert any(issue.startswith("Edge 'd1': Malformed expression") for issue in issues)


def test_validate_reports_missing_start() -> None:
    issues = WorkflowDefinition.from_dict({"nodes": [{"id": "end", "type": "end"}]}).validate()
    assert issues == ["No start node found."]

import pytest

from graphlower.custom_rules import (
    CustomRule,
    WherePredicate,
    check_platform,
    get_suitable_custom_rules,
    load_custom_rules,
    select_custom_rule,
    size_variables,
)
from graphlower.errors import ConfigurationError, CustomRuleError, ErrorCode
from graphlower.source import SourceNode


def _rule(type="Sigmoid", where=None, global_size="X, Y, F", platforms=None, name=None):
    doc = {
        "type": type,
        "kernels": [{"entry": "k", "source": "k.cl", "global_size": global_size}],
    }
    if where is not None:
        doc["where"] = where
    if platforms is not None:
        doc["platforms"] = platforms
    if name is not None:
        doc["name"] = name
    return CustomRule.from_dict(doc)


@pytest.fixture
def sigmoid_node_graph(builder):
    x = builder.parameter("x", shape=(2, 3, 4, 5))
    y = builder.op("Sigmoid", "act", [x], shape=(2, 3, 4, 5), params={"mode": "fast", "group": 4})
    builder.result("out", y)
    graph = builder.build()
    return graph.get_node("act"), graph


class TestWherePredicate:
    def test_equality_compares_text(self):
        assert WherePredicate("mode", "==", "fast").holds({"mode": "fast"})
        assert WherePredicate("flag", "==", "true").holds({"flag": True})
        assert WherePredicate("group", "==", 4).holds({"group": "4"})
        assert not WherePredicate("mode", "==", "fast").holds({})

    def test_ordering_compares_numbers(self):
        assert WherePredicate("group", ">=", 4).holds({"group": 4})
        assert WherePredicate("group", "<", "10").holds({"group": 9})
        assert not WherePredicate("group", ">", 1).holds({"group": "many"})

    def test_unknown_operator(self):
        with pytest.raises(CustomRuleError, match="unknown comparison"):
            WherePredicate("a", "~=", 1)


def test_from_dict_defaults_and_validation():
    rule = _rule(global_size=[16, "Y"])
    assert rule.platforms == ("MYRIAD_X",)
    assert rule.kernels[0].global_size == "16,Y"
    assert rule.kernels[0].local_size == "1"
    assert rule.display_name == "Sigmoid"

    with pytest.raises(CustomRuleError, match="declares no kernels"):
        CustomRule.from_dict({"type": "Sigmoid", "kernels": []})
    with pytest.raises(CustomRuleError, match="invalid size expression"):
        _rule(global_size="X +")


def test_where_list_form():
    rule = _rule(where=[{"param": "group", "op": ">", "value": 2}])
    assert rule.where == (WherePredicate("group", ">", 2),)


def test_size_variables(sigmoid_node_graph):
    node, graph = sigmoid_node_graph
    variables = size_variables(node, graph)
    assert (variables["B"], variables["F"], variables["Y"], variables["X"]) == (2, 3, 4, 5)
    assert variables["group"] == 4
    assert "mode" not in variables


def test_matching_respects_where_and_sizes(sigmoid_node_graph):
    node, graph = sigmoid_node_graph
    fast = _rule(where={"mode": "fast"}, name="fast")
    slow = _rule(where={"mode": "slow"}, name="slow")
    too_small = _rule(global_size="X - 5", name="empty")
    other_type = _rule(type="Relu")

    assert get_suitable_custom_rules([fast, slow, too_small, other_type], node, graph) == [fast]
    assert select_custom_rule([slow, other_type], node, graph) is None


def test_ambiguous_match_is_fatal(sigmoid_node_graph):
    node, graph = sigmoid_node_graph
    rules = [_rule(name="a"), _rule(where={"group": 4}, name="b")]

    with pytest.raises(ConfigurationError) as excinfo:
        select_custom_rule(rules, node, graph)
    assert excinfo.value.code == ErrorCode.E005
    assert excinfo.value.node == "act"


def test_platform_check():
    rules = [_rule(platforms=["MYRIAD_X"])]
    check_platform(rules, "MYRIAD_X")
    with pytest.raises(ConfigurationError) as excinfo:
        check_platform(rules, "MYRIAD_2")
    assert excinfo.value.code == ErrorCode.E004


def test_node_without_graph_uses_unit_dims():
    node = SourceNode("act", "Sigmoid", ("x",), ("y",), {})
    assert size_variables(node, None) == {"X": 1, "Y": 1, "F": 1, "B": 1}


def test_load_custom_rules(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(
        "rules:\n"
        "  - type: Sigmoid\n"
        "    name: fast_sigmoid\n"
        "    where: {mode: fast}\n"
        "    kernels:\n"
        "      - entry: sigmoid_fast\n"
        "        source: sigmoid.cl\n"
        "        global_size: \"X, Y, F\"\n"
        "        local_size: \"1, 1, 1\"\n"
    )
    rules = load_custom_rules(path)

    assert len(rules) == 1
    assert rules[0].display_name == "fast_sigmoid"
    assert rules[0].kernels[0].entry == "sigmoid_fast"

    with pytest.raises(CustomRuleError, match="not found"):
        load_custom_rules(tmp_path / "missing.yaml")

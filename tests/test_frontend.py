import numpy as np
import pytest

import graphlower.rules
from graphlower.config import LoweringConfig
from graphlower.custom_rules import CustomRule
from graphlower.errors import (
    ConfigurationError,
    DiagnosticCode,
    ErrorCode,
    GraphFormatError,
    UnsupportedLayerError,
)
from graphlower.frontend import FrontEnd, check_supported_layers, lower
from graphlower.source import SourceGraph
from graphlower.stages import StageType
from graphlower.types import DataType, DataUsage

IGNORE = LoweringConfig(ignore_unknown_layers=True)


def _wiring(model):
    return [
        (s.name, s.type, [d.name for d in s.inputs], [d.name for d in s.outputs])
        for s in model.ordered_stages()
    ]


def _unknown_layer_graph(builder):
    x = builder.parameter("x")
    y = builder.op("Sigmoid", "act", [x])
    z = builder.op("Foo", "foo", [y, x])
    builder.result("out", z)
    return builder.build()


class TestLowering:
    def test_sigmoid_network(self, sigmoid_graph):
        model = lower(sigmoid_graph)

        assert [(s.name, s.type) for s in model.ordered_stages()] == [
            ("x@FP16", StageType.CONVERT),
            ("act", StageType.SIGMOID),
            ("out@FP16", StageType.CONVERT),
        ]
        act = model.get_stage("act")
        assert act.inputs == [model.get_data("x@FP16")]
        assert act.outputs == [model.get_data("out@FP16")]
        assert model.report.supported == ["act"]
        assert not model.report.has_diagnostics()

    def test_boundary_buffers_keep_their_names(self, sigmoid_graph):
        model = lower(sigmoid_graph)

        assert [d.name for d in model.datas_by_usage(DataUsage.INPUT)] == ["x"]
        assert [d.name for d in model.datas_by_usage(DataUsage.OUTPUT)] == ["out"]
        assert model.get_data("out").producer.type == StageType.CONVERT

    def test_lookup_by_tensor(self, sigmoid_graph):
        model = lower(sigmoid_graph)
        assert model.data_for_tensor("x") is model.get_data("x@FP16")
        assert model.data_for_tensor("act_out") is model.get_data("out@FP16")

    def test_wide_input_converted_once_before_all_consumers(self, builder):
        x = builder.parameter("x")
        a = builder.op("Sigmoid", "a", [x])
        b = builder.op("Exp", "b", [x])
        s = builder.op("Add", "s", [a, b])
        builder.result("out", s)

        model = lower(builder.build())

        x_data = model.get_data("x")
        x16 = model.get_data("x@FP16")
        converts = [s for s in x_data.consumers]
        assert len(converts) == 1 and converts[0].type == StageType.CONVERT
        assert {s.name for s in x16.consumers} == {"a", "b"}

    def test_intermediates_are_fp16(self, builder):
        x = builder.parameter("x")
        a = builder.op("Sigmoid", "a", [x])
        b = builder.op("Exp", "b", [a])
        builder.result("out", b)

        model = lower(builder.build())

        assert model.get_data("a_out").desc.type == DataType.FP16
        assert model.get_data("a_out").usage == DataUsage.INTERMEDIATE

    def test_constants_stored_as_fp16(self, builder):
        x = builder.parameter("x", shape=(1, 4))
        c = builder.constant("c", 2.0, shape=(1, 4))
        s = builder.op("Add", "s", [x, c], shape=(1, 4))
        builder.result("out", s)

        model = lower(builder.build())

        const = model.get_data("c")
        assert const.usage == DataUsage.CONST
        assert const.desc.type == DataType.FP16
        np.testing.assert_array_equal(const.content, np.full((1, 4), 2.0, dtype=np.float16))
        assert model.get_stage("s").inputs[1] is const

    def test_constant_shared_by_node_and_result(self, builder):
        x = builder.parameter("x", shape=(1, 3))
        c = builder.constant("c", [1, 2, 3], shape=(1, 3))
        builder.result("y_out", builder.op("Add", "s", [x, c], shape=(1, 3)))
        builder.result("c_out", c)

        model = lower(builder.build())

        const = model.get_data("c")
        assert const.usage == DataUsage.CONST
        np.testing.assert_array_equal(const.content, np.array([[1, 2, 3]], dtype=np.float16))
        assert [d.name for d in model.get_stage("s").inputs] == ["x@FP16", "c"]
        assert model.get_data("c_out").producer.inputs == [const]
        for stage in model.stages:
            for data in stage.inputs:
                assert data.usage in (DataUsage.INPUT, DataUsage.CONST) or data.producer is not None

    def test_unused_constant_is_dropped(self, builder):
        x = builder.parameter("x", type="fp16")
        builder.constant("unused", [1, 2, 3], shape=(3,))
        builder.result("out", x)

        model = lower(builder.build())

        assert model.get_data("unused") is None

    def test_constant_value_must_match_shape(self, builder):
        x = builder.parameter("x", shape=(1, 4))
        c = builder.constant("c", [1.0, 2.0, 3.0], shape=(1, 4))
        builder.result("out", builder.op("Add", "s", [x, c], shape=(1, 4)))

        with pytest.raises(GraphFormatError) as excinfo:
            lower(builder.build())
        assert excinfo.value.node == "c"

    def test_wide_integers_are_normalized(self, builder):
        x = builder.parameter("x", shape=(2,), type="i64")
        builder.result("out", x)

        model = lower(builder.build())

        assert model.get_data("x").desc.type == DataType.S32
        assert [s.type for s in model.stages] == [StageType.COPY]

    def test_batch_detection(self, builder):
        x = builder.parameter("x", shape=(4, 3, 8, 8), type="fp16")
        builder.result("out", builder.op("Sigmoid", "act", [x], shape=(4, 3, 8, 8), dtype="fp16"))
        graph = builder.build()

        assert lower(graph).batch_size == 4
        assert lower(graph, config=LoweringConfig(detect_batch=False)).batch_size == 1

    def test_conversion_stages_can_be_disabled(self, builder):
        x = builder.parameter("x", type="fp16")
        builder.result("out", builder.op("Sigmoid", "act", [x], dtype="fp16"))

        model = lower(builder.build(), config=LoweringConfig(disable_conversion_stages=True))

        assert [s.type for s in model.stages] == [StageType.SIGMOID]

    def test_network_without_inputs_rejected(self):
        graph = SourceGraph.from_dict({"nodes": [
            {"name": "c", "type": "Constant", "outputs": [{"name": "c", "shape": [1]}], "params": {"value": 1}},
            {"name": "out", "type": "Result", "inputs": ["c"]},
        ]})
        with pytest.raises(GraphFormatError, match="has no inputs"):
            lower(graph)

    def test_lowering_is_deterministic(self, builder):
        graph = _unknown_layer_graph(builder)

        first = lower(graph, config=IGNORE)
        second = lower(graph, config=IGNORE)

        assert _wiring(first) == _wiring(second)
        assert len(first.datas) == len(second.datas)
        assert second.index != first.index


class TestUnsupportedLayers:
    def test_unknown_layer_is_fatal_by_default(self, builder):
        with pytest.raises(UnsupportedLayerError) as excinfo:
            lower(_unknown_layer_graph(builder))

        assert excinfo.value.code == ErrorCode.E009
        assert excinfo.value.node == "foo"
        assert 'Failed to compile layer "foo"' in str(excinfo.value)
        assert 'unsupported layer type "Foo"' in str(excinfo.value)

    def test_ignored_layer_becomes_placeholder(self, builder):
        model = lower(_unknown_layer_graph(builder), config=IGNORE)

        placeholder = model.get_stage("foo")
        assert placeholder.type == StageType.NONE
        assert placeholder.orig_node == "foo"
        assert placeholder.inputs == [model.get_data("act_out"), model.get_data("x@FP16")]
        assert placeholder.outputs == [model.get_data("out@FP16")]
        assert "foo" not in model.report.supported
        assert model.report.unsupported == ["foo"]
        assert model.report.diagnostics[0].code == DiagnosticCode.W002

    def test_unused_leaf_output_becomes_fake(self, builder):
        x = builder.parameter("x", type="fp16")
        builder.op("Split", "split", [x], dtype="fp16", outputs=["a", "b"])
        builder.result("out", "a")

        model = lower(builder.build(), config=IGNORE)

        split = model.get_stage("split")
        assert split.outputs[0].name == "out"
        assert split.outputs[1].usage == DataUsage.FAKE

    def test_custom_callbacks(self, builder):
        seen = {"supported": [], "unsupported": []}

        def on_unsupported(model, node, inputs, outputs, message):
            seen["unsupported"].append((node.name, message))
            model.add_new_stage(node.name, StageType.NONE, node, inputs, outputs)

        model = lower(
            _unknown_layer_graph(builder),
            on_unsupported=on_unsupported,
            on_supported=lambda node: seen["supported"].append(node.name),
        )

        assert seen["supported"] == ["act"]
        assert seen["unsupported"] == [("foo", 'unsupported layer type "Foo"')]
        assert model.get_stage("foo").type == StageType.NONE

    def test_rule_error_is_rolled_back_and_reported(self, builder, monkeypatch):
        def parse_boom(model, node, inputs, outputs):
            partial = model.add_new_data(node.name + "@partial", outputs[0].desc)
            model.add_new_stage(node.name + "@partial", StageType.SIGMOID, node, inputs, [partial])
            raise RuntimeError("kernel table is corrupt")

        monkeypatch.setitem(graphlower.rules._rule_registry, "Boom", parse_boom)
        x = builder.parameter("x")
        builder.result("out", builder.op("Boom", "boom", [x]))

        model = lower(builder.build(), config=IGNORE)

        assert model.get_stage("boom@partial") is None
        assert model.get_data("boom@partial") is None
        assert model.get_stage("boom").type == StageType.NONE
        errors = model.report.rule_errors
        assert [(d.code, d.node, d.message) for d in errors] == [
            (DiagnosticCode.W001, "boom", "kernel table is corrupt")
        ]
        assert model.report.unsupported == ["boom"]

    def test_rule_error_is_fatal_without_ignore(self, builder, monkeypatch):
        def parse_boom(model, node, inputs, outputs):
            raise RuntimeError("kernel table is corrupt")

        monkeypatch.setitem(graphlower.rules._rule_registry, "Boom", parse_boom)
        x = builder.parameter("x")
        builder.result("out", builder.op("Boom", "boom", [x]))

        with pytest.raises(UnsupportedLayerError, match="kernel table is corrupt"):
            lower(builder.build())

    def test_contract_violation_inside_rule_is_rule_error(self, builder):
        x = builder.parameter("x", shape=(4,), type="s32")
        builder.result("out", builder.op("Sigmoid", "act", [x], shape=(4,), dtype="s32"))

        model = lower(builder.build(), config=IGNORE)

        assert model.report.rule_errors[0].node == "act"
        assert "violates its contract" in model.report.rule_errors[0].message

    def test_explicit_unsupported_signal_propagates(self, builder, monkeypatch):
        def parse_refuse(model, node, inputs, outputs):
            raise UnsupportedLayerError("dynamic shapes are not supported", node=node.name)

        monkeypatch.setitem(graphlower.rules._rule_registry, "Refuse", parse_refuse)
        x = builder.parameter("x")
        builder.result("out", builder.op("Refuse", "refuse", [x]))

        with pytest.raises(UnsupportedLayerError, match="dynamic shapes"):
            lower(builder.build(), config=IGNORE)

    def test_skipped_layers_count_as_supported(self, builder):
        x = builder.parameter("x")
        builder.result("out", builder.op("Sigmoid", "act", [x]))

        model = lower(builder.build(), config=LoweringConfig(skip_layer_types=["Sigmoid"]))

        assert model.get_stage("act").type == StageType.NONE
        assert model.report.supported == ["act"]
        assert model.report.diagnostics[0].code == DiagnosticCode.W003

    def test_check_supported_layers(self, builder):
        supported = check_supported_layers(_unknown_layer_graph(builder))
        assert supported == {"act"}


class TestCustomRules:
    @staticmethod
    def _graph(builder, mode="fast"):
        x = builder.parameter("x", shape=(1, 8, 4, 4), type="fp16")
        y = builder.op("Sigmoid", "act", [x], shape=(1, 8, 4, 4), dtype="fp16", params={"mode": mode})
        builder.result("out", y)
        return builder.build()

    @staticmethod
    def _rule(kernels=None, **extra):
        doc = {
            "type": "Sigmoid",
            "where": {"mode": "fast"},
            "kernels": kernels or [
                {"entry": "sigmoid_fast", "source": "sigmoid.cl", "global_size": "X, Y, F / 4", "local_size": "1"}
            ],
        }
        doc.update(extra)
        return CustomRule.from_dict(doc)

    def test_matching_rule_shadows_builtin(self, builder):
        model = lower(self._graph(builder), custom_rules=[self._rule()])

        stage = model.get_stage("act")
        assert stage.type == StageType.CUSTOM
        assert stage.attrs["entry"] == "sigmoid_fast"
        assert stage.attrs["global_size"] == [4, 4, 2]
        assert stage.attrs["local_size"] == [1]
        assert model.report.supported == ["act"]

    def test_non_matching_rule_falls_back_to_builtin(self, builder):
        model = lower(self._graph(builder, mode="accurate"), custom_rules=[self._rule()])
        assert model.get_stage("act").type == StageType.SIGMOID

    def test_multi_kernel_rule_is_chained(self, builder):
        rule = self._rule(kernels=[
            {"entry": "reduce", "global_size": "F"},
            {"entry": "apply", "global_size": "X, Y"},
        ])
        model = lower(self._graph(builder), custom_rules=[rule])

        first = model.get_stage("act@reduce")
        second = model.get_stage("act@apply")
        assert first.outputs == second.inputs == [model.get_data("act@kernel0")]
        assert second.outputs == [model.get_data("out")]
        assert model.ordered_stages().index(first) < model.ordered_stages().index(second)

    def test_ambiguous_rules_are_fatal(self, builder):
        rules = [self._rule(name="a"), self._rule(name="b")]
        with pytest.raises(ConfigurationError) as excinfo:
            lower(self._graph(builder), custom_rules=rules)
        assert excinfo.value.code == ErrorCode.E005

    def test_platform_mismatch_is_fatal(self, builder):
        with pytest.raises(ConfigurationError) as excinfo:
            lower(
                self._graph(builder),
                custom_rules=[self._rule()],
                config=LoweringConfig(platform="MYRIAD_2"),
            )
        assert excinfo.value.code == ErrorCode.E004

    def test_rules_loaded_from_config_path(self, builder, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - type: Sigmoid\n"
            "    kernels:\n"
            "      - {entry: sig, source: sig.cl, global_size: \"X\"}\n"
        )
        model = lower(self._graph(builder), config=LoweringConfig(custom_rules_path=str(path)))
        assert model.get_stage("act").attrs["global_size"] == [4]


class TestPasses:
    def test_registered_pass_output_is_authoritative(self, sigmoid_graph):
        def rename(graph):
            return SourceGraph("renamed", graph.nodes, graph.tensors.values())

        model = lower(sigmoid_graph, passes=[rename])
        assert model.name == "renamed"

    def test_pass_must_return_a_graph(self, sigmoid_graph):
        with pytest.raises(GraphFormatError, match="returned NoneType"):
            FrontEnd(passes=[lambda graph: None]).build_initial_model(sigmoid_graph)

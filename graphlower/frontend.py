"""
Lowering Orchestrator

Drives one lowering pass over a source graph:

1. load and validate custom rules
2. run the upstream pass pipeline and detect the batch size
3. parse the network boundary
4. materialize input, output and constant buffers
5. add trivial-case copies and numeric-format conversions
6. lower every plain node through the rule table inside a failure boundary
7. clean up and check the target graph for cycles
"""

from enum import Enum
from typing import Callable, List, Optional, Sequence, Set

import numpy as np

from .config import LoweringConfig
from .convert import add_data_type_convert_stages
from .custom_rules import CustomRule, check_platform, load_custom_rules, select_custom_rule
from .env import CompileEnv, compile_env, get_compile_env
from .errors import (
    ConfigurationError,
    DiagnosticCode,
    ErrorCode,
    GraphFormatError,
    StructuralError,
    UnsupportedLayerError,
)
from .model import Data, Model
from .network import ParsedNetwork, parse_network
from .prepare import GraphPass, PassManager, detect_network_batch
from .rules import CUSTOM, get_rule
from .source import SourceGraph, SourceNode
from .stages import add_none_stage
from .trivial import process_trivial_cases
from .types import DataDesc, DataType
from .utils.logger import get_logger

logger = get_logger()

UnsupportedCallback = Callable[[Model, SourceNode, List[Data], List[Optional[Data]], str], None]
SupportedCallback = Callable[[SourceNode], None]


class NodeOutcome(str, Enum):
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"


class FrontEnd:
    """Lowers source graphs into target models."""

    def __init__(
        self,
        config: Optional[LoweringConfig] = None,
        custom_rules: Optional[Sequence[CustomRule]] = None,
        passes: Optional[Sequence[GraphPass]] = None,
    ):
        self.config = config or LoweringConfig()
        self._user_custom_rules = list(custom_rules or [])
        self._passes = list(passes or [])

    # =========================================================================
    # Entry points
    # =========================================================================

    def build_initial_model(self, graph: SourceGraph) -> Model:
        """Lower ``graph`` with the default unsupported-layer policy."""
        return self.run_common_passes(graph, self.default_on_unsupported)

    def check_supported_layers(self, graph: SourceGraph) -> Set[str]:
        """Names of the nodes the rule table can lower, never raising for unknown layers."""
        supported: Set[str] = set()

        def on_supported(node: SourceNode):
            supported.add(node.name)

        def on_unsupported(model, node, inputs, outputs, message):
            add_none_stage(model, node.name, node, inputs, outputs)

        self.run_common_passes(graph, on_unsupported, on_supported)
        return supported

    def run_common_passes(
        self,
        graph: SourceGraph,
        on_unsupported: UnsupportedCallback,
        on_supported: Optional[SupportedCallback] = None,
    ) -> Model:
        env = CompileEnv(config=self.config)
        with compile_env(env), logger.contextualize(model=graph.name):
            return self._run_common_passes(graph, env, on_unsupported, on_supported)

    def default_on_unsupported(
        self,
        model: Model,
        node: SourceNode,
        inputs: List[Data],
        outputs: List[Optional[Data]],
        message: str,
    ) -> None:
        if not get_compile_env().config.ignore_unknown_layers:
            raise UnsupportedLayerError(f'Failed to compile layer "{node.name}": {message}', node=node.name)
        add_none_stage(model, node.name, node, inputs, outputs)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _run_common_passes(
        self,
        graph: SourceGraph,
        env: CompileEnv,
        on_unsupported: UnsupportedCallback,
        on_supported: Optional[SupportedCallback],
    ) -> Model:
        logger.info(f"Lowering network {graph.name}")

        env.reset()
        env.custom_rules = self._load_custom_rules()

        graph = PassManager(self._passes).run(graph)
        env.graph = graph

        network = parse_network(graph)

        model = Model(graph.name)
        if self.config.detect_batch:
            model.batch_size = detect_network_batch(graph, network.parameters)
        logger.debug(f"Model {model.name} #{model.index}, batch size {model.batch_size}")

        self._get_input_and_output_data(model, graph, network)
        self._get_const_data(model, graph, network)

        process_trivial_cases(model)
        if not self.config.disable_conversion_stages:
            add_data_type_convert_stages(model, self.config)

        logger.debug(f"Parse {len(network.ordered_ops)} layers")
        for node in network.ordered_ops:
            outcome = self._parse_node(model, graph, env, node, on_unsupported, on_supported)
            logger.trace(f"{node!r}: {outcome.value}")

        model.clean_up()
        model.ordered_stages()

        report = model.report
        logger.info(
            f"Lowered {graph.name}: {len(model.stages)} stages, {len(model.datas)} buffers, "
            f"{len(report.supported)} supported, {len(report.unsupported)} unsupported layers"
        )
        for diagnostic in report:
            logger.debug(str(diagnostic))

        env.reset()
        return model

    def _load_custom_rules(self) -> List[CustomRule]:
        rules = list(self._user_custom_rules)
        if self.config.custom_rules_path:
            logger.debug(f"Parse custom rules : {self.config.custom_rules_path}")
            rules.extend(load_custom_rules(self.config.custom_rules_path))
        if rules:
            check_platform(rules, self.config.platform)
        return rules

    def _get_input_and_output_data(self, model: Model, graph: SourceGraph, network: ParsedNetwork) -> None:
        for param in network.parameters:
            tensor = graph.tensor(param.outputs[0])
            data = model.add_input_data(param.name, DataDesc(tensor.type, tensor.shape))
            model.registry.bind(data, tensor)
            logger.trace(f"Input {data!r} for tensor {tensor.name}")

        for result in network.results:
            tensor = graph.tensor(result.inputs[0])
            data = model.add_output_data(result.name, DataDesc(tensor.type, tensor.shape))
            if model.registry.resolve(tensor) is None:
                model.registry.bind(data, tensor)
            else:
                # Trivial case or a second result on one tensor
                model.registry.attach_origin(data, tensor)
            logger.trace(f"Output {data!r} for tensor {tensor.name}")

    def _get_const_data(self, model: Model, graph: SourceGraph, network: ParsedNetwork) -> None:
        for node in network.constants:
            tensor = graph.tensor(node.outputs[0])
            if graph.is_leaf(tensor.name):
                continue
            if "value" not in node.params:
                raise GraphFormatError("Constant has no 'value' parameter", node=node.name)

            dtype = DataType.FP16 if tensor.type == DataType.FP32 else tensor.type
            content = np.asarray(node.params["value"], dtype=tensor.type.numpy_dtype)
            if tensor.shape and all(d is not None for d in tensor.shape):
                if content.size == 1:
                    content = np.full(tensor.shape, content.reshape(()), dtype=content.dtype)
                elif content.size == int(np.prod(tensor.shape)):
                    content = content.reshape(tensor.shape)
                else:
                    raise GraphFormatError(
                        f"Constant value has {content.size} elements, shape {tensor.shape} needs "
                        f"{int(np.prod(tensor.shape))}",
                        node=node.name,
                    )
            content = content.astype(dtype.numpy_dtype)

            shape = tensor.shape or content.shape
            data = model.add_const_data(tensor.name, DataDesc(dtype, tuple(shape)), content)
            # An Output buffer reading the constant keeps only its origin
            model.registry.rebind(tensor, data)

    def _get_output_data(self, model: Model, graph: SourceGraph, tensor_name: str) -> Optional[Data]:
        data = model.registry.resolve(tensor_name)
        if data is not None:
            return data
        if graph.is_leaf(tensor_name):
            return None
        tensor = graph.tensor(tensor_name)
        dtype = DataType.FP16 if tensor.type == DataType.FP32 else tensor.type
        data = model.add_new_data(tensor.name, DataDesc(dtype, tensor.shape))
        model.registry.bind(data, tensor)
        return data

    def _parse_node(
        self,
        model: Model,
        graph: SourceGraph,
        env: CompileEnv,
        node: SourceNode,
        on_unsupported: UnsupportedCallback,
        on_supported: Optional[SupportedCallback],
    ) -> NodeOutcome:
        report = model.report

        inputs: List[Data] = []
        for tensor_name in node.inputs:
            data = model.registry.resolve(tensor_name)
            if data is None:
                raise StructuralError(
                    ErrorCode.E008,
                    f"input tensor '{tensor_name}' has no lowered buffer",
                    node=node.name,
                )
            inputs.append(data)
        outputs = [self._get_output_data(model, graph, t) for t in node.outputs]

        if self.config.skips(node.type):
            add_none_stage(model, node.name, node, inputs, outputs)
            report.record(DiagnosticCode.W003, node.name, node.type, "skipped by configuration")
            report.record_supported(node.name)
            if on_supported is not None:
                on_supported(node)
            return NodeOutcome.SUPPORTED

        layer_type = node.type
        if env.custom_rules:
            custom_rule = select_custom_rule(env.custom_rules, node, graph)
            if custom_rule is not None:
                env.custom_matches[node.name] = custom_rule
                layer_type = CUSTOM
                logger.trace(f"{node!r} matched custom rule {custom_rule.display_name}")

        parse = get_rule(layer_type)
        if parse is None:
            message = f'unsupported layer type "{layer_type}"'
            report.record(DiagnosticCode.W002, node.name, node.type, message)
            on_unsupported(model, node, inputs, outputs, message)
            return NodeOutcome.UNSUPPORTED

        mark = model.mark()
        try:
            parse(model, node, inputs, outputs)
        except (UnsupportedLayerError, ConfigurationError, StructuralError):
            raise
        except Exception as e:
            model.rollback(mark)
            report.record(DiagnosticCode.W001, node.name, node.type, str(e))
            logger.debug(f"Rule for {node!r} failed: {e}")
            on_unsupported(model, node, inputs, outputs, str(e))
            return NodeOutcome.UNSUPPORTED

        report.record_supported(node.name)
        if on_supported is not None:
            on_supported(node)
        return NodeOutcome.SUPPORTED


def lower(
    graph: SourceGraph,
    custom_rules: Optional[Sequence[CustomRule]] = None,
    config: Optional[LoweringConfig] = None,
    on_unsupported: Optional[UnsupportedCallback] = None,
    on_supported: Optional[SupportedCallback] = None,
    passes: Optional[Sequence[GraphPass]] = None,
) -> Model:
    """Lower ``graph`` into a target model.

    Without ``on_unsupported`` an unsupported layer is fatal unless
    ``config.ignore_unknown_layers`` is set, in which case it becomes a
    placeholder stage.

    Raises:
        UnsupportedLayerError: unsupported layer under the default policy.
        ConfigurationError: invalid bindings, aliasing, platform or custom rules.
        StructuralError: cycles or unresolved inputs.
    """
    frontend = FrontEnd(config, custom_rules, passes)
    return frontend.run_common_passes(
        graph,
        on_unsupported if on_unsupported is not None else frontend.default_on_unsupported,
        on_supported,
    )


def check_supported_layers(
    graph: SourceGraph,
    custom_rules: Optional[Sequence[CustomRule]] = None,
    config: Optional[LoweringConfig] = None,
) -> Set[str]:
    return FrontEnd(config, custom_rules).check_supported_layers(graph)

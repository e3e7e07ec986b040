"""
Upstream graph passes run before lowering.

The pass output graph is authoritative: lowering never looks at the graph the
caller passed in once the pipeline has run.
"""

from typing import Callable, List, Optional, Sequence, Tuple

from .errors import GraphFormatError
from .source import SourceGraph, SourceNode, SourceTensor
from .types import DataType
from .utils.logger import get_logger

logger = get_logger()

GraphPass = Callable[[SourceGraph], SourceGraph]


def convert_precision(graph: SourceGraph) -> SourceGraph:
    """Map element types without a target equivalent (i64, u64, u32, bool) to s32."""

    def convert(tensor: SourceTensor) -> DataType:
        return tensor.type if tensor.type.is_target_native() else DataType.S32

    if all(t.type.is_target_native() for t in graph.tensors.values()):
        return graph
    return graph.with_tensor_types(convert)


class PassManager:
    """Runs precision normalization first, then the registered passes in order."""

    def __init__(self, passes: Optional[Sequence[GraphPass]] = None):
        self._passes: List[Tuple[str, GraphPass]] = [("convert_precision", convert_precision)]
        for graph_pass in passes or ():
            self.register(graph_pass)

    def register(self, graph_pass: GraphPass, name: Optional[str] = None) -> None:
        self._passes.append((name or getattr(graph_pass, "__name__", repr(graph_pass)), graph_pass))

    def run(self, graph: SourceGraph) -> SourceGraph:
        for name, graph_pass in self._passes:
            logger.debug(f"Run pass {name}")
            result = graph_pass(graph)
            if not isinstance(result, SourceGraph):
                raise GraphFormatError(
                    f"pass '{name}' returned {type(result).__name__} instead of a SourceGraph"
                )
            graph = result
        return graph


def detect_network_batch(graph: SourceGraph, parameters: Sequence[SourceNode]) -> int:
    """Leading dim shared by all network inputs, 1 if there is none."""
    batches = set()
    for param in parameters:
        shape = graph.tensor(param.outputs[0]).shape
        if len(shape) < 2 or shape[0] is None:
            return 1
        batches.add(shape[0])
    if len(batches) != 1:
        logger.debug(f"Network inputs disagree on batch size: {sorted(batches)}")
        return 1
    return batches.pop()

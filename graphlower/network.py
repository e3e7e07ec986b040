"""
Network boundary parsing: split the ordered source nodes into parameters,
results, constants and plain operators.
"""

from dataclasses import dataclass, field
from typing import List

from .errors import GraphFormatError
from .source import CONSTANT, PARAMETER, RESULT, SourceGraph, SourceNode
from .utils.logger import get_logger

logger = get_logger()


@dataclass
class ParsedNetwork:
    parameters: List[SourceNode] = field(default_factory=list)
    results: List[SourceNode] = field(default_factory=list)
    constants: List[SourceNode] = field(default_factory=list)
    ordered_ops: List[SourceNode] = field(default_factory=list)


def parse_network(graph: SourceGraph) -> ParsedNetwork:
    """Partition ``graph`` in topological order.

    Raises:
        GraphFormatError: the network has no inputs or no outputs, or a
            Constant node does not have exactly one output.
        StructuralError: the graph contains a cycle.
    """
    logger.debug(f"Parse network : {graph.name}")

    out = ParsedNetwork()
    for node in graph.ordered_nodes():
        if node.type == PARAMETER:
            logger.trace(f"Found Parameter node : {node.name}")
            out.parameters.append(node)
        elif node.type == RESULT:
            logger.trace(f"Found Result node : {node.name}")
            out.results.append(node)
        elif node.type == CONSTANT:
            logger.trace(f"Found Const layer : {node.name}")
            if len(node.outputs) != 1:
                raise GraphFormatError(
                    f"Const layer has unsupported number of outputs {len(node.outputs)}",
                    node=node.name,
                )
            out.constants.append(node)
        else:
            logger.trace(f"Found plain layer : {node.name}")
            out.ordered_ops.append(node)

    logger.debug(f"Got {len(out.parameters)} inputs and {len(out.results)} outputs")
    if not out.parameters:
        raise GraphFormatError(f"network '{graph.name}' has no inputs")
    if not out.results:
        raise GraphFormatError(f"network '{graph.name}' has no outputs")
    return out

"""
Source Graph: the device-independent network to be lowered.

The graph is frozen once built. Nodes are compared by identity so they can be
used directly as traversal handles.

Example document (YAML or JSON):
    name: tiny
    nodes:
      - {name: x, type: Parameter, outputs: [{name: x, type: fp32, shape: [1, 3, 8, 8]}]}
      - {name: act, type: Sigmoid, inputs: [x], outputs: [{name: y, type: fp32, shape: [1, 3, 8, 8]}]}
      - {name: y_out, type: Result, inputs: [y]}
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import ErrorCode, GraphFormatError, StructuralError
from .traversal import bfs
from .types import DataType, Dims

PARAMETER = "Parameter"
RESULT = "Result"
CONSTANT = "Constant"


@dataclass(frozen=True)
class SourceTensor:
    """One output slot of a producing node. The name is its identity."""

    name: str
    type: DataType = DataType.FP32
    shape: Dims = ()

    def with_type(self, type: DataType) -> "SourceTensor":
        return SourceTensor(self.name, type, self.shape)


@dataclass(eq=False, repr=False)
class SourceNode:
    """Operator instance in the source graph."""

    name: str
    type: str
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.inputs = tuple(self.inputs)
        self.outputs = tuple(self.outputs)
        self.params = MappingProxyType(dict(self.params))

    def __repr__(self) -> str:
        return f"{self.type}:{self.name}"


class _Root:
    """Virtual entry point of the ordered walk over a source graph."""

    def __repr__(self) -> str:
        return "<root>"


class SourceGraph:
    """Frozen network of source nodes and tensors."""

    def __init__(
        self,
        name: str,
        nodes: Iterable[SourceNode],
        tensors: Iterable[SourceTensor],
    ):
        self.name = name
        self._nodes: Tuple[SourceNode, ...] = tuple(nodes)
        self._tensors: Dict[str, SourceTensor] = {}
        self._by_name: Dict[str, SourceNode] = {}
        self._producers: Dict[str, SourceNode] = {}
        # One entry per consuming input slot
        self._consumers: Dict[str, List[SourceNode]] = {}

        for tensor in tensors:
            if tensor.name in self._tensors:
                raise GraphFormatError(f"tensor '{tensor.name}' declared twice")
            self._tensors[tensor.name] = tensor
            self._consumers[tensor.name] = []

        for node in self._nodes:
            if node.name in self._by_name:
                raise GraphFormatError("duplicate node name", node=node.name)
            self._by_name[node.name] = node
            self._check_placeholder_arity(node)
            for out in node.outputs:
                if out not in self._tensors:
                    raise GraphFormatError(f"output tensor '{out}' is not declared", node=node.name)
                if out in self._producers:
                    raise GraphFormatError(
                        f"tensor '{out}' is already produced by '{self._producers[out].name}'",
                        node=node.name,
                    )
                self._producers[out] = node

        for node in self._nodes:
            for inp in node.inputs:
                if inp not in self._producers:
                    raise GraphFormatError(
                        f"input tensor '{inp}' has no producer",
                        node=node.name,
                        hint="declare it as the output of a Parameter or Constant node",
                    )
                self._consumers[inp].append(node)

        self._ordered: Optional[Tuple[SourceNode, ...]] = None

    @staticmethod
    def _check_placeholder_arity(node: SourceNode):
        if node.type == PARAMETER and (node.inputs or len(node.outputs) != 1):
            raise GraphFormatError("Parameter must have no inputs and one output", node=node.name)
        if node.type == RESULT and (len(node.inputs) != 1 or node.outputs):
            raise GraphFormatError("Result must have one input and no outputs", node=node.name)

    # =========================================================================
    # Lookup
    # =========================================================================

    @property
    def nodes(self) -> Tuple[SourceNode, ...]:
        return self._nodes

    @property
    def tensors(self) -> Mapping[str, SourceTensor]:
        return MappingProxyType(self._tensors)

    def get_node(self, name: str) -> Optional[SourceNode]:
        return self._by_name.get(name)

    def tensor(self, name: str) -> SourceTensor:
        return self._tensors[name]

    def producer(self, tensor: str) -> Optional[SourceNode]:
        return self._producers.get(tensor)

    def consumers(self, tensor: str) -> List[SourceNode]:
        """Consuming nodes, once per input slot that reads ``tensor``."""
        return list(self._consumers.get(tensor, ()))

    def is_leaf(self, tensor: str) -> bool:
        return not self._consumers.get(tensor)

    def parameters(self) -> List[SourceNode]:
        return [n for n in self._nodes if n.type == PARAMETER]

    def results(self) -> List[SourceNode]:
        return [n for n in self._nodes if n.type == RESULT]

    # =========================================================================
    # Ordering
    # =========================================================================

    def ordered_nodes(self) -> Tuple[SourceNode, ...]:
        """Nodes in an order where every producer precedes its consumers.

        Raises:
            StructuralError: the graph contains a cycle.
        """
        if self._ordered is not None:
            return self._ordered

        root = _Root()
        order: List[SourceNode] = []

        def num_entries(node: SourceNode) -> int:
            return max(1, len(node.inputs))

        def visit(node) -> bool:
            if node is not root:
                order.append(node)
            return True

        def move_forward(queue: Deque, node):
            if node is root:
                queue.extend(n for n in self._nodes if not n.inputs)
                return
            for out in node.outputs:
                queue.extend(self._consumers[out])

        bfs(root, num_entries, visit, move_forward)

        if len(order) != len(self._nodes):
            seen = set(order)
            stuck = next(n for n in self._nodes if n not in seen)
            raise StructuralError(
                ErrorCode.E006,
                "node is part of a cycle and can never be ordered",
                node=stuck.name,
            )

        self._ordered = tuple(order)
        return self._ordered

    # =========================================================================
    # Rewriting
    # =========================================================================

    def with_tensor_types(self, convert: Callable[[SourceTensor], DataType]) -> "SourceGraph":
        """Return a copy of the graph with tensor types mapped by ``convert``."""
        tensors = [t.with_type(convert(t)) for t in self._tensors.values()]
        nodes = [
            SourceNode(n.name, n.type, n.inputs, n.outputs, dict(n.params))
            for n in self._nodes
        ]
        return SourceGraph(self.name, nodes, tensors)

    # =========================================================================
    # Construction from documents
    # =========================================================================

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> "SourceGraph":
        """Build a graph from a parsed YAML/JSON document."""
        if not isinstance(doc, Mapping) or "nodes" not in doc:
            raise GraphFormatError("graph document must be a mapping with a 'nodes' list")

        tensors: Dict[str, SourceTensor] = {}
        for entry in doc.get("tensors", []) or []:
            tensor = _tensor_from_dict(entry)
            tensors[tensor.name] = tensor

        nodes = []
        for entry in doc["nodes"]:
            if "name" not in entry or "type" not in entry:
                raise GraphFormatError(f"node entry needs 'name' and 'type': {entry!r}")
            outputs = []
            for out in entry.get("outputs", []) or []:
                if isinstance(out, Mapping):
                    tensor = _tensor_from_dict(out)
                    if tensor.name in tensors:
                        raise GraphFormatError(f"tensor '{tensor.name}' declared twice", node=entry["name"])
                    tensors[tensor.name] = tensor
                    outputs.append(tensor.name)
                else:
                    outputs.append(str(out))
            nodes.append(SourceNode(
                name=str(entry["name"]),
                type=str(entry["type"]),
                inputs=tuple(str(i) for i in entry.get("inputs", []) or []),
                outputs=tuple(outputs),
                params=entry.get("params", {}) or {},
            ))

        return cls(str(doc.get("name", "network")), nodes, tensors.values())


def _tensor_from_dict(entry: Union[Mapping[str, Any], str]) -> SourceTensor:
    if not isinstance(entry, Mapping) or "name" not in entry:
        raise GraphFormatError(f"tensor entry needs a 'name': {entry!r}")
    try:
        dtype = DataType.from_string(str(entry.get("type", "fp32")))
    except ValueError as e:
        raise GraphFormatError(str(e)) from e
    shape = tuple(None if d is None or d == "?" else int(d) for d in entry.get("shape", []) or [])
    return SourceTensor(str(entry["name"]), dtype, shape)


def load_source_graph(path: Union[str, Path]) -> SourceGraph:
    """Load a source graph from a ``.yaml``/``.yml`` or ``.json`` file."""
    path = Path(path)
    if not path.exists():
        raise GraphFormatError(f"graph file not found: {path}")
    with open(path, encoding="utf-8") as f:
        try:
            if path.suffix == ".json":
                doc = json.load(f)
            else:
                doc = yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise GraphFormatError(f"cannot parse graph file {path}: {e}") from e
    return SourceGraph.from_dict(doc)

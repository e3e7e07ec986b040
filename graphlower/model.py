"""
Target Graph: stages operating on typed, shaped data buffers.

The model owns every stage and buffer. Stages are connected to buffers through
edge objects so that consumers and producers can be rewired in place by the
conversion passes.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .data_registry import DataRegistry, TensorLike
from .errors import ErrorCode, LoweringReport, StageContractError, StructuralError
from .source import SourceNode
from .stages import StageType, check_stage_contract
from .traversal import bfs, dfs
from .types import DataDesc, DataUsage
from .utils.logger import get_logger

logger = get_logger()

# Process-wide compilation counter
_model_counter = itertools.count()
_model_counter_lock = threading.Lock()


def next_model_index() -> int:
    with _model_counter_lock:
        return next(_model_counter)


@dataclass(eq=False)
class StageInput:
    """Edge from a buffer into an input port of a stage."""

    consumer: "Stage"
    port_ind: int
    input: "Data"


@dataclass(eq=False)
class StageOutput:
    """Edge from an output port of a stage into a buffer."""

    producer: "Stage"
    port_ind: int
    output: "Data"


@dataclass(eq=False)
class Data:
    """Typed, shaped buffer in the target graph."""

    name: str
    desc: DataDesc
    usage: DataUsage
    content: Optional[np.ndarray] = None
    producer_edge: Optional[StageOutput] = None
    consumer_edges: List[StageInput] = field(default_factory=list)
    # Name of the source tensor this buffer was created for
    orig_tensor: Optional[str] = None
    attrs: Dict[str, Any] = field(default_factory=dict)

    @property
    def producer(self) -> Optional["Stage"]:
        return self.producer_edge.producer if self.producer_edge is not None else None

    @property
    def consumers(self) -> List["Stage"]:
        """Consuming stages, once per consuming port."""
        return [e.consumer for e in self.consumer_edges]

    def __repr__(self) -> str:
        return f"Data({self.name!r}, {self.desc}, {self.usage.value})"


@dataclass(eq=False)
class Stage:
    """Hardware operation in the target graph."""

    name: str
    type: StageType
    # Name of the source node the stage was lowered from
    orig_node: Optional[str] = None
    input_edges: List[StageInput] = field(default_factory=list)
    output_edges: List[StageOutput] = field(default_factory=list)
    attrs: Dict[str, Any] = field(default_factory=dict)

    @property
    def inputs(self) -> List[Data]:
        return [e.input for e in self.input_edges]

    @property
    def outputs(self) -> List[Data]:
        return [e.output for e in self.output_edges]

    def input(self, index: int) -> Data:
        return self.input_edges[index].input

    def output(self, index: int) -> Data:
        return self.output_edges[index].output

    def __repr__(self) -> str:
        return f"Stage({self.name!r}, {self.type.value})"


class _StageRoot:
    def __repr__(self) -> str:
        return "<model>"


class Model:
    """Target graph produced by one lowering pass."""

    def __init__(self, name: str, index: Optional[int] = None):
        self.name = name
        self.index = next_model_index() if index is None else index
        self.attrs: Dict[str, Any] = {}
        self.batch_size = 1
        self.registry = DataRegistry()
        self.report = LoweringReport()
        self._datas: List[Data] = []
        self._stages: List[Stage] = []
        self._fake_counter = 0

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def datas(self) -> Tuple[Data, ...]:
        return tuple(self._datas)

    @property
    def stages(self) -> Tuple[Stage, ...]:
        return tuple(self._stages)

    def get_data(self, name: str) -> Optional[Data]:
        """First buffer with the given name, in creation order."""
        for data in self._datas:
            if data.name == name:
                return data
        return None

    def get_stage(self, name: str) -> Optional[Stage]:
        for stage in self._stages:
            if stage.name == name:
                return stage
        return None

    def data_for_tensor(self, tensor: TensorLike) -> Optional[Data]:
        return self.registry.resolve(tensor)

    def datas_by_usage(self, usage: DataUsage) -> List[Data]:
        return [d for d in self._datas if d.usage == usage]

    # =========================================================================
    # Buffer creation
    # =========================================================================

    def _add_data(
        self,
        name: str,
        desc: DataDesc,
        usage: DataUsage,
        content: Optional[np.ndarray] = None,
    ) -> Data:
        data = Data(name, desc, usage, content)
        self._datas.append(data)
        return data

    def add_input_data(self, name: str, desc: DataDesc) -> Data:
        return self._add_data(name, desc, DataUsage.INPUT)

    def add_output_data(self, name: str, desc: DataDesc) -> Data:
        return self._add_data(name, desc, DataUsage.OUTPUT)

    def add_new_data(self, name: str, desc: DataDesc) -> Data:
        return self._add_data(name, desc, DataUsage.INTERMEDIATE)

    def add_const_data(self, name: str, desc: DataDesc, content: np.ndarray) -> Data:
        return self._add_data(name, desc, DataUsage.CONST, content)

    def add_fake_data(self) -> Data:
        self._fake_counter += 1
        return self._add_data(f"@fake@{self._fake_counter}", DataDesc(), DataUsage.FAKE)

    def duplicate_data(self, orig: Data, postfix: str, desc: Optional[DataDesc] = None) -> Data:
        """New buffer named ``orig.name + postfix``.

        Constants stay constants (content is shared), everything else becomes
        an intermediate buffer.
        """
        desc = desc if desc is not None else orig.desc
        if orig.usage == DataUsage.CONST:
            content = orig.content
            if content is not None and content.dtype != desc.type.numpy_dtype:
                content = content.astype(desc.type.numpy_dtype)
            return self.add_const_data(orig.name + postfix, desc, content)
        return self.add_new_data(orig.name + postfix, desc)

    # =========================================================================
    # Stage creation and rewiring
    # =========================================================================

    def add_new_stage(
        self,
        name: str,
        stage_type: StageType,
        orig_node: Union[SourceNode, str, None],
        inputs: Sequence[Optional[Data]],
        outputs: Sequence[Optional[Data]],
        attrs: Optional[Dict[str, Any]] = None,
    ) -> Stage:
        """Create a stage and connect it to its buffers.

        ``None`` outputs are replaced by fresh fake buffers.

        Raises:
            StageContractError: missing input, output that cannot be written,
                or ports rejected by the stage type's contract.
        """
        node_name = orig_node.name if isinstance(orig_node, SourceNode) else orig_node

        for i, data in enumerate(inputs):
            if data is None:
                raise StageContractError(f"stage '{name}' input {i} is missing", node=node_name)

        resolved_outputs: List[Data] = []
        for i, data in enumerate(outputs):
            if data is None:
                resolved_outputs.append(self.add_fake_data())
                continue
            if data.usage in (DataUsage.INPUT, DataUsage.CONST):
                raise StageContractError(
                    f"stage '{name}' output {i} writes to {data.usage.value} buffer '{data.name}'",
                    node=node_name,
                )
            if data.usage != DataUsage.FAKE and data.producer_edge is not None:
                raise StageContractError(
                    f"stage '{name}' output {i} buffer '{data.name}' is already produced by "
                    f"'{data.producer.name}'",
                    node=node_name,
                )
            resolved_outputs.append(data)

        check_stage_contract(stage_type, name, inputs, resolved_outputs)

        stage = Stage(name, stage_type, node_name, attrs=dict(attrs or {}))
        for port, data in enumerate(inputs):
            edge = StageInput(stage, port, data)
            stage.input_edges.append(edge)
            data.consumer_edges.append(edge)
        for port, data in enumerate(resolved_outputs):
            edge = StageOutput(stage, port, data)
            stage.output_edges.append(edge)
            data.producer_edge = edge
        self._stages.append(stage)
        return stage

    def replace_stage_input(self, edge: StageInput, data: Data) -> None:
        edge.input.consumer_edges.remove(edge)
        edge.input = data
        data.consumer_edges.append(edge)

    def replace_stage_output(self, edge: StageOutput, data: Data) -> None:
        if data.usage != DataUsage.FAKE and data.producer_edge is not None:
            raise StageContractError(
                f"buffer '{data.name}' is already produced by '{data.producer.name}'",
                node=edge.producer.orig_node,
            )
        edge.output.producer_edge = None
        edge.output = data
        data.producer_edge = edge

    def remove_stage(self, stage: Stage) -> None:
        for edge in stage.input_edges:
            edge.input.consumer_edges.remove(edge)
        for edge in stage.output_edges:
            if edge.output.producer_edge is edge:
                edge.output.producer_edge = None
        stage.input_edges.clear()
        stage.output_edges.clear()
        self._stages.remove(stage)

    def remove_data(self, data: Data) -> None:
        if data.producer_edge is not None or data.consumer_edges:
            raise StageContractError(f"buffer '{data.name}' is still connected")
        self.registry.forget(data)
        self._datas.remove(data)

    # =========================================================================
    # Transactions
    # =========================================================================

    def mark(self) -> Tuple[int, int]:
        """Snapshot the current stage and buffer counts."""
        return len(self._datas), len(self._stages)

    def rollback(self, mark: Tuple[int, int]) -> None:
        """Remove every stage and buffer created after ``mark``.

        Rewiring of pre-existing stages is not undone.
        """
        num_datas, num_stages = mark
        for stage in reversed(self._stages[num_stages:]):
            self.remove_stage(stage)
        for data in reversed(self._datas[num_datas:]):
            if data.producer_edge is None and not data.consumer_edges:
                self.remove_data(data)

    # =========================================================================
    # Whole-graph operations
    # =========================================================================

    def ordered_stages(self) -> List[Stage]:
        """Stages with every producer before its consumers.

        Raises:
            StructuralError: the target graph contains a cycle.
        """
        root = _StageRoot()
        order: List[Stage] = []

        def num_entries(stage: Stage) -> int:
            produced = sum(1 for e in stage.input_edges if e.input.producer_edge is not None)
            return max(1, produced)

        def visit(stage) -> bool:
            if stage is not root:
                order.append(stage)
            return True

        def move_forward(queue, stage):
            if stage is root:
                queue.extend(
                    s for s in self._stages
                    if all(e.input.producer_edge is None for e in s.input_edges)
                )
                return
            for out in stage.outputs:
                queue.extend(out.consumers)

        bfs(root, num_entries, visit, move_forward)

        if len(order) != len(self._stages):
            seen = set(order)
            stuck = next(s for s in self._stages if s not in seen)
            raise StructuralError(
                ErrorCode.E006,
                f"stage '{stuck.name}' is part of a cycle",
                node=stuck.orig_node,
            )
        return order

    def clean_up(self) -> None:
        """Remove stages and buffers that do not contribute to any output."""
        root = _StageRoot()

        def get_next(item) -> Iterable:
            if item is root:
                return self.datas_by_usage(DataUsage.OUTPUT)
            if isinstance(item, Data):
                return [item.producer] if item.producer is not None else []
            # Side outputs of a live stage stay alive with it
            return item.inputs + item.outputs

        reachable = dfs(root, get_next, lambda _: True)

        dead_stages = [s for s in self._stages if s not in reachable]
        for stage in dead_stages:
            self.remove_stage(stage)

        dead_datas = [
            d for d in self._datas
            if d not in reachable and d.usage not in (DataUsage.INPUT, DataUsage.OUTPUT)
        ]
        for data in dead_datas:
            self.remove_data(data)

        if dead_stages or dead_datas:
            logger.debug(
                f"[{self.name}] cleanup removed {len(dead_stages)} stages, {len(dead_datas)} buffers"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data summary of the model for reports."""
        return {
            "name": self.name,
            "index": self.index,
            "batch_size": self.batch_size,
            "datas": [
                {
                    "name": d.name,
                    "type": d.desc.type.value,
                    "dims": list(d.desc.dims),
                    "usage": d.usage.value,
                    "origin": d.orig_tensor,
                }
                for d in self._datas
            ],
            "stages": [
                {
                    "name": s.name,
                    "type": s.type.value,
                    "origin": s.orig_node,
                    "inputs": [d.name for d in s.inputs],
                    "outputs": [d.name for d in s.outputs],
                    "attrs": {k: _plain(v) for k, v in s.attrs.items()},
                }
                for s in self._stages
            ],
        }


def _plain(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value

from typing import Any, Dict, List, Optional, Sequence

import pytest

from graphlower.source import SourceGraph
from graphlower.utils.logger import reset_logger


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "cli: tests that drive the command line entry point"
    )


class GraphBuilder:
    """Small helper to assemble source graph documents in tests."""

    def __init__(self, name: str = "net"):
        self.name = name
        self.nodes: List[Dict[str, Any]] = []

    def parameter(self, name: str, shape: Sequence[int] = (1, 3, 8, 8), type: str = "fp32") -> str:
        self.nodes.append({
            "name": name,
            "type": "Parameter",
            "outputs": [{"name": name, "type": type, "shape": list(shape)}],
        })
        return name

    def constant(self, name: str, value: Any, shape: Sequence[int] = (), type: str = "fp32") -> str:
        self.nodes.append({
            "name": name,
            "type": "Constant",
            "outputs": [{"name": name, "type": type, "shape": list(shape)}],
            "params": {"value": value},
        })
        return name

    def op(
        self,
        type: str,
        name: str,
        inputs: Sequence[str],
        shape: Sequence[int] = (1, 3, 8, 8),
        dtype: str = "fp32",
        params: Optional[Dict[str, Any]] = None,
        outputs: Optional[Sequence[str]] = None,
    ) -> str:
        outputs = list(outputs) if outputs is not None else [f"{name}_out"]
        self.nodes.append({
            "name": name,
            "type": type,
            "inputs": list(inputs),
            "outputs": [{"name": o, "type": dtype, "shape": list(shape)} for o in outputs],
            "params": params or {},
        })
        return outputs[0]

    def result(self, name: str, tensor: str) -> None:
        self.nodes.append({"name": name, "type": "Result", "inputs": [tensor]})

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "nodes": list(self.nodes)}

    def build(self) -> SourceGraph:
        return SourceGraph.from_dict(self.to_dict())


@pytest.fixture(autouse=True)
def _reset_logger():
    yield
    reset_logger()


@pytest.fixture
def builder() -> GraphBuilder:
    return GraphBuilder()


@pytest.fixture
def sigmoid_graph() -> SourceGraph:
    """x (fp32) -> Sigmoid -> Result."""
    b = GraphBuilder("sigmoid_net")
    x = b.parameter("x")
    y = b.op("Sigmoid", "act", [x])
    b.result("out", y)
    return b.build()

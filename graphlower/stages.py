"""
Stage types, their input/output contracts and stage construction helpers.

Every stage type asserts the arity and element types it accepts. The
contract is checked by ``Model.add_new_stage`` when the stage is built.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from .errors import StageContractError
from .types import DataType, DataUsage

if TYPE_CHECKING:
    from .model import Data, Model, Stage
    from .source import SourceNode


class StageType(str, Enum):
    """Enumeration of target stage types."""

    # Placeholder for layers that could not be lowered
    NONE = "None"

    # Data movement
    COPY = "Copy"
    CONVERT = "Convert"
    RESHAPE = "Reshape"
    BROADCAST = "Broadcast"
    PAD = "Pad"

    # Elementwise
    POWER = "Power"
    SUM = "Sum"
    PROD = "Prod"
    SUB = "Sub"
    MAX = "Max"
    MIN = "Min"

    # Post-op activations
    SIGMOID = "Sigmoid"
    GELU = "Gelu"
    LOG = "Log"
    SOFT_PLUS = "SoftPlus"
    EXP = "Exp"
    FLOOR = "Floor"
    CEILING = "Ceiling"
    ROUND = "Round"
    ERF = "Erf"
    TANH = "Tanh"
    RELU = "Relu"
    MISH = "Mish"
    SWISH = "Swish"
    HSWISH = "HSwish"

    # Normalization
    LRN = "LRN"

    # Shape computations
    OUT_SHAPE_OF_RESHAPE = "OutShapeOfReshape"

    # User kernels
    CUSTOM = "Custom"


# =============================================================================
# Contracts
# =============================================================================

# Port type spec: allowed element types, or SAME for "same type as input 0"
SAME = "same"
PortSpec = Union[FrozenSet[DataType], str]

FP16_ONLY: FrozenSet[DataType] = frozenset({DataType.FP16})
S32_ONLY: FrozenSet[DataType] = frozenset({DataType.S32})
ANY: FrozenSet[DataType] = frozenset(DataType)


@dataclass(frozen=True)
class StageContract:
    """One accepted combination of input and output port types."""

    inputs: Tuple[PortSpec, ...]
    outputs: Tuple[PortSpec, ...]

    def check(self, inputs: Sequence["Data"], outputs: Sequence["Data"]) -> Optional[str]:
        """Return None if the ports satisfy the contract, else the reason."""
        if len(inputs) != len(self.inputs):
            return f"expected {len(self.inputs)} inputs, got {len(inputs)}"
        if len(outputs) != len(self.outputs):
            return f"expected {len(self.outputs)} outputs, got {len(outputs)}"

        reference = inputs[0].desc.type if inputs else None
        ports = [("input", i, d, s) for i, (d, s) in enumerate(zip(inputs, self.inputs))]
        ports += [("output", i, d, s) for i, (d, s) in enumerate(zip(outputs, self.outputs))]
        for kind, index, data, spec in ports:
            if data.usage == DataUsage.FAKE:
                continue
            if spec == SAME:
                if data.desc.type != reference:
                    return (
                        f"{kind} {index} '{data.name}' must have the type of input 0 "
                        f"({reference.value}), got {data.desc.type.value}"
                    )
            elif data.desc.type not in spec:
                allowed = ", ".join(sorted(t.value for t in spec))
                return (
                    f"{kind} {index} '{data.name}' has type {data.desc.type.value}, "
                    f"expected one of [{allowed}]"
                )
        return None


_POST_OP = (StageContract((FP16_ONLY,), (FP16_ONLY,)),)
_ELTWISE = (
    StageContract((FP16_ONLY, FP16_ONLY), (FP16_ONLY,)),
    StageContract((S32_ONLY, S32_ONLY), (S32_ONLY,)),
)

# An empty tuple means the stage type accepts any ports
CONTRACTS: Dict[StageType, Tuple[StageContract, ...]] = {
    StageType.NONE: (),
    StageType.CUSTOM: (),
    StageType.COPY: (StageContract((ANY,), (SAME,)),),
    StageType.CONVERT: (
        StageContract(
            (frozenset({DataType.FP16, DataType.FP32, DataType.U8, DataType.S32}),),
            (frozenset({DataType.FP16, DataType.FP32, DataType.S32}),),
        ),
    ),
    StageType.RESHAPE: (
        StageContract((ANY,), (SAME,)),
        StageContract((ANY, S32_ONLY), (SAME,)),
    ),
    StageType.BROADCAST: (
        StageContract((ANY, S32_ONLY), (SAME,)),
        StageContract((ANY, S32_ONLY, S32_ONLY), (SAME,)),
    ),
    StageType.PAD: _POST_OP,
    StageType.POWER: _POST_OP,
    StageType.SUM: _ELTWISE,
    StageType.PROD: _ELTWISE,
    StageType.SUB: _ELTWISE,
    StageType.MAX: _ELTWISE,
    StageType.MIN: _ELTWISE,
    StageType.SIGMOID: _POST_OP,
    StageType.GELU: _POST_OP,
    StageType.LOG: _POST_OP,
    StageType.SOFT_PLUS: _POST_OP,
    StageType.EXP: _POST_OP,
    StageType.FLOOR: _POST_OP,
    StageType.CEILING: _POST_OP,
    StageType.ROUND: _POST_OP,
    StageType.ERF: _POST_OP,
    StageType.TANH: _POST_OP,
    StageType.RELU: _POST_OP,
    StageType.MISH: _POST_OP,
    StageType.SWISH: _POST_OP,
    StageType.HSWISH: _POST_OP,
    StageType.LRN: _POST_OP,
    StageType.OUT_SHAPE_OF_RESHAPE: (StageContract((S32_ONLY, S32_ONLY), (S32_ONLY,)),),
}


def check_stage_contract(
    stage_type: StageType,
    name: str,
    inputs: Sequence["Data"],
    outputs: Sequence["Data"],
) -> None:
    """Raise StageContractError unless one of the type's contracts accepts the ports."""
    contracts = CONTRACTS.get(stage_type, ())
    if not contracts:
        return
    reasons: List[str] = []
    for contract in contracts:
        reason = contract.check(inputs, outputs)
        if reason is None:
            return
        reasons.append(reason)
    raise StageContractError(
        f"{stage_type.value} stage '{name}' violates its contract: " + "; ".join(reasons)
    )


# =============================================================================
# Stage builders
# =============================================================================


def add_none_stage(
    model: "Model",
    name: str,
    node: Optional["SourceNode"],
    inputs: Sequence[Optional["Data"]],
    outputs: Sequence[Optional["Data"]],
) -> "Stage":
    """Placeholder stage preserving the node's wiring."""
    return model.add_new_stage(name, StageType.NONE, node, inputs, outputs)


def add_copy_stage(
    model: "Model",
    name: str,
    node: Optional["SourceNode"],
    input: "Data",
    output: "Data",
    origin: str,
) -> "Stage":
    stage = model.add_new_stage(name, StageType.COPY, node, [input], [output])
    stage.attrs["origin"] = origin
    return stage


def add_power_stage(
    model: "Model",
    name: str,
    node: Optional["SourceNode"],
    scale: float,
    power: float,
    bias: float,
    input: "Data",
    output: "Data",
) -> "Stage":
    stage = model.add_new_stage(name, StageType.POWER, node, [input], [output])
    stage.attrs["scale"] = scale
    stage.attrs["power"] = power
    stage.attrs["bias"] = bias
    return stage


def add_convert_stage(
    model: "Model",
    name: str,
    input: "Data",
    output: "Data",
    scale: float = 1.0,
    bias: float = 0.0,
    node: Optional["SourceNode"] = None,
) -> "Stage":
    stage = model.add_new_stage(name, StageType.CONVERT, node, [input], [output])
    stage.attrs["scale"] = scale
    stage.attrs["bias"] = bias
    return stage


def add_post_op_stage(
    model: "Model",
    stage_type: StageType,
    node: "SourceNode",
    inputs: Sequence["Data"],
    outputs: Sequence[Optional["Data"]],
) -> "Stage":
    """Single-input activation stage named after its node."""
    if len(inputs) != 1 or len(outputs) != 1:
        raise StageContractError(
            f"{stage_type.value} stage with name {node.name} must have 1 input and 1 output, "
            f"actually provided {len(inputs)} inputs and {len(outputs)} outputs",
            node=node.name,
        )
    return model.add_new_stage(node.name, stage_type, node, inputs, outputs)

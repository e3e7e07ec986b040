"""
Trivial cases: a source tensor that reaches a network output without any
computation (``input -> output``, ``const -> output``) is lowered to a copy
from its source buffer to the output buffer.
"""

from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError, ErrorCode
from .model import Data, Model, Stage
from .stages import add_convert_stage, add_copy_stage
from .types import DataUsage
from .utils.logger import get_logger

logger = get_logger()

_SOURCE_USAGES = (DataUsage.INPUT, DataUsage.CONST)


def process_trivial_cases(model: Model) -> List[Stage]:
    """Connect every Output buffer whose tensor is held by an Input or Const buffer.

    A source of another element type (an fp16 constant behind an fp32 output)
    is connected through a convert stage instead of a copy.

    Raises:
        ConfigurationError: two buffers of the same role originate from one
            tensor (E003).
    """
    cases: Dict[str, Tuple[Optional[Data], Optional[Data]]] = {}
    for data in model.datas:
        if data.orig_tensor is None:
            continue
        if data.usage != DataUsage.OUTPUT and data.usage not in _SOURCE_USAGES:
            continue
        unconnected_input, unconnected_output = cases.get(data.orig_tensor, (None, None))
        existing = unconnected_output if data.usage == DataUsage.OUTPUT else unconnected_input
        if existing is not None:
            raise ConfigurationError(
                f"tensor '{data.orig_tensor}' has two {data.usage.value} buffers "
                f"'{existing.name}' and '{data.name}' associated with it, while only one is permitted",
                code=ErrorCode.E003,
            )
        if data.usage == DataUsage.OUTPUT:
            cases[data.orig_tensor] = (unconnected_input, data)
        else:
            cases[data.orig_tensor] = (data, unconnected_output)

    stages = []
    for tensor, (unconnected_input, unconnected_output) in cases.items():
        if unconnected_input is None or unconnected_output is None:
            continue
        logger.debug(f"Trivial case for tensor {tensor}: {unconnected_input.name} -> {unconnected_output.name}")
        if unconnected_input.desc.type != unconnected_output.desc.type:
            stage = add_convert_stage(
                model, unconnected_input.name + "@convert", unconnected_input, unconnected_output
            )
            stage.attrs["origin"] = "processTrivialCase"
        else:
            stage = add_copy_stage(
                model,
                unconnected_input.name + "@copy",
                None,
                unconnected_input,
                unconnected_output,
                "processTrivialCase",
            )
        stages.append(stage)
    return stages

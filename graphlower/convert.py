"""
Numeric-format conversion at the network boundary.

The target computes in fp16. Wider or integer network inputs get an fp16 copy
fed by a convert stage, fp32 network outputs are produced in fp16 and
converted back. Optional input scale/bias are applied on the way in.
"""

from typing import Optional

from .config import LoweringConfig
from .model import Data, Model
from .stages import StageType, add_convert_stage, add_power_stage
from .types import DataType, DataUsage
from .utils.logger import get_logger

logger = get_logger()


def _serialize_float(value: float) -> str:
    return format(value, "g")


def add_data_type_convert_stages(model: Model, config: Optional[LoweringConfig] = None) -> None:
    config = config or LoweringConfig()
    scale = config.input_scale if config.input_scale is not None else 1.0
    bias = config.input_bias if config.input_bias is not None else 0.0
    has_scale_bias = scale != 1.0 or bias != 0.0

    logger.debug("Add data type conversion stages")

    for data in model.datas_by_usage(DataUsage.INPUT):
        logger.trace(f"Input : {data.name} [{data.desc.type.value}]")

        if data.desc.type == DataType.FP16:
            if has_scale_bias:
                _add_scale_bias(model, data, scale, bias)
        elif data.desc.type in (DataType.U8, DataType.FP32):
            _convert_input_to_fp16(model, data, scale, bias)

    for data in model.datas_by_usage(DataUsage.OUTPUT):
        logger.trace(f"Output : {data.name} [{data.desc.type.value}]")
        if data.desc.type == DataType.FP32 and not _is_converted_from_fp16(data):
            _convert_output_from_fp16(model, data)


def _is_converted_from_fp16(data: Data) -> bool:
    producer = data.producer
    return (
        producer is not None
        and producer.type == StageType.CONVERT
        and producer.input(0).desc.type == DataType.FP16
    )


def _add_scale_bias(model: Model, data: Data, scale: float, bias: float) -> None:
    logger.trace("Apply scale/bias parameters")
    postfix = ""
    if scale != 1.0:
        postfix += "@SCALE=" + _serialize_float(scale)
    if bias != 0.0:
        postfix += "@BIAS=" + _serialize_float(bias)

    scaled = model.duplicate_data(data, postfix)
    if data.orig_tensor is not None:
        model.registry.rebind(data.orig_tensor, scaled)

    add_power_stage(model, scaled.name, None, scale, 1.0, bias, data, scaled)


def _convert_input_to_fp16(model: Model, data: Data, scale: float, bias: float) -> None:
    logger.trace(f"Convert {data.name} to FP16")
    data_fp16 = model.duplicate_data(data, "@FP16", data.desc.with_type(DataType.FP16))
    data.attrs["fp16_copy"] = data_fp16

    if data.orig_tensor is not None:
        model.registry.rebind(data.orig_tensor, data_fp16)

    for edge in list(data.consumer_edges):
        model.replace_stage_input(edge, data_fp16)

    add_convert_stage(model, data_fp16.name, data, data_fp16, scale, bias)


def _convert_output_from_fp16(model: Model, data: Data) -> None:
    logger.trace(f"Convert {data.name} from FP16")
    data_fp16 = model.duplicate_data(data, "@FP16", data.desc.with_type(DataType.FP16))
    data.attrs["fp16_copy"] = data_fp16

    if data.orig_tensor is not None and model.registry.resolve(data.orig_tensor) is data:
        model.registry.rebind(data.orig_tensor, data_fp16)

    if data.producer_edge is not None:
        model.replace_stage_output(data.producer_edge, data_fp16)

    stage = add_convert_stage(model, data_fp16.name, data_fp16, data)
    stage.attrs["have_batch"] = model.batch_size != 1

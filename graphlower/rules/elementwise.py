"""Binary eltwise operations, power and explicit copies/conversions."""

from ..stages import StageType, add_convert_stage, add_copy_stage, add_power_stage
from . import layer_check, rule

_ELTWISE = {
    "Add": StageType.SUM,
    "Multiply": StageType.PROD,
    "Subtract": StageType.SUB,
    "Maximum": StageType.MAX,
    "Minimum": StageType.MIN,
}


@rule(*_ELTWISE)
def parse_eltwise(model, node, inputs, outputs):
    layer_check(
        len(inputs) == 2 and len(outputs) == 1,
        f"{node.type} layer with name {node.name} must have 2 inputs and 1 output, "
        f"actually provided {len(inputs)} inputs and {len(outputs)} outputs",
    )
    model.add_new_stage(node.name, _ELTWISE[node.type], node, inputs, outputs)


@rule("Power")
def parse_power(model, node, inputs, outputs):
    layer_check(len(inputs) == 1 and len(outputs) == 1, f"Power layer {node.name} must have 1 input and 1 output")
    add_power_stage(
        model,
        node.name,
        node,
        float(node.params.get("scale", 1.0)),
        float(node.params.get("power", 1.0)),
        float(node.params.get("shift", 0.0)),
        inputs[0],
        outputs[0],
    )


@rule("Copy")
def parse_copy(model, node, inputs, outputs):
    layer_check(len(inputs) == 1 and len(outputs) == 1, f"Copy layer {node.name} must have 1 input and 1 output")
    add_copy_stage(model, node.name, node, inputs[0], outputs[0], "parseCopy")


@rule("Convert")
def parse_convert(model, node, inputs, outputs):
    layer_check(len(inputs) == 1 and len(outputs) == 1, f"Convert layer {node.name} must have 1 input and 1 output")
    add_convert_stage(model, node.name, inputs[0], outputs[0], node=node)

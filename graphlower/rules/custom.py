"""Lowering of nodes matched by a custom rule."""

from ..env import get_compile_env
from ..custom_rules import size_variables
from ..size_expr import evaluate_sizes
from ..stages import StageType
from ..types import DataDesc
from . import CUSTOM, rule


@rule(CUSTOM)
def parse_custom(model, node, inputs, outputs):
    env = get_compile_env()
    custom_rule = env.custom_matches.get(node.name)
    if custom_rule is None:
        raise ValueError(f"no custom rule matched layer {node.name} of type {node.type}")

    variables = size_variables(node, env.graph)
    kernels = custom_rule.kernels
    stage_inputs = list(inputs)
    for i, kernel in enumerate(kernels):
        last = i == len(kernels) - 1
        if last:
            stage_outputs = list(outputs)
        else:
            desc = outputs[0].desc if outputs and outputs[0] is not None else DataDesc()
            stage_outputs = [model.add_new_data(f"{node.name}@kernel{i}", desc)]

        name = node.name if len(kernels) == 1 else f"{node.name}@{kernel.entry}"
        stage = model.add_new_stage(name, StageType.CUSTOM, node, stage_inputs, stage_outputs)
        stage.attrs["rule"] = custom_rule.display_name
        stage.attrs["entry"] = kernel.entry
        stage.attrs["source"] = kernel.source
        stage.attrs["global_size"] = evaluate_sizes(kernel.global_size, variables)
        stage.attrs["local_size"] = evaluate_sizes(kernel.local_size, variables)
        stage.attrs["kernel_params"] = dict(kernel.params)

        stage_inputs = stage_outputs

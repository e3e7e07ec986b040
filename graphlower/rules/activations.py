"""Single-input activations lowered to post-op stages."""

from ..stages import StageType, add_post_op_stage
from . import rule


@rule("Sigmoid")
def parse_sigmoid(model, node, inputs, outputs):
    add_post_op_stage(model, StageType.SIGMOID, node, inputs, outputs)


@rule("Gelu")
def parse_gelu(model, node, inputs, outputs):
    add_post_op_stage(model, StageType.GELU, node, inputs, outputs)


@rule("Log")
def parse_log(model, node, inputs, outputs):
    add_post_op_stage(model, StageType.LOG, node, inputs, outputs)


@rule("SoftPlus")
def parse_softplus(model, node, inputs, outputs):
    add_post_op_stage(model, StageType.SOFT_PLUS, node, inputs, outputs)


@rule("ReLU", "Relu")
def parse_relu(model, node, inputs, outputs):
    stage = add_post_op_stage(model, StageType.RELU, node, inputs, outputs)
    stage.attrs["negative_slope"] = float(node.params.get("negative_slope", 0.0))


@rule("Swish")
def parse_swish(model, node, inputs, outputs):
    stage = add_post_op_stage(model, StageType.SWISH, node, inputs, outputs)
    stage.attrs["beta"] = float(node.params.get("beta", 1.0))


_SIMPLE_POST_OPS = {
    "Exp": StageType.EXP,
    "Floor": StageType.FLOOR,
    "Ceiling": StageType.CEILING,
    "Round": StageType.ROUND,
    "Erf": StageType.ERF,
    "TanH": StageType.TANH,
    "Mish": StageType.MISH,
    "HSwish": StageType.HSWISH,
}


def _make_post_op_rule(layer_type: str, stage_type: StageType):
    def parse(model, node, inputs, outputs):
        add_post_op_stage(model, stage_type, node, inputs, outputs)

    parse.__name__ = f"parse_{layer_type.lower()}"
    return rule(layer_type)(parse)


for _layer_type, _stage_type in _SIMPLE_POST_OPS.items():
    _make_post_op_rule(_layer_type, _stage_type)

from ..stages import StageType
from . import layer_check, rule


@rule("LRN", "Norm")
def parse_norm(model, node, inputs, outputs):
    layer_check(len(inputs) == 1, f"LRN layer {node.name} must have 1 input, got {len(inputs)}")
    layer_check(len(outputs) == 1, f"LRN layer {node.name} must have 1 output, got {len(outputs)}")

    stage = model.add_new_stage(node.name, StageType.LRN, node, inputs, outputs)
    stage.attrs["size"] = int(node.params.get("size", 1))
    stage.attrs["k"] = float(node.params.get("bias", 1.0))
    stage.attrs["alpha"] = float(node.params.get("alpha", 1.0))
    stage.attrs["beta"] = float(node.params.get("beta", 0.75))

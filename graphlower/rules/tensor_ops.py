"""Data movement layers: reshape family, pad, broadcast and shape computations."""

from ..stages import StageType
from ..types import DataUsage
from . import layer_check, rule

PAD_MODES = ("constant", "edge", "reflect", "symmetric")
BROADCAST_MODES = ("numpy", "bidirectional", "explicit")


@rule("Reshape", "Flatten", "Squeeze", "Unsqueeze")
def parse_reshape(model, node, inputs, outputs):
    layer_check(len(inputs) >= 1, f"{node.type} layer {node.name} must have a data input")
    layer_check(len(outputs) == 1, f"{node.type} layer {node.name} must have 1 output, got {len(outputs)}")

    # A computed target shape stays an operand, a constant one is folded into the output dims
    stage_inputs = list(inputs[:1])
    if len(inputs) > 1 and inputs[1].usage != DataUsage.CONST:
        stage_inputs.append(inputs[1])

    stage = model.add_new_stage(node.name, StageType.RESHAPE, node, stage_inputs, outputs)
    stage.attrs["special_zero"] = bool(node.params.get("special_zero", False))


@rule("Pad")
def parse_pad(model, node, inputs, outputs):
    layer_check(len(inputs) == 1, f"Pad layer {node.name} must have 1 input, got {len(inputs)}")
    layer_check(len(outputs) == 1, f"Pad layer {node.name} must have 1 output, got {len(outputs)}")

    ndims = inputs[0].desc.num_dims
    layer_check(ndims in (3, 4), f"Layer {node.name} support only 3D and 4D input, but {ndims}D provided")

    pads_begin = [int(p) for p in node.params.get("pads_begin", [])]
    pads_end = [int(p) for p in node.params.get("pads_end", [])]
    layer_check(
        len(pads_begin) <= 4,
        f"Layer {node.name} support pads_begin size less than or equal 4, but {len(pads_begin)} provided",
    )
    layer_check(
        len(pads_end) <= 4,
        f"Layer {node.name} support pads_end size less than or equal 4, but {len(pads_end)} provided",
    )

    pad_mode = str(node.params.get("pad_mode", "constant")).lower()
    layer_check(pad_mode in PAD_MODES, f"Layer {node.name} has unsupported pad mode {pad_mode}")

    stage = model.add_new_stage(node.name, StageType.PAD, node, inputs, outputs)
    stage.attrs["pad_value"] = float(node.params.get("pad_value", 0.0))
    stage.attrs["pad_mode"] = pad_mode
    stage.attrs["pads_begin"] = tuple(pads_begin + [0] * (ndims - len(pads_begin)))[:ndims]
    stage.attrs["pads_end"] = tuple(pads_end + [0] * (ndims - len(pads_end)))[:ndims]


@rule("Broadcast", "StaticShapeBroadcast")
def parse_broadcast(model, node, inputs, outputs):
    layer_check(
        len(outputs) == 1,
        f"{node.type} layer with name {node.name} must have only 1 output, "
        f"actually provided {len(outputs)} outputs",
    )
    output = outputs[0]

    mode = str(node.params.get("mode", "numpy")).lower()
    layer_check(
        mode in BROADCAST_MODES,
        f"{node.type} layer with name {node.name}: broadcast doesn't support {mode} mode",
    )

    if mode in ("numpy", "bidirectional"):
        layer_check(
            len(inputs) == 2,
            f"{node.type} layer with name {node.name} and {mode} mode must have 2 inputs, "
            f"actually provided {len(inputs)} inputs",
        )
    else:
        layer_check(
            len(inputs) == 3,
            f"{node.type} layer with name {node.name} and explicit mode must have 3 inputs, "
            f"actually provided {len(inputs)} inputs",
        )
        axes_mapping = inputs[2].desc
        layer_check(
            axes_mapping.num_dims == 1,
            f"{node.type} layer with name {node.name} and explicit mode must have 1D axesMapping tensor, "
            f"actually provided {axes_mapping.num_dims}D tensor",
        )
        layer_check(
            axes_mapping.dims[0] == inputs[0].desc.num_dims,
            f"{node.type} layer with name {node.name} and explicit mode must have axesMapping tensor with "
            f"size equals to number of input dims, expected [{inputs[0].desc.num_dims}], "
            f"provided [{axes_mapping.dims[0]}]",
        )

    shape_desc = inputs[1].desc
    layer_check(
        shape_desc.num_dims == 1,
        f"{node.type} layer with name {node.name} must have 1D target shape tensor, "
        f"actually provided {shape_desc.num_dims}D tensor",
    )
    if mode == "explicit" and output is not None:
        layer_check(
            shape_desc.dims[0] == output.desc.num_dims,
            f"{node.type} layer with name {node.name} and explicit mode must have target shape tensor with "
            f"size equals to number of output dims, expected [{output.desc.num_dims}], "
            f"provided [{shape_desc.dims[0]}]",
        )

    stage = model.add_new_stage(node.name, StageType.BROADCAST, node, inputs, outputs)
    stage.attrs["mode"] = mode


@rule("OutShapeOfReshape")
def parse_out_shape_of_reshape(model, node, inputs, outputs):
    layer_check(
        len(inputs) == 2,
        f"OutShapeOfReshape stage with name {node.name} must have only 2 inputs, actually provided {len(inputs)}",
    )
    layer_check(
        len(outputs) == 1,
        f"OutShapeOfReshape stage with name {node.name} must have only 1 output, actually provided {len(outputs)}",
    )

    in_data_shape, out_shape_descriptor = inputs
    out_data_shape = outputs[0]

    layer_check(
        in_data_shape.desc.num_dims == 1,
        f"OutShapeOfReshape stage with name {node.name} must have 1D input data shape tensor, "
        f"actually provided {in_data_shape.desc.num_dims}D tensor",
    )
    layer_check(
        out_shape_descriptor.desc.num_dims == 1,
        f"OutShapeOfReshape stage with name {node.name} must have 1D output shape descriptor tensor, "
        f"actually provided {out_shape_descriptor.desc.num_dims}D tensor",
    )
    if out_data_shape is not None:
        layer_check(
            out_data_shape.desc.num_dims == 1,
            f"OutShapeOfReshape stage with name {node.name} must have 1D output data shape tensor, "
            f"actually provided {out_data_shape.desc.num_dims}D tensor",
        )
        layer_check(
            out_shape_descriptor.desc.dims == out_data_shape.desc.dims,
            f"OutShapeOfReshape stage with name {node.name} must have output shape descriptor and "
            f"output data shape tensor with equal length, actually provided "
            f"{out_shape_descriptor.desc.dims[0]} vs {out_data_shape.desc.dims[0]}",
        )

    stage = model.add_new_stage(node.name, StageType.OUT_SHAPE_OF_RESHAPE, node, inputs, outputs)
    stage.attrs["special_zero"] = bool(node.params.get("special_zero", False))

"""
Lower Command

Lowers a source graph and prints the resulting target model.

Usage:
    graphlower lower net.yaml
    graphlower lower net.yaml --output json
    graphlower lower net.yaml --config lowering.yaml --ignore-unknown-layers
    graphlower lower net.yaml --custom-rules rules.yaml --output stages
"""

import argparse
import json
import sys
from typing import Any, Dict

from graphlower.cli.common import add_common_arguments, build_config, emit


def prepare_command_parser(parser: argparse.ArgumentParser):
    """Prepare the lower command argument parser."""
    add_common_arguments(parser)
    parser.add_argument(
        "--ignore-unknown-layers",
        action="store_true",
        help="Replace unsupported layers by placeholder stages instead of failing",
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        choices=["summary", "json", "stages"],
        default="summary",
        help="Output format (default: summary)",
    )
    parser.set_defaults(func=run_lower)


def format_summary(model, graph_file: str) -> str:
    report = model.report
    lines = [f"Lowering Result: {graph_file}"]
    lines.append(f"Model: {model.name} (#{model.index})")
    lines.append(f"Batch size: {model.batch_size}")
    lines.append(f"Stages: {len(model.stages)}")
    lines.append(f"Buffers: {len(model.datas)}")
    lines.append(f"Supported layers: {len(report.supported)}")
    if report.unsupported:
        lines.append(f"Unsupported layers: {', '.join(report.unsupported)}")
    if report.has_diagnostics():
        lines.append("")
        lines.append("Diagnostics:")
        for diagnostic in report:
            lines.append(f"  {diagnostic}")
    return "\n".join(lines)


def format_stages(model) -> str:
    """One line per stage, producers before consumers."""
    lines = [f"# Stages of {model.name}", ""]
    for i, stage in enumerate(model.ordered_stages()):
        in_str = ", ".join(d.name for d in stage.inputs)
        out_str = ", ".join(d.name for d in stage.outputs)
        origin = f"  <- {stage.orig_node}" if stage.orig_node else ""
        lines.append(f"[{i}] {out_str} = {stage.type.value}({in_str}){origin}")
    return "\n".join(lines)


def model_to_dict(model, graph_file: str) -> Dict[str, Any]:
    result = {"source_file": graph_file}
    result.update(model.to_dict())
    result["report"] = {
        "supported": list(model.report.supported),
        "diagnostics": [
            {"code": d.code.value, "node": d.node, "type": d.node_type, "message": d.message}
            for d in model.report
        ],
    }
    return result


def run_lower(args: argparse.Namespace) -> int:
    """Run the lower command."""
    from graphlower.errors import LoweringError
    from graphlower.frontend import lower
    from graphlower.source import load_source_graph

    try:
        config = build_config(args)
        graph = load_source_graph(args.graph)
        model = lower(graph, config=config)
    except LoweringError as e:
        print("✗ Lowering failed", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        return 1

    if args.output == "summary":
        output_text = format_summary(model, args.graph)
    elif args.output == "json":
        output_text = json.dumps(model_to_dict(model, args.graph), indent=2)
    else:
        output_text = format_stages(model)

    emit(output_text, args.out_file)
    return 0

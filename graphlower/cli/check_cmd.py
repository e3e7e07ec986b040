"""
Check Command

Reports which layers of a source graph the rule table can lower.

Usage:
    graphlower check net.yaml
    graphlower check net.yaml --custom-rules rules.yaml --output json
"""

import argparse
import json
import sys

from graphlower.cli.common import add_common_arguments, build_config, emit


def prepare_command_parser(parser: argparse.ArgumentParser):
    """Prepare the check command argument parser."""
    add_common_arguments(parser)
    parser.add_argument(
        "--output", "-o",
        type=str,
        choices=["summary", "json"],
        default="summary",
        help="Output format (default: summary)",
    )
    parser.set_defaults(func=run_check)


def run_check(args: argparse.Namespace) -> int:
    """Run the check command."""
    from graphlower.errors import LoweringError
    from graphlower.frontend import check_supported_layers
    from graphlower.network import parse_network
    from graphlower.source import load_source_graph

    try:
        config = build_config(args)
        graph = load_source_graph(args.graph)
        supported = check_supported_layers(graph, config=config)
        layers = [n.name for n in parse_network(graph).ordered_ops]
    except LoweringError as e:
        print("✗ Check failed", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        return 1

    unsupported = [name for name in layers if name not in supported]

    if args.output == "json":
        output_text = json.dumps(
            {
                "source_file": args.graph,
                "supported": [name for name in layers if name in supported],
                "unsupported": unsupported,
            },
            indent=2,
        )
    else:
        lines = [f"Check Result: {args.graph}"]
        lines.append(f"Supported: {len(layers) - len(unsupported)}/{len(layers)}")
        for name in unsupported:
            node = graph.get_node(name)
            lines.append(f"  ✗ {name} ({node.type})")
        output_text = "\n".join(lines)

    emit(output_text, args.out_file)
    return 0 if not unsupported else 2

"""Helpers shared by the CLI commands."""

import argparse
from dataclasses import replace
from pathlib import Path

from graphlower.config import LoweringConfig, load_config
from graphlower.utils.logger import setup_logger


def add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument(
        "graph",
        type=str,
        help="Path to the source graph (.yaml, .yml or .json)",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to a YAML lowering configuration",
    )
    parser.add_argument(
        "--custom-rules",
        type=str,
        default=None,
        help="Path to a YAML custom rules description (overrides the config)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logger level (overrides the config)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write log records to this file",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit log records as JSON lines",
    )
    parser.add_argument(
        "--out-file",
        type=str,
        default=None,
        help="Write output to file instead of stdout",
    )


def build_config(args: argparse.Namespace) -> LoweringConfig:
    """Load the configuration file and apply command line overrides."""
    config = load_config(args.config) if args.config else LoweringConfig()
    overrides = {}
    if args.custom_rules:
        overrides["custom_rules_path"] = args.custom_rules
    if getattr(args, "ignore_unknown_layers", False):
        overrides["ignore_unknown_layers"] = True
    if args.log_level:
        overrides["log_level"] = args.log_level
    if overrides:
        config = replace(config, **overrides)
    setup_logger(
        config.log_level,
        log_file=Path(args.log_file) if args.log_file else None,
        json_logging=args.json_logs,
    )
    return config


def emit(output_text: str, out_file):
    if out_file:
        Path(out_file).write_text(output_text)
        print(f"Output written to: {out_file}")
    else:
        print(output_text)

import argparse
import sys
from typing import List, Optional

from graphlower.utils.logger import get_logger

logger = get_logger()


def _get_version() -> str:
    try:
        from importlib.metadata import version
        return version("graphlower")
    except Exception:
        from graphlower import __version__
        return __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Lower neural-network graphs into target stage programs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  graphlower lower net.yaml
  graphlower lower net.yaml --output json --out-file model.json
  graphlower lower net.yaml --ignore-unknown-layers --output stages
  graphlower check net.yaml --custom-rules rules.yaml
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_get_version()}")
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    from graphlower.cli.lower_cmd import prepare_command_parser as lower_prepare_command_parser
    lower_prepare_command_parser(subparsers.add_parser("lower", help="Lower a source graph"))

    from graphlower.cli.check_cmd import prepare_command_parser as check_prepare_command_parser
    check_prepare_command_parser(subparsers.add_parser("check", help="Report supported layers"))

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point for the installed 'graphlower' command."""
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    if args.command is None:
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())

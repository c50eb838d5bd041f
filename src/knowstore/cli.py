"""
Command-line entry point for knowstore.

Subcommands:
- inspect: load a state directory and summarise it
- copy: load a state directory and dump it elsewhere, dropping
  unreachable and transient items
"""

import argparse
import logging
import sys
from typing import Optional

from knowstore import session as _session
from knowstore.config import DEFAULT_STATE_DIR
from knowstore.dump import dump
from knowstore.errors import StoreError
from knowstore.load import LoadReport, load


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowstore",
        description="Inspect and copy knowstore state directories",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug messages",
    )
    parser.add_argument(
        "--plugins",
        metavar="DIR",
        help="Plugin root directory (default: the state directory)",
    )
    subparsers = parser.add_subparsers(dest="command", help="knowstore commands")

    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Summarise a state directory",
        description="Load a state directory and print its modules, dataspaces and top item",
    )
    inspect_parser.add_argument(
        "directory",
        nargs="?",
        default=str(DEFAULT_STATE_DIR),
        help=f"State directory (default: {DEFAULT_STATE_DIR})",
    )

    copy_parser = subparsers.add_parser(
        "copy",
        help="Load a state directory and dump it to another",
        description="Rewrite a state directory, keeping only items reachable from the top item",
    )
    copy_parser.add_argument("source", help="State directory to load")
    copy_parser.add_argument("dest", help="Directory to dump into")

    return parser


def _print_load_report(report: LoadReport) -> None:
    print(f"State directory: {report.directory}")
    print(f"Modules: {', '.join(report.modules) if report.modules else '(none)'}")
    spaces = [f"{name} ({report.items_per_dataspace.get(name, 0)})" for name in report.dataspaces]
    print(f"Dataspaces: {', '.join(spaces) if spaces else '(none)'}")
    print(f"Items loaded: {report.item_count}")
    if report.top_item is not None:
        print(f"Top item: #{report.top_item.ident}")
    else:
        print("Top item: (none)")


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help(sys.stderr)
        return 1

    session = _session.reset()
    try:
        if args.command == "inspect":
            report = load(args.directory, session=session, plugins_from=args.plugins)
            _print_load_report(report)
        elif args.command == "copy":
            load(args.source, session=session, plugins_from=args.plugins)
            result = dump(args.dest, session=session)
            print(f"Dumped {result.item_count} items to {result.directory}")
    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

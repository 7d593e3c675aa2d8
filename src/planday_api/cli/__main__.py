"""CLI entry point for planday_api.

Usage:
    python -m planday_api.cli load --payrates --salaries --contract-rules
    python -m planday_api.cli load --output employees.json --verbose
    python -m planday_api.cli check
"""

from __future__ import annotations

import argparse
import sys


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="planday-api",
        description="Planday API command-line tools",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Load command
    load_parser = subparsers.add_parser(
        "load",
        help="Load employees and reference data",
    )
    load_parser.add_argument(
        "--payrates",
        action="store_true",
        help="Include employee group payrates",
    )
    load_parser.add_argument(
        "--salaries",
        action="store_true",
        help="Include fixed salaries",
    )
    load_parser.add_argument(
        "--contract-rules",
        action="store_true",
        help="Include contract rules",
    )
    load_parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write JSON to this file instead of stdout",
    )
    load_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log scheduler activity",
    )

    # Check command
    check_parser = subparsers.add_parser(
        "check",
        help="Test the API connection and credentials",
    )
    check_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log scheduler activity",
    )

    args = parser.parse_args()

    if args.command == "load":
        from planday_api.cli.load import run_load

        return run_load(
            include_payrates=args.payrates,
            include_salaries=args.salaries,
            include_contract_rules=args.contract_rules,
            output=args.output,
            verbose=args.verbose,
        )
    elif args.command == "check":
        from planday_api.cli.load import run_check

        return run_check(verbose=args.verbose)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())

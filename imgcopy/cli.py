#!/usr/bin/env python3
"""Image relocation CLI."""

from __future__ import annotations

import argparse
import sys

from pydantic import ValidationError

from imgcopy.commands import copy
from imgcopy.core.config import CopySettings
from imgcopy.core.errors import CopyError, RegistryError
from imgcopy.core.logging_config import FORMATTERS, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Relocate OCI images and bundles between registries and tar archives",
    )
    parser.add_argument(
        "--log-level",
        help="Log level (default: IMGCOPY_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=FORMATTERS,
        help="Log output format (default: IMGCOPY_LOG_FORMAT or text)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    copy.register_parser(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = CopySettings()
    except ValidationError as exc:
        print(f"Error: invalid IMGCOPY_* environment: {exc}", file=sys.stderr)
        return 1

    if not hasattr(args, "func"):
        parser.print_help()
        return 2

    try:
        setup_logging(
            level=args.log_level or settings.LOG_LEVEL,
            formatter=args.log_format or settings.LOG_FORMAT,
        )
        return int(args.func(args, settings))
    except (CopyError, RegistryError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except (ValueError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

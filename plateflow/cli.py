"""
Command line interface for plateflow.

Two subcommands are exposed: ``resolve`` looks up a single plate and
prints its record as JSON, ``batch`` resolves up to ten plates one
after another and prints them wrapped in a ``{success, total, results}``
envelope.  Sources, priorities and timeouts come from an optional YAML
file (``--config``) plus environment variables; see
:mod:`plateflow.config`.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, List

from .config import load_settings
from .errors import ConfigError, InputInvalid
from .normalize.schema import QUERY_KINDS
from .resolve.batch import batch_payload, resolve_many
from .resolve.policy import ResolutionPolicy

logger = logging.getLogger("plateflow.cli")


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _policy(args: argparse.Namespace) -> ResolutionPolicy:
    settings = load_settings(args.config)
    return ResolutionPolicy.from_settings(settings)


def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve one plate and print the record."""
    record = _policy(args).resolve(args.plate, args.type)
    _print_json(record.to_dict())
    return 0 if record.success else 1


def cmd_batch(args: argparse.Namespace) -> int:
    """Resolve several plates sequentially and print the batch envelope."""
    settings = load_settings(args.config)
    policy = ResolutionPolicy.from_settings(settings)
    pause = args.pause if args.pause is not None else settings.batch_pause
    records = resolve_many(policy, args.plates, kind=args.type, pause=pause)
    _print_json(batch_payload(records))
    return 0


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="plateflow", description="Vehicle record resolution")
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve_cmd = subparsers.add_parser("resolve", help="Resolve a single plate")
    resolve_cmd.add_argument("plate", help="License plate (or national id / chassis number)")
    resolve_cmd.add_argument(
        "--type", choices=sorted(QUERY_KINDS), default="vehicle", help="What the identifier is"
    )
    resolve_cmd.set_defaults(func=cmd_resolve)

    batch_cmd = subparsers.add_parser("batch", help="Resolve up to ten plates")
    batch_cmd.add_argument("plates", nargs="+", help="License plates")
    batch_cmd.add_argument("--type", choices=sorted(QUERY_KINDS), default="vehicle")
    batch_cmd.add_argument("--pause", type=float, help="Seconds between plates (default from config)")
    batch_cmd.set_defaults(func=cmd_batch)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
    try:
        return args.func(args)
    except (ConfigError, InputInvalid) as exc:
        logger.error("%s", exc)
        _print_json({"success": False, "error": str(exc)})
        return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))

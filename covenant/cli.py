"""
Command line entrypoint.

Examples:
  covenant negotiate provider.yaml consumer.yaml --data sample.json
  covenant negotiate ref://provider.yaml ref://consumer.yaml --dir ./terms --json
  covenant check-schema schemas/order.schema.json

Exit codes:
  0 negotiated (and every data file valid) / schema compiles
  1 at least one data file failed validation
  2 terms are incompatible
  3 configuration or structural error (resolution, parse, envelope, compilation)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Optional, Sequence

from covenant.common.files import read_data_file
from covenant.common.logging import init_structured_logging
from covenant.compatibility import NegotiationPolicy
from covenant.contract import Contract
from covenant.errors import ContractError
from covenant.schemer import Schemer
from covenant.terms import Terms

EXIT_OK = 0
EXIT_INVALID_DATA = 1
EXIT_INCOMPATIBLE = 2
EXIT_ERROR = 3


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="covenant", description="Negotiate provider/consumer terms.")
    p.add_argument("--log-level", default=None, help="Enable JSON logs at this level (e.g. DEBUG)")
    sub = p.add_subparsers(dest="command", required=True)

    n = sub.add_parser("negotiate", help="Negotiate provider terms against consumer terms")
    n.add_argument("provider", help="Provider terms (file path, ref://path or inline JSON/YAML)")
    n.add_argument("consumer", help="Consumer terms (file path, ref://path or inline JSON/YAML)")
    n.add_argument("--dir", default=None, help="Directory that relative references resolve against")
    n.add_argument("--data", action="append", default=[], help="Data file to validate (repeatable)")
    n.add_argument(
        "--require-guaranteed",
        action="store_true",
        help="Consumer-required fields must be required by the provider, not just declared",
    )
    n.add_argument("--json", action="store_true", help="Print a JSON summary instead of text")

    c = sub.add_parser("check-schema", help="Compile a JSON Schema file")
    c.add_argument("file", help="Schema file (JSON or YAML)")
    return p


async def _negotiate(args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    provider = await Terms.load(args.provider, args.dir)
    consumer = await Terms.load(args.consumer, args.dir)
    policy = NegotiationPolicy(require_guaranteed=True) if args.require_guaranteed else None
    contract = Contract(provider, consumer, policy=policy)

    summary: dict[str, Any] = {
        "negotiated": contract.is_negotiated,
        "reasons": [str(r) for r in contract.reasons],
        "data": [],
    }
    if not contract.is_negotiated:
        return EXIT_INCOMPATIBLE, summary

    code = EXIT_OK
    for path in args.data:
        data = await read_data_file(path)
        valid = contract.validate(data)
        summary["data"].append(
            {
                "file": path,
                "valid": valid,
                "errors": [e.to_dict() for e in contract.errors],
                "report": Schemer.report_validation_errors(contract.errors),
            }
        )
        if not valid:
            code = EXIT_INVALID_DATA
    return code, summary


def _print_negotiation(summary: dict[str, Any]) -> None:
    if not summary["negotiated"]:
        print("INCOMPATIBLE")
        for reason in summary["reasons"]:
            print(f"  - {reason}")
        return
    print("NEGOTIATED")
    for row in summary["data"]:
        print(f"  {row['file']}: {'valid' if row['valid'] else 'INVALID'}")
        if row["report"]:
            for line in row["report"].splitlines():
                print(f"    {line}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.log_level:
        init_structured_logging(level=args.log_level)

    try:
        if args.command == "check-schema":
            asyncio.run(Schemer.from_file(args.file))
            print(f"OK {args.file}")
            return EXIT_OK

        code, summary = asyncio.run(_negotiate(args))
    except ContractError as e:
        print(e.report(verbose=True), file=sys.stderr)
        return EXIT_ERROR

    if args.json:
        print(json.dumps(summary, indent=2, sort_keys=True, default=str))
    else:
        _print_negotiation(summary)
    return code


if __name__ == "__main__":
    raise SystemExit(main())

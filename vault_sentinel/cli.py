"""Command-line interface for the vault sentinel."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .config import load_config
from .errors import SentinelError, ValidationError
from .logging_setup import configure_logging
from .models import CycleReport
from .services import MonitoringService

logger = logging.getLogger(__name__)

# command -> (tool name, payload key)
_PREPARE_COMMANDS = {
    "prepare-deposit": ("prepare_deposit", "amount"),
    "prepare-withdraw": ("prepare_withdraw", "shares"),
    "prepare-approve": ("prepare_approve", "amount"),
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="vault-sentinel",
        description="Scheduled monitoring and control for a yield vault",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run the scheduler until interrupted")
    sub.add_parser("cycle", help="Run one full monitoring cycle")
    sub.add_parser("quick-check", help="Run one price quick check")
    sub.add_parser("accrue", help="Run one yield-generation step")
    sub.add_parser("risk", help="Print the leverage strategy's risk assessment")

    deposit = sub.add_parser("prepare-deposit", help="Print an unsigned deposit transaction")
    deposit.add_argument("amount", help="Asset amount, e.g. 12.5")
    withdraw = sub.add_parser("prepare-withdraw", help="Print an unsigned withdraw transaction")
    withdraw.add_argument("shares", help="Vault shares, e.g. 3")
    approve = sub.add_parser("prepare-approve", help="Print an unsigned approve transaction")
    approve.add_argument("amount", help="Asset amount, e.g. 12.5")

    return parser


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, default=str))


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command. Returns the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    service = MonitoringService(config)

    if args.command == "run":
        await service.run_forever()
    elif args.command == "cycle":
        report = await service.run_full_cycle()
        return 0 if isinstance(report, CycleReport) else 1
    elif args.command == "quick-check":
        result = await service.run_quick_check()
        if isinstance(result, dict):
            _print_json(result)
            return 0
        return 1
    elif args.command == "accrue":
        result = await service.run_yield_generation()
        if result is None:
            print("No mock pool configured", file=sys.stderr)
            return 1
        if isinstance(result, dict):
            _print_json(result)
            return 0
        return 1
    elif args.command == "risk":
        _print_json(await service.registry.execute("check_liquidation_risk"))
    elif args.command in _PREPARE_COMMANDS:
        tool, key = _PREPARE_COMMANDS[args.command]
        _print_json(await service.registry.execute(tool, {key: getattr(args, key)}))
    else:
        build_parser().print_help()
        return 1
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        code = asyncio.run(_run(args))
    except ValidationError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        sys.exit(2)
    except SentinelError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)

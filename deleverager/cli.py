"""Command-line interface for the deleveraging keeper."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import AppConfig, load_config
from .logging_setup import configure_logging
from .sandbox import Market, build_market
from .services import Keeper


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="deleverager",
        description="Collateral-funded debt repayment keeper",
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

    sub.add_parser("check", help="Single pass: repay every position below its floor")
    sub.add_parser("report", help="Send a health report of all positions")
    sub.add_parser("policies", help="Print the configured health factor bands")

    monitor_parser = sub.add_parser("monitor", help="Continuous keeper loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Check interval in minutes (overrides config)",
    )

    return parser


def open_market(config: AppConfig) -> Market:
    return build_market(
        config.market, config.positions, operators=(config.keeper.operator,)
    )


def _print_policies(config: AppConfig, market: Market) -> None:
    for position in config.positions:
        policy = market.policies.get_policy(position.user)
        print(
            f"{position.label:<20} {position.user:<24} "
            f"[{policy.min_health_factor}, {policy.max_health_factor}]"
        )


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    market = open_market(config)
    keeper = Keeper(config, market)

    if args.command == "check":
        await keeper.check_and_repay()
    elif args.command == "report":
        print(await keeper.generate_report())
    elif args.command == "policies":
        _print_policies(config, market)
    elif args.command == "monitor":
        await keeper.run_continuous(args.interval)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Hedge Fund CLI

Command-line interface for running an analysis over a set of tickers and
inspecting the registered analysts and the active configuration.
"""

import argparse
import json
import logging
import sys
from datetime import date, timedelta
from typing import Dict, List, Optional

from .configs.settings import AnalysisSettings
from .core.errors import ConfigError, RunError
from .core.models import DateRange, PortfolioState, Position, TradeAction
from .orchestration import RunResult, run_analysis
from .services.analysts import get_analyst_order


ACTION_ICONS = {
    TradeAction.BUY: "🟢",
    TradeAction.COVER: "🟢",
    TradeAction.SELL: "🔴",
    TradeAction.SHORT: "🔴",
    TradeAction.HOLD: "⚪",
}


def parse_positions(text: Optional[str]) -> Dict[str, Position]:
    """Parse 'AAPL=10,MSFT=-5' into positions."""
    positions = {}
    if not text:
        return positions
    for item in text.split(','):
        item = item.strip()
        if not item:
            continue
        ticker, sep, quantity = item.partition('=')
        if not sep or not ticker.strip():
            raise ConfigError(f"Invalid position '{item}', expected TICKER=QUANTITY")
        try:
            positions[ticker.strip()] = Position(quantity=int(quantity))
        except ValueError as e:
            raise ConfigError(f"Invalid quantity in position '{item}'") from e
    return positions


class HedgeFundCLI:
    """
    Command-line interface for the analysis engine.

    Every run is built from the settings the CLI was created with.
    """

    def __init__(self, settings: Optional[AnalysisSettings] = None):
        """Initialize the CLI."""
        self.settings = settings or AnalysisSettings.load()

    def run(self, tickers: List[str], date_range: DateRange, portfolio: PortfolioState,
            analysts: Optional[List[str]] = None, show_reasoning: bool = False, as_json: bool = False) -> bool:
        """Run one analysis and print its decisions."""
        if not as_json:
            print(f"🚀 Analyzing {', '.join(tickers)} from {date_range.start} to {date_range.end}...")

        try:
            result = run_analysis(
                tickers,
                date_range,
                portfolio,
                analysts,
                settings=self.settings,
                show_reasoning=show_reasoning or None
            )
        except RunError as e:
            print(f"❌ Run failed: {e}")
            return False

        if as_json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            self.print_decisions(result)
        return True

    def print_decisions(self, result: RunResult) -> None:
        print(f"📊 Decisions (run {result.run_id})")
        print("=" * 50)
        for ticker, decision in result.decisions.items():
            icon = ACTION_ICONS.get(decision.action, "•")
            line = f"{icon} {ticker}: {decision.action.value.upper()}"
            if decision.quantity:
                line += f" {decision.quantity}"
            line += f" (confidence {decision.confidence * 100:.1f}%)"
            print(line)
            print(f"   {decision.rationale}")
        print()
        print(f"💰 Cash after commit: {result.portfolio.cash}")

    def list_analysts(self) -> None:
        print("🧠 Available analysts")
        print("=" * 50)
        defaults = set(self.settings.analysts.default_selection)
        for display_name, key in get_analyst_order():
            marker = " (default)" if key in defaults else ""
            print(f"  {key:<16} {display_name}{marker}")

    def show_config(self) -> None:
        print(json.dumps(self.settings.to_dict(), indent=2))


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Hedge Fund CLI - Multi-analyst, risk-bounded trading decisions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hedge-fund run --tickers AAPL,MSFT --cash 100000
  hedge-fund run --tickers AAPL --start-date 2024-01-01 --end-date 2024-03-31 --analysts fundamentals
  hedge-fund run --tickers AAPL,NVDA --positions AAPL=10 --show-reasoning
  hedge-fund run --tickers AAPL --json
  hedge-fund analysts
  hedge-fund config
        """
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Analyze tickers and print decisions")
    run_parser.add_argument("--tickers", required=True, help="Comma-separated tickers, in allocation order")
    run_parser.add_argument("--start-date", help="Start date YYYY-MM-DD (default: 3 months before end)")
    run_parser.add_argument("--end-date", help="End date YYYY-MM-DD (default: today)")
    run_parser.add_argument("--cash", default="100000", help="Available cash")
    run_parser.add_argument("--positions", help="Current positions, e.g. AAPL=10,MSFT=-5")
    run_parser.add_argument("--margin-requirement", default="0.5", help="Margin requirement for shorts")
    run_parser.add_argument("--analysts", help="Comma-separated analyst keys (default from config)")
    run_parser.add_argument("--show-reasoning", action="store_true", help="Log each agent's reasoning")
    run_parser.add_argument("--json", action="store_true", help="Print the full result as JSON")

    # Analysts command
    subparsers.add_parser("analysts", help="List registered analysts")

    # Config command
    subparsers.add_parser("config", help="Show active configuration")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        cli = HedgeFundCLI()
    except ConfigError as e:
        print(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    if args.command == "analysts":
        cli.list_analysts()

    elif args.command == "config":
        cli.show_config()

    elif args.command == "run":
        try:
            end = args.end_date or date.today().isoformat()
            start = args.start_date or (date.fromisoformat(end) - timedelta(days=90)).isoformat()
            date_range = DateRange.parse(start, end)
            portfolio = PortfolioState(
                cash=args.cash,
                positions=parse_positions(args.positions),
                margin_requirement=args.margin_requirement
            )
        except (ConfigError, ValueError) as e:
            print(f"❌ Invalid arguments: {e}")
            sys.exit(1)

        tickers = [ticker.strip() for ticker in args.tickers.split(',') if ticker.strip()]
        analysts = [key.strip() for key in args.analysts.split(',')] if args.analysts else None

        success = cli.run(tickers, date_range, portfolio, analysts,
                          show_reasoning=args.show_reasoning, as_json=args.json)
        sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

import structlog

from rate_arbitrage.bootstrap import AppComponents, build_app_components
from rate_arbitrage.core.exceptions import AggregationError, InvalidInputError
from rate_arbitrage.services.schemas import ArbitrageReport, SourceComparison

log = logging.getLogger("rate_arbitrage.system")
events = structlog.get_logger("rate_arbitrage.scan")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Aggregate crypto rates and scan for arbitrage opportunities")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--min-profit", type=float, help="Minimum profit percentage (overrides config)")
    parser.add_argument("--provider", help="Preferred price provider")
    parser.add_argument("--force-refresh", action="store_true", help="Bypass the rate cache")
    parser.add_argument("--compare", action="store_true", help="Query every provider and print the price spread")
    parser.add_argument("--watch", type=float, metavar="SECONDS", help="Repeat the scan every N seconds")
    return parser.parse_args(argv)


def print_report(report: ArbitrageReport) -> None:
    table = report.rate_table
    state = "cached" if table.from_cache else "fresh"
    print(f"Rates: {len(table)} quotes from {table.source} ({state})")

    print(f"\nTriangular opportunities: {len(report.triangular)}")
    for opp in report.triangular:
        print(f"  {opp.route:<32} {opp.profit_pct:>8.3f}%  {opp.start_amount:.2f} -> {opp.final_amount:.2f}")

    print(f"\nCross-exchange opportunities: {len(report.cross_exchange)}")
    for opp in report.cross_exchange:
        print(
            f"  {opp.asset:<6} buy {opp.buy_venue}@{opp.buy_price:.6f} "
            f"sell {opp.sell_venue}@{opp.sell_price:.6f}  {opp.profit_pct:>7.3f}%"
        )


def print_comparison(comparisons: Sequence[SourceComparison]) -> None:
    for item in comparisons:
        sources = ", ".join(f"{name}={price}" for name, price in item.prices.items())
        print(
            f"{item.asset}/{item.currency}: avg={item.average:.6f} median={item.median:.6f} "
            f"min={item.minimum} max={item.maximum} stdev={item.stdev:.6f} [{sources}]"
        )


async def run(components: AppComponents, args: argparse.Namespace) -> int:
    engine = components.engine
    aggregator = components.aggregator
    if args.min_profit is not None:
        engine.set_min_profit_percentage(args.min_profit)
    if args.provider:
        aggregator.set_preferred_provider(args.provider)

    if args.compare:
        universe = list(components.settings.arbitrage.universe)
        currencies = [components.settings.arbitrage.reference_currency]
        print_comparison(await aggregator.compare_sources(universe, currencies))
        return 0

    force = args.force_refresh
    while True:
        try:
            report = await engine.evaluate(force_refresh=force)
        except AggregationError as exc:
            log.error("No rates available: %s", exc)
            if not args.watch:
                return 1
        else:
            print_report(report)
            events.info(
                "scan_completed",
                triangular=len(report.triangular),
                cross_exchange=len(report.cross_exchange),
                source=report.rate_table.source,
                cached=report.rate_table.from_cache,
            )
        if not args.watch:
            return 0
        force = False
        await asyncio.sleep(args.watch)


async def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    components = build_app_components(args.config)
    log.info("Rate arbitrage scanner started with providers %s", aggregator_names(components))
    try:
        return await run(components, args)
    except InvalidInputError as exc:
        log.error("Invalid input: %s", exc)
        return 2
    finally:
        await components.close()


def aggregator_names(components: AppComponents) -> str:
    return ",".join(components.aggregator.provider_order)


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        ...

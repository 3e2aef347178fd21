"""Strategy engine runner.

Usage:
    python -m polystrat
    python -m polystrat --strategies mint_split,arbitrage_long
    python -m polystrat --strategies market_making --live
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from polystrat.config import BotConfig, parse_strategy_list
from polystrat.discovery.gamma_client import GammaClient
from polystrat.engine import StrategyEngine
from polystrat.errors import ConfigurationError
from polystrat.execution.order_gateway import (
    ClobOrderGateway,
    DryRunOrderGateway,
    OrderGateway,
)
from polystrat.storage.record_store import JsonFileRecordStore, MemoryRecordStore, RecordStore

logger = logging.getLogger(__name__)

BANNER = r"""
╔══════════════════════════════════════════════╗
║   polystrat - multi-strategy market engine   ║
║   scan · classify · queue · execute          ║
╚══════════════════════════════════════════════╝
"""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """커맨드라인 인자 파싱."""
    parser = argparse.ArgumentParser(
        prog="polystrat",
        description="Prediction-market strategy engine",
    )
    parser.add_argument(
        "--strategies", type=str, default=None,
        help="Comma-separated strategies (mint_split, arbitrage_long, "
             "arbitrage_short, market_making)",
    )
    parser.add_argument(
        "--live", action="store_true", default=False,
        help="Place real orders through the CLOB (default: dry run)",
    )
    parser.add_argument(
        "--state-file", type=str, default=None,
        help="JSON file for opportunities, queue status and configs",
    )
    parser.add_argument(
        "--status-interval", type=float, default=None,
        help="Seconds between status log lines (default: 60)",
    )
    parser.add_argument(
        "--verbose", action="store_true", default=False,
        help="Debug logging",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> BotConfig:
    """환경변수 설정 위에 CLI 인자 적용."""
    config = BotConfig.from_env()
    if args.strategies:
        try:
            config.strategies = parse_strategy_list(args.strategies)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
    if args.live:
        config.dry_run = False
    if args.state_file:
        config.state_file = args.state_file
    if args.status_interval is not None:
        config.status_interval = max(args.status_interval, 1.0)
    return config


def build_gateway(config: BotConfig) -> OrderGateway:
    if config.dry_run:
        return DryRunOrderGateway()
    return ClobOrderGateway.from_env(call_timeout=config.call_timeout)


def build_store(config: BotConfig) -> RecordStore:
    if config.state_file:
        return JsonFileRecordStore(config.state_file)
    return MemoryRecordStore()


def log_status(engine: StrategyEngine) -> None:
    for strategy_type in engine.running_strategies:
        status = engine.get_status(strategy_type)
        queue = status.queue
        logger.info(
            "[STATUS] %s: queued=%d executing=%d success=%d partial=%d failed=%d "
            "expired=%d | queue %s %d/%d | pnl $%.4f",
            strategy_type.value,
            status.counts.get("queued", 0),
            status.counts.get("executing", 0),
            status.counts.get("success", 0),
            status.counts.get("partial", 0),
            status.counts.get("failed", 0),
            status.counts.get("expired", 0),
            queue.state.value if queue else "-",
            queue.size if queue else 0,
            queue.max_size if queue else 0,
            status.metrics.get("net_pnl", 0.0),
        )


async def run(config: BotConfig) -> None:
    """메인 루프: 전략 시작 → 상태 로깅 → 시그널 시 정리."""
    print(BANNER)
    print(f"Mode: {'DRY RUN' if config.dry_run else 'LIVE'}")
    print(f"Strategies: {', '.join(s.value for s in config.strategies)}")
    print("-" * 60)

    gateway = build_gateway(config)
    store = build_store(config)

    stop_event = asyncio.Event()

    def _handle_signal():
        print("\n⚡ Shutting down gracefully...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    async with GammaClient(
        base_url=config.gamma_url,
        clob_url=config.clob_url,
        timeout=int(config.call_timeout),
    ) as client:
        engine = StrategyEngine(client, gateway, store=store)
        engine.registry.load_from_store()

        try:
            for strategy_type in config.strategies:
                await engine.start_strategy(strategy_type)

            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=config.status_interval)
                except asyncio.TimeoutError:
                    log_status(engine)
        finally:
            await engine.shutdown()

    print("Goodbye! 🤙")


def cli_main() -> None:
    """CLI entry point."""
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
        asyncio.run(run(config))
    except ConfigurationError as e:
        logger.error("[CONFIG] %s", e)
        raise SystemExit(2) from e


if __name__ == "__main__":
    cli_main()

"""Command line helpers for RewardForge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from random import Random

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import RewardForgeConfig
from .diagnostics.economy_simulator import EconomySimulator
from .validators import validate_config

console = Console()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def run_server() -> None:
    parser = argparse.ArgumentParser(description="RewardForge API server")
    parser.add_argument("--host", help="Override REWARDFORGE_HOST")
    parser.add_argument("--port", type=int, help="Override REWARDFORGE_PORT")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    configure_logging(args.log_level)

    from aiogram import Bot
    from aiohttp import web

    from .api.server import build_web_app
    from .app import RewardApp
    from .telegram.membership import TelegramMembershipOracle

    config = RewardForgeConfig.from_env()
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    membership = None
    bot = None
    if config.auth.bot_token:
        bot = Bot(config.auth.bot_token)
        membership = TelegramMembershipOracle(
            bot, config.task.channel_id, request_timeout=config.task.request_timeout_seconds
        )
    app = RewardApp(config, membership=membership)
    web_app = build_web_app(app)
    if bot is not None:

        async def close_bot(_: web.Application) -> None:
            await bot.session.close()

        web_app.on_cleanup.append(close_bot)
    web.run_app(web_app, host=config.server.host, port=config.server.port, print=None)


def run_admin_bot() -> None:
    parser = argparse.ArgumentParser(description="RewardForge admin bot (long polling)")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    configure_logging(args.log_level)

    config = RewardForgeConfig.from_env()
    if not config.auth.bot_token:
        console.print("[bold red]REWARDFORGE_BOT_TOKEN is not set.[/bold red]")
        sys.exit(1)
    asyncio.run(_poll_admin_bot(config))


async def _poll_admin_bot(config: RewardForgeConfig) -> None:
    from aiogram import Bot, Dispatcher

    from .admin.commands import build_admin_router
    from .app import RewardApp

    app = RewardApp(config)
    await app.init_backend()
    bot = Bot(config.auth.bot_token)
    dp = Dispatcher()
    dp.include_router(build_admin_router(app.admin, app.policy, config.admin.commands))
    try:
        await dp.start_polling(bot)
    finally:
        await bot.session.close()
        await app.close()


def run_simulator() -> None:
    parser = argparse.ArgumentParser(description="RewardForge spin wheel simulator")
    parser.add_argument("--spins", type=int, default=10000, help="Number of spins to simulate")
    parser.add_argument("--seed", type=int, help="Random seed")
    args = parser.parse_args()

    config = RewardForgeConfig.from_env()
    rng = Random(args.seed) if args.seed is not None else None
    simulator = EconomySimulator(config, rng=rng)
    result = simulator.simulate(spins=args.spins)

    table = Table(title=f"Spin wheel, {result.spins} spins")
    table.add_column("Sector")
    table.add_column("Prize", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Hits", justify="right")
    for index, sector in enumerate(simulator.wheel.sectors):
        table.add_row(str(index), str(sector.prize), f"{sector.weight:g}", str(result.hits.get(index, 0)))
    console.print(table)

    payout = simulator.window_payout()
    console.print(f"Simulated mean prize: [bold]{result.mean_prize:.4f}[/bold]")
    console.print(f"Expected prize per spin: [bold]{simulator.wheel.expected_prize():.4f}[/bold]")
    console.print(
        f"Max payout per quota window: ads {payout.ads}, spins ~{payout.spins:.2f}, "
        f"total ~{payout.total:.2f} (referrer commission ~{payout.commission_per_window:.2f})"
    )


def run_validate() -> None:
    argparse.ArgumentParser(description="RewardForge configuration validator").parse_args()
    try:
        config = RewardForgeConfig.from_env()
    except ValueError as exc:
        console.print(f"[bold red]Invalid environment:[/bold red] {exc}")
        sys.exit(1)

    issues = validate_config(config)
    if issues:
        console.print("[bold red]Configuration problems:[/bold red]")
        for issue in issues:
            console.print(f"- {issue}")
        sys.exit(1)
    console.print("[bold green]Configuration is valid ✅[/bold green]")

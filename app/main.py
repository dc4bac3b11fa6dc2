"""
Expense Bot Service Entry Point

Starts one Telegram bot session per configured user and runs until
SIGINT/SIGTERM.

Usage:
    python -m app.main

Configuration comes from the environment / .env (see expense_bot.config).
The users file (TELEGRAM_USERS_FILE, default users.json) lists the bots
to load at startup.

SHUTDOWN: On a signal, intake stops for every session, in-flight events
are allowed to finish for SHUTDOWN_GRACE_SECONDS, then transports are
released and remaining workers cancelled.
"""

import asyncio
import logging
import signal
import sys

import structlog

from expense_bot.config import get_settings, validate_all_settings
from expense_bot.orchestrator import create_app_components, load_transport_configs, start_all


logger = structlog.get_logger("expense_bot.main")


async def run() -> int:
    settings = get_settings()
    app_settings = settings.app

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if app_settings.debug_mode else logging.INFO,
    )

    checks = validate_all_settings(["telegram", "gemini", "rate_limit", "recovery", "app"])
    failed = [name for name, ok in checks.items() if ok is False]
    if failed:
        for name in failed:
            logger.error("invalid_settings", group=name, error=checks.get(f"{name}_error"))
        return 1

    components = create_app_components(settings)
    registry = components.registry

    try:
        configs = load_transport_configs(settings.telegram.users_file)
    except FileNotFoundError:
        logger.error("users_file_missing", path=settings.telegram.users_file)
        return 1

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still interrupts
            pass

    await start_all(registry, configs)
    logger.info("service_running", sessions=len(registry))

    try:
        await stop_event.wait()
    finally:
        logger.info("service_stopping")
        await registry.shutdown(app_settings.shutdown_grace_seconds)
        logger.info("service_stopped")
    return 0


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()

"""Main entry point for Riveting Bot."""

import asyncio
import contextlib
import signal

from riveting_bot.config import get_settings
from riveting_bot.discord.bot import RivetingBot
from riveting_bot.logging import get_logger, setup_logging


async def main() -> None:
    """Main application entry point."""
    settings = get_settings()
    setup_logging(settings)
    log = get_logger("riveting_bot.main")

    log.info(
        "starting_riveting_bot",
        environment=settings.environment,
        features=sorted(f.value for f in settings.features),
        data_directory=settings.data_directory,
    )

    bot = RivetingBot(settings)
    log.info("bot_created", commands=len(bot.services.registry))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, bot.router.request_shutdown)

    try:
        await bot.start(settings.discord_token.get_secret_value())
    except KeyboardInterrupt:
        log.info("shutdown_requested")
    finally:
        await bot.close()
        log.info("riveting_bot_stopped")


def run() -> None:
    """Run the application."""
    asyncio.run(main())


if __name__ == "__main__":
    run()

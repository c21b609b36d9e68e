"""Main entry point for backstage.

Initializes logging in two phases (defaults then config-driven),
creates the ChatBot, and runs a console transport on stdin with
graceful shutdown on SIGTERM/SIGINT.

Each stdin line is ``<channel> <caller> <message>``; responses are
printed to stdout.

Key functions:
    main: Async entry point.
    run: Synchronous wrapper that calls asyncio.run(main()).
"""

import asyncio
import signal
import sys
from typing import Optional, Tuple

import structlog

from . import __version__
from .logging_config import setup_logging


def parse_console_line(line: str) -> Optional[Tuple[str, str, str]]:
    """Split a console line into (channel, caller, message)."""
    parts = line.strip().split(maxsplit=2)
    if len(parts) < 3:
        return None
    return parts[0], parts[1], parts[2]


async def console_transport(bot, shutdown_event: asyncio.Event) -> None:
    """Feed stdin lines to the bot until EOF or shutdown."""
    logger = structlog.get_logger("backstage.bot")
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    while not shutdown_event.is_set():
        raw = await reader.readline()
        if not raw:
            shutdown_event.set()
            break
        line = raw.decode("utf-8", errors="replace")
        parsed = parse_console_line(line)
        if parsed is None:
            logger.warning("console_line_ignored", line=line.strip())
            continue
        channel, caller, text = parsed
        response = await bot.handle_message(channel, caller, text)
        if response is not None:
            print(f"[{channel}] {response}", flush=True)


async def main():
    """Main async entry point."""
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("backstage")

    logger.info("backstage_starting", version=__version__)

    # Import here to ensure logging is configured first
    from .bot import ChatBot
    from .config import get_config

    config = get_config()
    config.validate()

    # Phase 2: reconfigure with real config, cache_logger_on_first_use=True
    setup_logging(config)

    bot = ChatBot(config)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported.
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: handle_shutdown(signal.SIGINT),
                )

    try:
        await bot.start()
        transport_task = asyncio.create_task(console_transport(bot, shutdown_event))

        await shutdown_event.wait()

        transport_task.cancel()
        try:
            await transport_task
        except asyncio.CancelledError:
            pass

    except Exception as e:
        logger.error("bot_error", error=str(e))
        raise
    finally:
        await bot.stop()
        logger.info("backstage_stopped")


def run():
    """Synchronous entry point for the ``backstage`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

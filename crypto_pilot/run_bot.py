"""Entry point for running the signal bot until interrupted."""

from __future__ import annotations

import asyncio
import signal
import sys

from crypto_pilot.engine import EngineConfig, TradingEngine


async def _run(config: EngineConfig) -> None:
    engine = TradingEngine(config)
    stop = asyncio.Event()

    def shutdown_handler() -> None:
        print("\nGraceful shutdown initiated...")
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(shutdown_handler))

    print(f"Bot started in {engine.mode} mode. Press CTRL+C to stop.")
    await engine.run(stop)


def main() -> None:
    config = EngineConfig.load(sys.argv[1] if len(sys.argv) > 1 else None)
    asyncio.run(_run(config))
    print("Bot stopped cleanly.")


if __name__ == "__main__":
    main()

"""
Reconciliation service.

Runs the periodic sweep until SIGINT or SIGTERM:
    python -m reconciler
"""

import asyncio
import signal

from reconciler.orchestrator import create_app_components, run_service


async def serve() -> None:
    components = create_app_components()
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    await run_service(components, shutdown)


def main() -> None:
    asyncio.run(serve())


if __name__ == "__main__":
    main()

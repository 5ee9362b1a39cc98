from __future__ import annotations

import asyncio
import logging
import signal

from dealerhub.core.config import get_settings
from dealerhub.core.logging import configure_logging
from dealerhub.services.container import ServiceContainer


logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Unavailable off the main thread and on some platforms.
            pass


async def run_worker(container: ServiceContainer | None = None, *, stop_event: asyncio.Event | None = None) -> int:
    # Run the retention schedule outside the API process until signalled to stop.
    container = container or ServiceContainer(get_settings())
    if stop_event is None:
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

    scheduler = container.build_scheduler()
    scheduler.start()
    logger.info("retention_worker_started data_dir=%s", container.settings.data_dir)
    try:
        await stop_event.wait()
    finally:
        await scheduler.stop()
    logger.info("retention_worker_stopped runs=%s", scheduler.runs)
    return scheduler.runs


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    asyncio.run(run_worker(ServiceContainer(settings)))


if __name__ == "__main__":
    main()

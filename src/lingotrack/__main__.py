"""Main entry point running progress sync for one learner."""
import asyncio
import logging
import signal
import sys

from lingotrack.app import ProgressApp
from lingotrack.config import settings
from lingotrack.logging_config import setup_logging
from lingotrack.models.progress_models import Expired, Resumable
from lingotrack.monitoring import start_monitoring

logger = logging.getLogger(__name__)


async def main(user_id: str) -> None:
    """Run progress tracking until a termination signal arrives."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    app = ProgressApp(user_id)
    try:
        logger.info("Starting progress tracking for user %s...", user_id)
        await app.start()

        state = app.recovery_state
        if isinstance(state, Resumable):
            logger.info("Interrupted session %s can be resumed", state.snapshot.session_id)
        elif isinstance(state, Expired):
            logger.info("Discarding expired session %s", state.snapshot.session_id)
            app.sessions.discard_recovery(user_id)

        await stop_event.wait()
    finally:
        logger.info("Cleaning up...")
        await app.stop()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python -m lingotrack <user_id>")
        sys.exit(2)

    setup_logging("Starting lingotrack ...")
    if settings.monitoring.enabled:
        start_monitoring(settings.monitoring.port)

    try:
        asyncio.run(main(sys.argv[1]))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")

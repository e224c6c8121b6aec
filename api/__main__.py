"""Command line interface for running the API server."""
import asyncio
import logging
import signal

import uvicorn
import uvloop

from config import settings_conf

# Configure logging
logging.basicConfig(
    level=settings_conf.get('log_level', 'INFO'),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

server = None
should_exit = False


def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global should_exit
    logger.info("Shutdown signal received. Cleaning up...")
    should_exit = True


class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app_path: str = "api:app", host: str = "0.0.0.0", port: int = 5000):
        self.config = uvicorn.Config(
            app_path,
            host=host,
            port=port,
            log_level=str(settings_conf.get('log_level', 'INFO')).lower()
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        """Run the server in a way that can be stopped."""
        await self.server.serve()

    async def stop(self):
        """Stop the server."""
        self.server.should_exit = True
        if hasattr(self.server, 'force_exit'):
            self.server.force_exit = True


async def main():
    """Run the API server until it exits or a shutdown signal arrives."""
    global server, should_exit

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    server = UvicornServer(host=settings_conf['host'], port=settings_conf['port'])
    task = asyncio.create_task(server.run(), name="api")
    logger.info(
        f"Serving PipaPal on {settings_conf['host']}:{settings_conf['port']} "
        f"with {settings_conf['storage_backend']} storage"
    )

    try:
        while not should_exit and not task.done():
            await asyncio.sleep(1)

        if task.done() and not task.cancelled() and task.exception():
            logger.error(f"API server failed with error: {task.exception()}")
    finally:
        logger.info("Stopping API server...")
        await server.stop()
        if not task.done():
            try:
                await asyncio.wait_for(task, timeout=10)
            except asyncio.TimeoutError:
                task.cancel()
        logger.info("Cleanup complete.")


if __name__ == "__main__":
    uvloop.install()
    asyncio.run(main())

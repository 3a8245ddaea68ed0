"""Command line interface for running the API server.

With ``run_sync_in_api`` enabled the listing sync loop runs in the same
event loop, started and stopped by the app's lifespan handler.
"""
import asyncio
import logging

import uvicorn

from config import load_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app_path: str = "api:app", host: str = "0.0.0.0", port: int = 8000):
        self.config = uvicorn.Config(
            app_path,
            host=host,
            port=port,
            log_level="info"
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        """Run the server until it receives a shutdown signal."""
        await self.server.serve()


async def main():
    """Run the API server."""
    settings = load_settings()
    logger.info(f"Starting API server on port {settings['port']}")
    server = UvicornServer(port=settings['port'])
    await server.run()


if __name__ == "__main__":
    asyncio.run(main())

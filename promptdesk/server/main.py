"""Main server process for promptdesk."""

import asyncio
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import psutil
from aiohttp import web
from loguru import logger
from pydantic import ValidationError

from .api import create_api_app
from .config import Config
from .errors import ErrorTracker
from .file_cache import FileListCache
from .metrics import MetricsCollector
from .relay import ForwardingRelay
from .store import JsonStore

__version__ = "0.1.0"


class PromptDeskServer:
    """Owns the store, the file cache and the relay, and serves the HTTP API."""

    def __init__(self, config: Config):
        self.config = config
        self.start_time = datetime.now(timezone.utc)

        self.metrics = MetricsCollector()
        self.errors = ErrorTracker()
        self.store = JsonStore(config.data_file)
        self.file_cache = FileListCache(
            static_excludes=config.files.static_excludes,
            metrics=self.metrics
        )
        self.relay = ForwardingRelay(
            self.store,
            mount_prefix=config.relay.mount_prefix,
            chunk_size=config.relay.chunk_size,
            metrics=self.metrics,
            errors=self.errors
        )

        # HTTP API
        self.api_app: Optional[web.Application] = None
        self.api_runner: Optional[web.AppRunner] = None
        self.api_site: Optional[web.TCPSite] = None

    @property
    def url(self) -> str:
        return f"http://{self.config.server.host}:{self.config.server.port}"

    async def start(self) -> None:
        """Load data and start serving."""
        logger.info("Starting promptdesk server...")
        await self.store.load()
        await self._start_api()
        logger.info(f"promptdesk is running at {self.url}")

    async def stop(self) -> None:
        logger.info("Stopping promptdesk server...")
        if self.api_site:
            await self.api_site.stop()
        if self.api_runner:
            await self.api_runner.cleanup()
        self.api_site = None
        self.api_runner = None
        logger.info("promptdesk server stopped")

    async def _start_api(self) -> None:
        """Start the HTTP API server."""
        self.api_app = create_api_app(self)
        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        self.api_site = web.TCPSite(
            self.api_runner,
            self.config.server.host,
            self.config.server.port
        )
        await self.api_site.start()

    def get_status(self) -> dict:
        """Get server status and statistics."""
        process = psutil.Process()
        uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        data = self.store.data

        return {
            "status": "running",
            "version": __version__,
            "uptime": f"{uptime:.0f}s",
            "stats": {
                "projects": len(data.projects),
                "favorites": len(data.favorites),
                "proxies": len(data.proxies),
                "active_proxy_id": data.active_proxy_id,
                "file_cache": self.file_cache.stats(),
                "memory_mb": process.memory_info().rss / 1024 / 1024,
            },
            "errors": self.errors.summary(),
            "config": {
                "data_file": str(self.config.data_file),
                "relay_mount_prefix": self.config.relay.mount_prefix,
            }
        }


def configure_logging(config: Config) -> None:
    """Send logs to stderr and to a rotating file under the log dir."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=config.logging.level
    )

    log_dir = config.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "promptdesk.log",
        rotation=config.logging.rotation,
        retention=config.logging.retention,
        level=config.logging.file_level
    )


async def main(config_path: Optional[str] = None, port: Optional[int] = None):
    """Main entry point for the server."""
    try:
        config = Config.load(Path(config_path) if config_path else None)
        if port is not None:
            config.override_port(port)
    except (FileNotFoundError, ValidationError) as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    configure_logging(config)

    server = PromptDeskServer(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops
            pass

    try:
        await server.start()
        await stop_event.wait()
        logger.info("Shutdown signal received")
    except Exception as e:
        logger.exception(f"Server error: {e}")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())

"""
Living Memory - Entry Point

Starts the long-running services:
1. Digestion worker (catches up on anything undigested)
2. Weekly consolidation + monthly snapshot schedule

Usage:
    python main.py

Reads .env for API credentials (see .env.example) and config/*.yaml.
"""

import asyncio
import logging
import signal

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

from livingmemory import LivingMemory, ModelRouter, load_settings
from livingmemory.scheduler import MaintenanceScheduler

settings = load_settings()
settings.db_path.parent.mkdir(parents=True, exist_ok=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(settings.db_path.parent / "livingmemory.log", encoding="utf-8"),
    ],
)
logger = logging.getLogger("livingmemory")


class LivingMemoryService:
    """Wires the engine to its schedule."""

    def __init__(self):
        self.memory = LivingMemory(settings=settings, model_router=ModelRouter())
        self.scheduler = MaintenanceScheduler(self.memory)
        self._stopping = asyncio.Event()

    async def start(self):
        logger.info("=" * 60)
        logger.info("LIVING MEMORY STARTING")
        logger.info("=" * 60)

        await self.memory.start(catch_up=True)
        self.scheduler.start()
        logger.info(f"Memory online: {self.memory.get_summary()}")

        await self._stopping.wait()

    async def stop(self):
        logger.info("Shutting down...")
        self.scheduler.stop()
        await self.memory.stop()
        self._stopping.set()
        logger.info("Stopped.")


async def main():
    service = LivingMemoryService()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Shutdown signal received")
        asyncio.create_task(service.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await service.start()


if __name__ == "__main__":
    asyncio.run(main())

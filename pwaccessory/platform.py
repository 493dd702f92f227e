"""
Platform - wires gateways to presented accessories.

Architecture:
    - One ConnectionManager.maintain() task per gateway keeps it authorised
      (15s retry doubling to 60s, 24h token refresh)
    - One Aggregator.run() task per gateway polls every PW_POLL_INTERVAL seconds
    - Blocking HTTP runs in a dedicated thread pool
    - Snapshots from every gateway feed a single DeviceRegistry

Shutdown cancels every task; no further network calls are made.
"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from pwaccessory.accessories import AccessoryRegistry
from pwaccessory.aggregator import Aggregator, RESOURCES
from pwaccessory.config import PlatformConfig, Settings
from pwaccessory.connection import ConnectionManager
from pwaccessory.fetcher import Fetcher
from pwaccessory.models import DeviceSnapshot
from pwaccessory.registry import DeviceRegistry

log = logging.getLogger(__name__)


class PowerwallPlatform:
    """Runs every configured gateway against one accessory registry."""

    def __init__(self, config: PlatformConfig, accessories: AccessoryRegistry,
                 settings: Optional[Settings] = None, fetcher: Optional[Fetcher] = None):
        self.config = config
        self.settings = settings or Settings()
        pool_size = max(10, len(config.gateways) * len(RESOURCES))
        self._executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="pwaccessory")
        self.fetcher = fetcher or Fetcher(poolmaxsize=self.settings.pool_maxsize, executor=self._executor)
        self.registry = DeviceRegistry(accessories)
        self.connections = ConnectionManager(self.fetcher, timeout=self.settings.timeout,
                                             login_attempts=self.settings.login_attempts,
                                             token_refresh=self.settings.token_refresh)
        self.aggregator = Aggregator(self.connections, self.fetcher, self.on_snapshots, config=config,
                                     interval=self.settings.poll_interval, timeout=self.settings.timeout,
                                     max_attempts=self.settings.fetch_attempts)
        self.connection_ids: List[str] = self.connections.add_all(config.gateways)
        self._tasks: Dict[str, List[asyncio.Task]] = {}

    def on_snapshots(self, snapshots: List[DeviceSnapshot]):
        self.registry.process(snapshots)

    async def start(self):
        if not self.connection_ids:
            log.warning("No valid gateway connections configured")
            return
        for connection_id in self.connection_ids:
            self._tasks[connection_id] = [
                asyncio.create_task(self.connections.maintain(connection_id)),
                asyncio.create_task(self.aggregator.run(connection_id)),
            ]
        log.info(f"Platform ready - {len(self.connection_ids)} gateway(s)")

    async def run_once(self) -> List[DeviceSnapshot]:
        """ Authorise every gateway and run a single cycle for each """
        snapshots: List[DeviceSnapshot] = []
        for connection_id in self.connection_ids:
            if not self.connections.is_authorised(connection_id):
                await self.connections.connect(connection_id)
            result = await self.aggregator.poll_once(connection_id)
            if result:
                snapshots.extend(result)
        return snapshots

    async def shutdown(self):
        tasks = [task for group in self._tasks.values() for task in group]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                # Expected when cancelling tasks during shutdown
                pass
            except Exception as e:
                log.debug(f"Task ended with error during shutdown: {e}")
        await self.connections.shutdown()
        self.registry.clear()
        self.fetcher.close()
        self._executor.shutdown(wait=False)
        log.info("Platform shutdown complete")

import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from pwaccessory.config import PlatformConfig
from pwaccessory.connection import ConnectionManager
from pwaccessory.exceptions import TransportError
from pwaccessory.fetcher import Fetcher
from pwaccessory.models import DeviceSnapshot, RawResourceBundle
from pwaccessory.normalizer import normalize

log = logging.getLogger(__name__)

POLL_INTERVAL = 15  # seconds between cycles

# Bundle field -> gateway resource
RESOURCES: Dict[str, str] = {
    'networks': '/api/networks',
    'status': '/api/status',
    'powerwalls': '/api/powerwalls',
    'powerflow': '/api/meters/aggregates',
    'system_status': '/api/system_status',
    'operation': '/api/operation',
    'solar': '/api/solars',
}

SnapshotHandler = Callable[[List[DeviceSnapshot]], None]
Sleep = Callable[[float], Awaitable[None]]


class Aggregator:
    """
    Pulls every data resource of a gateway once per cycle.

    A cycle is only accepted when all resources returned JSON; otherwise
    nothing is emitted for that connection. Accepted bundles are normalised
    and handed to on_snapshots.
    """

    def __init__(self, connections: ConnectionManager, fetcher: Fetcher, on_snapshots: SnapshotHandler,
                 config: Optional[PlatformConfig] = None, interval: float = POLL_INTERVAL,
                 timeout: Optional[float] = 10, max_attempts: int = 1, sleep: Optional[Sleep] = None):
        self.connections = connections
        self.fetcher = fetcher
        self.on_snapshots = on_snapshots
        self.config = config or PlatformConfig()
        self.interval = interval
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._sleep = sleep or asyncio.sleep

    async def _fetch_resource(self, connection_id: str, name: str, api: str):
        connection = self.connections.get(connection_id)
        url = connection.base_url + api
        try:
            r = await self.fetcher.fetch('GET', url, headers={
                'content-type': 'application/json',
                'cookie': 'AuthCookie=' + (connection.token or ''),
            }, timeout=self.timeout, max_attempts=self.max_attempts)
        except TransportError as exc:
            if exc.status_code in (401, 403):
                # Session expired - get a new token before the next cycle
                self.connections.mark_unauthorised(connection_id)
            if not exc.is_timeout:
                log.debug(f'REST API had an error obtaining data from url "{url}" for connection '
                          f'"{connection_id}"')
                log.debug(f'Error was "{exc}"')
            return name, None
        text = r.text
        if not text or not text.strip():
            return name, {}
        try:
            return name, json.loads(text)
        except ValueError as exc:
            log.debug(f'Unable to parse payload from url "{url}" as JSON: {exc}')
            return name, None

    async def fetch_bundle(self, connection_id: str) -> Optional[RawResourceBundle]:
        """ Fetch all resources concurrently; None unless every one of them succeeded """
        results = await asyncio.gather(*[
            self._fetch_resource(connection_id, name, api) for name, api in RESOURCES.items()
        ])
        payloads = {name: payload for name, payload in results if payload is not None}
        if len(payloads) != len(RESOURCES):
            log.debug(f"Discarding incomplete cycle for connection {connection_id}: "
                      f"{len(payloads)}/{len(RESOURCES)} resources")
            return None
        try:
            return RawResourceBundle(**payloads)
        except ValueError as exc:
            log.debug(f"Discarding cycle for connection {connection_id} with unexpected payloads: {exc}")
            return None

    async def poll_once(self, connection_id: str) -> Optional[List[DeviceSnapshot]]:
        """ Run one cycle; returns the snapshots handed on, or None when nothing was emitted """
        if not self.connections.is_authorised(connection_id):
            return None
        bundle = await self.fetch_bundle(connection_id)
        if bundle is None:
            return None
        snapshots = normalize(bundle, self.config, connection_id)
        self.on_snapshots(snapshots)
        return snapshots

    async def run(self, connection_id: str):
        """ Poll a connection every interval seconds until cancelled """
        while True:
            try:
                await self.poll_once(connection_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.error(f"Error in polling task for connection {connection_id}: {exc}")
            await self._sleep(self.interval)

import asyncio
import json
import logging
import uuid
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set

from pwaccessory.config import GatewayConfig
from pwaccessory.exceptions import LoginError, TransportError
from pwaccessory.fetcher import Fetcher
from pwaccessory.models import Connection, INITIAL_BACKOFF_MS, MAX_BACKOFF_MS

log = logging.getLogger(__name__)

LOGIN_API = '/api/login/Basic'
TOKEN_REFRESH = 24 * 3600  # seconds

Sleep = Callable[[float], Awaitable[None]]


def next_backoff(backoff_ms: int) -> int:
    """ Delay to use after the next consecutive failure """
    return min(backoff_ms * 2, MAX_BACKOFF_MS)


class ConnectionManager:
    """
    Owns one Connection per configured gateway and keeps it authorised.

    States per connection:
        unauthorised -> authorising -> authorised -> (token refresh -> authorising)
        unauthorised + retry_allowed=False is terminal (host not found)
    """

    def __init__(self, fetcher: Fetcher, timeout: Optional[float] = 10, login_attempts: int = 1,
                 token_refresh: float = TOKEN_REFRESH, sleep: Optional[Sleep] = None):
        self.fetcher = fetcher
        self.timeout = timeout
        self.login_attempts = login_attempts
        self.token_refresh = token_refresh
        self.connections: Dict[str, Connection] = {}
        self._refresh_tasks: Dict[str, asyncio.Task] = {}
        self._wake: Dict[str, asyncio.Event] = {}
        self._failed: Set[str] = set()  # last login attempt failed, back off before the next
        self._sleep = sleep or asyncio.sleep

    def add(self, config: GatewayConfig) -> str:
        connection_id = str(uuid.uuid4())
        self.connections[connection_id] = Connection(
            id=connection_id,
            host=config.gateway,
            username=config.username,
            email=config.email,
            password=config.password,
        )
        self._wake[connection_id] = asyncio.Event()
        log.debug(f"Registered gateway {config.gateway} as connection {connection_id}")
        return connection_id

    def add_all(self, configs: Iterable[GatewayConfig]):
        return [self.add(config) for config in configs]

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def is_authorised(self, connection_id: str) -> bool:
        connection = self.connections.get(connection_id)
        return connection is not None and connection.authorised

    async def connect(self, connection_id: str) -> bool:
        """
        Authorise against the gateway login resource.

        On success stores the token and arms the token refresh timer. On
        failure the connection is left unauthorised; an unresolvable host
        also disables further retries.
        """
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        log.info(f'Performing authorisation to Tesla Gateway at "{connection.host}"')
        body = json.dumps({
            'username': connection.username,
            'password': connection.password,
            'email': connection.email,
        })
        try:
            r = await self.fetcher.fetch('POST', connection.base_url + LOGIN_API,
                                         headers={'content-type': 'application/json'}, body=body,
                                         timeout=self.timeout, max_attempts=self.login_attempts)
            try:
                token = r.json()['token']
            except (ValueError, KeyError, TypeError):
                raise LoginError('Invalid Powerwall Login')
            if not token:
                raise LoginError('Login response contained an empty token')
        except TransportError as exc:
            connection.authorised = False
            connection.token = None
            if exc.is_unresolved:
                log.error(f'Specified Tesla gateway "{connection.host}" could not be found. Please check '
                          f'your configuration')
                connection.retry_allowed = False
            elif exc.is_timeout:
                log.error(f'Failed to connect to Tesla Gateway "{connection.host}". A periodic retry event '
                          f'will be triggered')
                connection.retry_allowed = True
            else:
                log.error(f'Authorisation failed to Tesla Gateway "{connection.host}". A periodic retry '
                          f'event will be triggered')
                log.debug(f'Authorisation error was: {exc}')
                connection.retry_allowed = True
            self._failed.add(connection_id)
            return False
        except Exception as exc:
            # rejected credentials or unusable login response
            connection.authorised = False
            connection.token = None
            connection.retry_allowed = True
            log.error(f'Authorisation failed to Tesla Gateway "{connection.host}": {exc}. A periodic retry '
                      f'event will be triggered')
            self._failed.add(connection_id)
            return False

        connection.token = token
        connection.authorised = True
        connection.retry_allowed = True
        connection.backoff_ms = INITIAL_BACKOFF_MS
        self._failed.discard(connection_id)
        self._arm_refresh(connection_id)
        log.info(f'Successfully authorised to Tesla Gateway "{connection.host}"')
        return True

    def mark_unauthorised(self, connection_id: str):
        """ Drop the session so the maintain loop authorises again """
        connection = self.connections.get(connection_id)
        if connection is None or not connection.authorised:
            return
        log.debug(f'Session expired for Tesla Gateway "{connection.host}"')
        connection.authorised = False
        connection.token = None
        self._failed.discard(connection_id)
        self._wake_up(connection_id)

    def record_failure(self, connection_id: str) -> int:
        """ Return the delay (ms) before the next attempt and double the stored one """
        connection = self.connections[connection_id]
        delay = connection.backoff_ms
        connection.backoff_ms = next_backoff(delay)
        return delay

    async def maintain(self, connection_id: str):
        """
        Keep a connection authorised until it becomes terminal or is cancelled.

        Failed attempts are retried after 15s, doubling up to 60s.
        """
        connection = self.connections[connection_id]
        wake = self._wake[connection_id]
        while True:
            if connection.authorised:
                await wake.wait()
                wake.clear()
                continue
            if not connection.retry_allowed:
                log.debug(f'No further connection attempts for Tesla Gateway "{connection.host}"')
                return
            if connection_id not in self._failed and await self.connect(connection_id):
                wake.clear()
                continue
            if not connection.retry_allowed:
                return
            delay = self.record_failure(connection_id)
            log.debug(f'Retrying Tesla Gateway "{connection.host}" in {delay / 1000:.0f}s')
            await self._sleep(delay / 1000)
            self._failed.discard(connection_id)

    def _wake_up(self, connection_id: str):
        wake = self._wake.get(connection_id)
        if wake is not None:
            wake.set()

    def _arm_refresh(self, connection_id: str):
        self._cancel_refresh(connection_id)
        self._refresh_tasks[connection_id] = asyncio.create_task(self._refresh_after(connection_id))

    def _cancel_refresh(self, connection_id: str):
        task = self._refresh_tasks.pop(connection_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _refresh_after(self, connection_id: str):
        await asyncio.sleep(self.token_refresh)
        connection = self.connections.get(connection_id)
        if connection is None:
            return
        log.info(f'Performing periodic re-authorisation to Tesla Gateway "{connection.host}"')
        if not await self.connect(connection_id):
            # hand over to maintain, which backs off before the next attempt
            self._wake_up(connection_id)

    async def shutdown(self):
        tasks = list(self._refresh_tasks.values())
        self._refresh_tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        for connection in self.connections.values():
            connection.authorised = False
            connection.token = None

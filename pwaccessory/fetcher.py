import asyncio
import logging
import socket
from concurrent.futures import Executor
from typing import Awaitable, Callable, Optional, Union

import requests
import urllib3
from requests import Response

from pwaccessory.exceptions import TransportError, TIMEOUT, UNRESOLVED, CONNECTION, HTTP

# Gateways use self-signed certificates; verification is switched off on our session only
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

log = logging.getLogger(__name__)

METHODS = ('GET', 'POST')
RETRY_DELAY = 0.5  # seconds before the first retry, doubled for each retry after that

Sleep = Callable[[float], Awaitable[None]]

# getaddrinfo codes for a name that does not exist; other codes (EAI_AGAIN) are transient
_NOT_FOUND_ERRNOS = {socket.EAI_NONAME}
if hasattr(socket, 'EAI_NODATA'):
    _NOT_FOUND_ERRNOS.add(socket.EAI_NODATA)
_NOT_FOUND_TEXT = ('Name or service not known', 'nodename nor servname')


def retry_delay(attempt: int) -> float:
    """ Delay in seconds to wait after failed attempt number `attempt` (1 based) """
    return RETRY_DELAY * (2 ** (attempt - 1))


def _is_name_resolution_error(exc: BaseException) -> bool:
    # requests wraps urllib3 errors which wrap the socket error; walk the chain
    seen = set()
    pending = [exc]
    while pending:
        err = pending.pop()
        if err is None or id(err) in seen:
            continue
        seen.add(id(err))
        if isinstance(err, socket.gaierror):
            return err.errno in _NOT_FOUND_ERRNOS
        if any(text in str(err) for text in _NOT_FOUND_TEXT):
            return True
        pending.append(err.__cause__)
        pending.append(err.__context__)
        pending.extend(a for a in getattr(err, 'args', ()) if isinstance(a, BaseException))
        reason = getattr(err, 'reason', None)
        if isinstance(reason, BaseException):
            pending.append(reason)
    return False


def classify(exc: BaseException) -> str:
    """ Map a requests/asyncio exception to a TransportError kind """
    if isinstance(exc, (requests.exceptions.Timeout, asyncio.TimeoutError, TimeoutError)):
        return TIMEOUT
    if _is_name_resolution_error(exc):
        return UNRESOLVED
    return CONNECTION


class Fetcher:
    """
    HTTP access to local gateways.

    Wraps a pooled requests.Session with certificate verification disabled.
    Blocking requests run in an executor so callers can await them and fan
    out several calls at once.
    """

    def __init__(self, poolmaxsize: int = 10, verify: bool = False, executor: Optional[Executor] = None,
                 sleep: Optional[Sleep] = None):
        self.session = requests.Session()
        self.session.verify = verify
        if poolmaxsize > 0:
            # noinspection PyUnresolvedReferences
            a = requests.adapters.HTTPAdapter(pool_maxsize=poolmaxsize)
            self.session.mount('https://', a)
        self.executor = executor
        self._sleep = sleep or asyncio.sleep

    def _request(self, method: str, url: str, headers: Optional[dict], body: Optional[Union[str, bytes]],
                 timeout: Optional[float]) -> Response:
        r = self.session.request(method, url, headers=headers, data=body, timeout=timeout)
        if not r.ok:
            raise TransportError(f"HTTP {r.status_code} from {url}", status_code=r.status_code, kind=HTTP)
        return r

    async def fetch(self, method: str, url: str, headers: Optional[dict] = None,
                    body: Optional[Union[str, bytes]] = None, timeout: Optional[float] = None,
                    max_attempts: int = 1) -> Response:
        """
        Perform one logical HTTP call.

        Args:
            method       = GET or POST
            url          = full https url
            headers      = request headers
            body         = request body (POST only)
            timeout      = seconds allowed for each attempt (None for no deadline)
            max_attempts = total number of attempts before giving up

        Returns the response of the first successful attempt. Raises
        TransportError with the last status code and the attempt count if
        every attempt failed.
        """
        method = method.upper()
        if method not in METHODS or not url:
            raise ValueError(f"Unsupported request {method} {url!r}")
        if method != 'POST':
            body = None
        max_attempts = max(1, int(max_attempts))
        loop = asyncio.get_running_loop()

        attempt = 0
        while True:
            attempt += 1
            try:
                call = loop.run_in_executor(self.executor, self._request, method, url, headers, body, timeout)
                if timeout:
                    return await asyncio.wait_for(call, timeout=timeout)
                return await call
            except TransportError as exc:
                status_code, kind, error = exc.status_code, exc.kind, exc
            except (requests.exceptions.RequestException, asyncio.TimeoutError, OSError) as exc:
                status_code, kind, error = None, classify(exc), exc
            if attempt >= max_attempts:
                raise TransportError(f"{method} {url} failed: {error}", status_code=status_code,
                                     attempts=attempt, kind=kind) from error
            delay = retry_delay(attempt)
            log.debug(f"{method} {url} attempt {attempt} failed ({kind}) - retrying in {delay:.1f}s")
            await self._sleep(delay)

    def close(self):
        self.session.close()

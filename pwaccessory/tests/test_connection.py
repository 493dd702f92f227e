"""Tests for gateway authorisation and reconnection."""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from pwaccessory.connection import ConnectionManager, next_backoff
from pwaccessory.exceptions import TransportError


async def spin(times=10):
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.fixture
def delays():
    return []


@pytest.fixture
def patient_manager(fetcher, config, delays):
    async def fake_sleep(delay):
        delays.append(delay)

    mgr = ConnectionManager(fetcher, sleep=fake_sleep)
    mgr.add_all(config.gateways)
    return mgr


def test_add_uses_default_username(manager, connection_id):
    """Test a new connection starts unauthorised with the customer username."""
    connection = manager.get(connection_id)
    assert connection.host == '10.0.1.99'
    assert connection.username == 'customer'
    assert connection.authorised is False
    assert connection.retry_allowed is True
    assert connection.backoff_ms == 15000
    assert connection.base_url == 'https://10.0.1.99'


def test_backoff_doubles_to_limit(manager, connection_id):
    """Test consecutive failures wait 15s, 30s, 60s and never more than 60s."""
    delays = [manager.record_failure(connection_id) for _ in range(5)]
    assert delays == [15000, 30000, 60000, 60000, 60000]
    assert manager.get(connection_id).backoff_ms == 60000
    assert next_backoff(45000) == 60000


@pytest.mark.asyncio
async def test_connect_success(manager, connection_id, gateway, fetcher):
    """Test a login stores the token and resets the backoff."""
    connection = manager.get(connection_id)
    connection.backoff_ms = 60000

    assert await manager.connect(connection_id) is True

    assert connection.authorised is True
    assert connection.token == 'TOKEN123'
    assert connection.backoff_ms == 15000
    assert connection_id in manager._refresh_tasks
    method, path, headers, body = gateway.calls[0]
    assert method == 'POST'
    assert path == '/api/login/Basic'
    assert headers == {'content-type': 'application/json'}
    assert json.loads(body) == {'username': 'customer', 'password': 'secret', 'email': 'test@example.com'}
    assert fetcher.fetch.call_args.kwargs['timeout'] == 5

    await manager.shutdown()
    assert connection.authorised is False
    assert connection.token is None
    assert manager._refresh_tasks == {}


@pytest.mark.asyncio
async def test_connect_unknown_connection(manager):
    """Test connecting an unknown id does nothing."""
    assert await manager.connect('nonexistent') is False


@pytest.mark.asyncio
async def test_unresolved_host_is_terminal(patient_manager, delays, gateway):
    """Test a host that cannot be found is never retried."""
    gateway.failures['/api/login/Basic'] = TransportError('no such host', kind='unresolved')
    connection_id = next(iter(patient_manager.connections))

    await asyncio.wait_for(patient_manager.maintain(connection_id), timeout=1)

    connection = patient_manager.get(connection_id)
    assert connection.authorised is False
    assert connection.retry_allowed is False
    assert delays == []
    assert len(gateway.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    TransportError('slow', kind='timeout'),
    TransportError('denied', status_code=401, kind='http'),
    TransportError('refused', kind='connection'),
])
async def test_retryable_login_failures(manager, connection_id, gateway, error):
    """Test timeouts and other failures leave the connection retryable."""
    gateway.failures['/api/login/Basic'] = error
    assert await manager.connect(connection_id) is False
    connection = manager.get(connection_id)
    assert connection.authorised is False
    assert connection.retry_allowed is True


@pytest.mark.asyncio
async def test_login_without_token_is_retryable(manager, connection_id, fetcher, make_response):
    """Test a login response without a token is treated as a failed login."""
    fetcher.fetch = AsyncMock(return_value=make_response({'message': 'bad credentials'}))
    assert await manager.connect(connection_id) is False
    connection = manager.get(connection_id)
    assert connection.authorised is False
    assert connection.retry_allowed is True
    assert manager._refresh_tasks == {}


@pytest.mark.asyncio
async def test_maintain_backs_off_until_authorised(patient_manager, delays, gateway, fetcher):
    """Test failed logins are retried after 15s, 30s then 60s and the backoff resets on success."""
    connection_id = next(iter(patient_manager.connections))
    outcomes = [
        TransportError('slow', kind='timeout'),
        TransportError('denied', status_code=401, kind='http'),
        TransportError('refused'),
    ]

    async def flaky(*args, **kwargs):
        if outcomes:
            raise outcomes.pop(0)
        return await gateway.fetch(*args, **kwargs)

    fetcher.fetch.side_effect = flaky
    task = asyncio.create_task(patient_manager.maintain(connection_id))
    await spin()

    connection = patient_manager.get(connection_id)
    assert connection.authorised is True
    assert delays == [15, 30, 60]
    assert connection.backoff_ms == 15000

    # an expired session wakes the loop, which logs in again
    gateway.token = 'TOKEN456'
    patient_manager.mark_unauthorised(connection_id)
    assert connection.authorised is False
    await spin()
    assert connection.authorised is True
    assert connection.token == 'TOKEN456'
    assert delays == [15, 30, 60]

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await patient_manager.shutdown()


@pytest.mark.asyncio
async def test_token_refresh(fetcher, config, gateway):
    """Test the token is renewed once the refresh interval elapses."""
    mgr = ConnectionManager(fetcher, token_refresh=0.01)
    connection_id = mgr.add(config.gateways[0])
    assert await mgr.connect(connection_id) is True

    gateway.token = 'REFRESHED'
    await asyncio.sleep(0.05)

    assert fetcher.fetch.call_count >= 2
    assert mgr.get(connection_id).token == 'REFRESHED'
    await mgr.shutdown()


@pytest.mark.asyncio
async def test_failed_refresh_backs_off_before_retrying(fetcher, config, gateway):
    """Test a failed token refresh waits 15s before the next login instead of retrying at once."""
    delays = []
    hold = asyncio.Event()

    async def fake_sleep(delay):
        delays.append(delay)
        await hold.wait()

    mgr = ConnectionManager(fetcher, token_refresh=0.01, sleep=fake_sleep)
    connection_id = mgr.add(config.gateways[0])
    task = asyncio.create_task(mgr.maintain(connection_id))
    await spin()
    assert mgr.is_authorised(connection_id)

    gateway.failures['/api/login/Basic'] = TransportError('refused')
    await asyncio.sleep(0.05)

    logins = [call for call in gateway.calls if call[1] == '/api/login/Basic']
    assert len(logins) == 2
    assert delays == [15]
    assert mgr.get(connection_id).authorised is False
    assert mgr.get(connection_id).retry_allowed is True

    # once the backoff elapses the next login goes ahead
    del gateway.failures['/api/login/Basic']
    hold.set()
    await spin()
    assert mgr.is_authorised(connection_id)
    assert len([call for call in gateway.calls if call[1] == '/api/login/Basic']) == 3

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await mgr.shutdown()

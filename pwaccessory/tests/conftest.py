"""Pytest configuration and fixtures."""
import copy
import json
from unittest.mock import AsyncMock, Mock

import pytest

from pwaccessory.accessories import AccessoryRegistry
from pwaccessory.config import PlatformConfig
from pwaccessory.connection import ConnectionManager
from pwaccessory.exceptions import TransportError
from pwaccessory.models import RawResourceBundle

GATEWAY_DIN = '1232100-00-E--TG1234567890AB'
GATEWAY_SERIAL = 'TG1234567890AB'
POWERWALL_SERIAL = 'TG9876543210CD'

PAYLOADS = {
    '/api/networks': [
        {'network_name': 'ethernet_tesla_internal_default', 'interface': 'EthType', 'enabled': True,
         'active': True, 'primary': True},
        {'network_name': 'gsm_tesla_internal_default', 'interface': 'GsmType', 'enabled': True,
         'active': False, 'primary': False},
    ],
    '/api/status': {
        'din': GATEWAY_DIN,
        'start_time': '2024-10-01 12:00:00 +0800',
        'up_time_seconds': '100h0m0s',
        'is_new': False,
        'version': '24.12.5 e1ba7a13',
        'git_hash': 'e1ba7a13',
        'device_type': 'teg',
    },
    '/api/powerwalls': {'enumerating': False, 'updating': False, 'powerwalls': []},
    '/api/meters/aggregates': {
        'site': {'instant_power': 100, 'instant_reactive_power': 0},
        'battery': {'instant_power': -2000, 'instant_reactive_power': 0},
        'load': {'instant_power': 3100, 'instant_reactive_power': 0},
        'solar': {'instant_power': 5000, 'instant_reactive_power': 0},
    },
    '/api/system_status': {
        'nominal_full_pack_energy': 13500,
        'nominal_energy_remaining': 6750,
        'battery_blocks': [
            {
                'Type': 'ACPW',
                'PackagePartNumber': '2012170-25-E',
                'PackageSerialNumber': 'tg9876543210cd',
                'nominal_energy_remaining': 6750,
                'nominal_full_pack_energy': 13500,
                'p_out': -2000,
                'q_out': 0,
                'v_out': 240,
                'f_out': 60.0,
                'i_out': 8.3,
                'OpSeqState': 'Active',
                'version': '24.12.5',
            }
        ],
    },
    '/api/operation': {'real_mode': 'self_consumption', 'backup_reserve_percent': 20},
    '/api/solars': [{'brand': 'Tesla', 'model': 'Solar Inverter 7.6', 'power_rating_watts': 7600}],
}


def response(payload=None, text=None, status_code=200):
    r = Mock()
    r.ok = 200 <= status_code < 300
    r.status_code = status_code
    r.text = json.dumps(payload) if text is None else text
    r.json = Mock(side_effect=lambda: json.loads(r.text))
    return r


class FakeGateway:
    """Routes fetcher calls to canned gateway payloads."""

    def __init__(self, payloads=None, token='TOKEN123'):
        self.payloads = copy.deepcopy(payloads if payloads is not None else PAYLOADS)
        self.token = token
        self.failures = {}  # path -> exception to raise
        self.calls = []

    async def fetch(self, method, url, headers=None, body=None, timeout=None, max_attempts=1):
        path = url.split('://', 1)[-1]
        path = path[path.index('/'):]
        self.calls.append((method, path, headers, body))
        if path in self.failures:
            raise self.failures[path]
        if path == '/api/login/Basic':
            return response({'email': 'test@example.com', 'firstname': 'Tesla', 'token': self.token})
        if path not in self.payloads:
            raise TransportError(f"HTTP 404 from {url}", status_code=404, kind='http')
        payload = self.payloads[path]
        return response(text=payload) if isinstance(payload, str) else response(payload)


@pytest.fixture
def payloads():
    return copy.deepcopy(PAYLOADS)


@pytest.fixture
def bundle(payloads):
    return RawResourceBundle(
        networks=payloads['/api/networks'],
        status=payloads['/api/status'],
        powerwalls=payloads['/api/powerwalls'],
        powerflow=payloads['/api/meters/aggregates'],
        system_status=payloads['/api/system_status'],
        operation=payloads['/api/operation'],
        solar=payloads['/api/solars'],
    )


@pytest.fixture
def config():
    return PlatformConfig.model_validate({
        'gateways': [{'gateway': '10.0.1.99', 'email': 'test@example.com', 'password': 'secret'}],
        'options': {'eveHistory': False},
    })


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def fetcher(gateway):
    mock = Mock()
    mock.fetch = AsyncMock(side_effect=gateway.fetch)
    return mock


@pytest.fixture
def manager(fetcher, config):
    mgr = ConnectionManager(fetcher, timeout=5)
    mgr.add_all(config.gateways)
    return mgr


@pytest.fixture
def connection_id(manager):
    return next(iter(manager.connections))


@pytest.fixture
def authorised(manager, connection_id):
    connection = manager.connections[connection_id]
    connection.authorised = True
    connection.token = 'TOKEN123'
    return connection


@pytest.fixture
def accessories():
    mock = Mock(spec=AccessoryRegistry)
    mock.is_registered.return_value = False
    return mock


@pytest.fixture
def make_response():
    return response

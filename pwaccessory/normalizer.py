import logging
from typing import Any, Dict, List, Optional

from pwaccessory.config import PlatformConfig
from pwaccessory.models import DeviceSnapshot, DeviceType, RawResourceBundle
from pwaccessory.scaler import make_display_name

log = logging.getLogger(__name__)

MANUFACTURER = 'Tesla'
DEFAULT_GATEWAY_MODEL = 'Gateway'
DEFAULT_POWERWALL_MODEL = 'Powerwall'

# First 7 characters of the gateway din
GATEWAY_MODELS = {
    '1099752': 'Non-Backup Gateway',
    '1118431': 'Backup Gateway 1',
    '1152100': 'Backup Gateway 2',
    '1232100': 'Backup Gateway 2',
    '1841000': 'Backup Gateway 3',
}

# First 7 characters of the battery block PackagePartNumber
POWERWALL_MODELS = {
    '1092170': 'Powerwall 2 AC',
    '2012170': 'Powerwall 2 AC',
    '3012170': 'Powerwall 2 AC',
    '1112170': 'Powerwall 2 DC',
    '1707000': 'Powerwall 3',
}


def serial_from_din(din: str) -> str:
    """ Serial number is the part of the din after the first '--' """
    if not din:
        return ''
    return din.split('--', 1)[-1].upper()


def gateway_model(din: str) -> str:
    return GATEWAY_MODELS.get((din or '')[:7], DEFAULT_GATEWAY_MODEL)


def powerwall_model(part_number: str) -> str:
    return POWERWALL_MODELS.get((part_number or '')[:7], DEFAULT_POWERWALL_MODEL)


def software_version(version: str) -> str:
    """ Convert a firmware string like '23.44.0 eb113390' or '1.50-1' to dotted form """
    if not version:
        return ''
    return str(version).replace('-', '.').split(' ')[0]


def is_online(networks: Any) -> bool:
    """ Online if any network interface is both enabled and active """
    if not isinstance(networks, list):
        return False
    for network in networks:
        if isinstance(network, dict) and network.get('enabled') is True and network.get('active') is True:
            return True
    return False


def _number(payload: Dict[str, Any], key: str, default: Optional[float] = 0) -> Optional[float]:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def normalize(bundle: RawResourceBundle, config: Optional[PlatformConfig] = None,
              connection_id: Optional[str] = None) -> List[DeviceSnapshot]:
    """
    Reduce one gateway bundle to device snapshots.

    Returns the gateway snapshot first followed by one snapshot per battery
    block reported in system_status.
    """
    config = config or PlatformConfig()
    gateway = bundle.status
    system_status = bundle.system_status
    reserve = _number(bundle.operation, 'backup_reserve_percent', None)

    din = str(gateway.get('din') or '')
    serial = serial_from_din(din)
    version = software_version(gateway.get('version'))
    model = gateway_model(din)
    devices = [DeviceSnapshot(
        serial_number=serial,
        device_type=DeviceType.GATEWAY,
        model=model,
        description=make_display_name(f"{MANUFACTURER} {model}"),
        manufacturer=MANUFACTURER,
        software_version=version,
        online=is_online(bundle.networks),
        excluded=config.is_excluded(serial),
        backup_reserve_percent=reserve,
        energy_remaining=_number(system_status, 'nominal_energy_remaining'),
        full_capacity=_number(system_status, 'nominal_full_pack_energy'),
        powerflow=bundle.powerflow,
        history_enabled=config.history_enabled(serial),
        connection_id=connection_id,
    )]

    blocks = system_status.get('battery_blocks') or []
    if isinstance(blocks, dict):
        blocks = list(blocks.values())
    for block in blocks:
        if not isinstance(block, dict) or not block.get('PackageSerialNumber'):
            log.debug(f"Skipping battery block without serial number on gateway {serial}")
            continue
        pw_serial = str(block['PackageSerialNumber']).upper()
        model = powerwall_model(str(block.get('PackagePartNumber') or ''))
        current = _number(block, 'i_out', None)
        devices.append(DeviceSnapshot(
            serial_number=pw_serial,
            device_type=DeviceType.POWERWALL,
            model=model,
            description=make_display_name(f"{MANUFACTURER} {model}"),
            manufacturer=MANUFACTURER,
            software_version=version,
            online=str(block.get('OpSeqState') or '').upper() == 'ACTIVE',
            # exclusion applies to the gateway record only
            excluded=False,
            backup_reserve_percent=reserve,
            energy_remaining=_number(block, 'nominal_energy_remaining'),
            full_capacity=_number(block, 'nominal_full_pack_energy'),
            power_out=_number(block, 'p_out'),
            voltage_out=_number(block, 'v_out'),
            current_out=-current if current is not None else 0,
            history_enabled=config.history_enabled(pw_serial),
            connection_id=connection_id,
        ))
    return devices

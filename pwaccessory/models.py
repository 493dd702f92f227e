"""Pydantic models shared by the connection, aggregation and device layers."""
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

INITIAL_BACKOFF_MS = 15000
MAX_BACKOFF_MS = 60000


class DeviceType(str, Enum):
    GATEWAY = 'gateway'
    POWERWALL = 'powerwall'


class ChargingState(IntEnum):
    """Battery charging states as presented to the accessory registry."""
    NOT_CHARGING = 0
    CHARGING = 1
    NOT_CHARGEABLE = 2


class Connection(BaseModel):
    """One configured gateway and its authorisation state.

    Owned and mutated by the ConnectionManager only.
    """
    id: str
    host: str
    username: str = 'customer'
    email: str
    password: str = Field(repr=False)
    token: Optional[str] = Field(default=None, repr=False)
    authorised: bool = False
    retry_allowed: bool = True
    backoff_ms: int = INITIAL_BACKOFF_MS

    @property
    def base_url(self) -> str:
        return f"https://{self.host}"


class RawResourceBundle(BaseModel):
    """Payloads from one complete data cycle of a gateway.

    Attributes:
        networks: /api/networks - network interfaces (enabled/active flags)
        status: /api/status - gateway din and firmware version
        powerwalls: /api/powerwalls
        powerflow: /api/meters/aggregates - instantaneous site/solar/battery/load power
        system_status: /api/system_status - battery blocks and pack energy
        operation: /api/operation - backup reserve percentage
        solar: /api/solars
    """
    networks: Union[List[Any], Dict[str, Any]]
    status: Dict[str, Any]
    powerwalls: Union[Dict[str, Any], List[Any]]
    powerflow: Dict[str, Any]
    system_status: Dict[str, Any]
    operation: Dict[str, Any]
    solar: Union[List[Any], Dict[str, Any]]


class DeviceSnapshot(BaseModel):
    """Canonical per-device view of one gateway cycle."""
    serial_number: str
    device_type: DeviceType
    model: str
    description: str = ''
    manufacturer: str = 'Tesla'
    software_version: str = ''
    online: bool = False
    excluded: bool = False
    backup_reserve_percent: Optional[float] = None
    energy_remaining: float = 0
    full_capacity: float = 0
    power_out: Optional[float] = None  # watts from battery, negative while charging
    voltage_out: Optional[float] = None
    current_out: Optional[float] = None  # amps, positive while discharging
    powerflow: Optional[Dict[str, Any]] = None  # gateway only
    history_enabled: bool = False
    connection_id: Optional[str] = None


class TrackedDevice(BaseModel):
    serial_number: str
    registry_id: str
    excluded: bool = False


class HistoryEntry(BaseModel):
    """Energy sample handed to the history collaborator."""
    time: int
    status: int
    volts: float
    watts: float
    amps: float


class DerivedState(BaseModel):
    """Presentation state computed from a snapshot by a device handler."""
    fault: bool = False
    power_flow: bool = False
    outlet_in_use: Optional[bool] = None
    battery_level: float = 0
    charging_state: ChargingState = ChargingState.NOT_CHARGING
    low_battery: bool = False
    light_level: Optional[float] = None  # solar generation as a lux reading, gateway only
    history: Optional[HistoryEntry] = None

"""
Device handlers

Each presented device has a handler that turns the latest DeviceSnapshot
into DerivedState and pushes it to the accessory registry.

    PowerwallDevice
        power_flow      = power_out > 100W
        charging_state  = CHARGING while power_out < 0
        battery_level   = energy_remaining scaled against full_capacity (0-100)
        low_battery     = battery_level below the backup reserve

    GatewayDevice (uses battery instant_power from /api/meters/aggregates)
        >= 100W         = not charging, power flowing
        0 < p < 100W    = not charging, no power flow
        <= 0W           = charging unless already at 100%, no power flow
        light_level     = solar instant_power, never below 0.0001
"""
import abc
import logging
import time
from typing import Callable, Dict, Optional, Type

from pwaccessory.accessories import AccessoryRegistry, CATEGORY_OUTLET
from pwaccessory.models import ChargingState, DerivedState, DeviceSnapshot, DeviceType, HistoryEntry
from pwaccessory.scaler import scale_value

log = logging.getLogger(__name__)

MINWATTS = 100
MIN_LIGHT_LEVEL = 0.0001


def battery_level(snapshot: DeviceSnapshot) -> float:
    return scale_value(snapshot.energy_remaining or 0, 0, snapshot.full_capacity or 0, 0, 100)


def is_low_battery(level: float, reserve: Optional[float]) -> bool:
    return reserve is not None and level < reserve


class AccessoryDevice(abc.ABC):
    label = 'Tesla Device'
    device_type: DeviceType

    def __init__(self, registry_id: str, accessories: AccessoryRegistry, snapshot: DeviceSnapshot,
                 clock: Callable[[], float] = time.time):
        self.registry_id = registry_id
        self.accessories = accessories
        self.snapshot = snapshot
        self.state = DerivedState()
        self.clock = clock

    @property
    def serial_number(self) -> str:
        return self.snapshot.serial_number

    def add(self):
        """ Ask the accessory registry to present this device """
        self.accessories.create_device(self.registry_id, self.label, self.device_type, CATEGORY_OUTLET,
                                       self.snapshot)

    def update(self, snapshot: DeviceSnapshot) -> DerivedState:
        self.state = self.derive(snapshot, self.state)
        self.snapshot = snapshot
        self.accessories.update_device(self.registry_id, self.state)
        return self.state

    @abc.abstractmethod
    def derive(self, snapshot: DeviceSnapshot, previous: DerivedState) -> DerivedState:
        raise NotImplementedError

    def history_readback(self, data: Optional[dict] = None) -> dict:
        return data if isinstance(data, dict) else {}


class PowerwallDevice(AccessoryDevice):
    label = 'Tesla Powerwall'
    device_type = DeviceType.POWERWALL

    def derive(self, snapshot, previous):
        power = snapshot.power_out or 0
        level = battery_level(snapshot)
        flowing = power > MINWATTS
        state = DerivedState(
            fault=snapshot.online is not True,
            power_flow=flowing,
            outlet_in_use=flowing,
            battery_level=level,
            charging_state=ChargingState.CHARGING if power < 0 else ChargingState.NOT_CHARGING,
            low_battery=is_low_battery(level, snapshot.backup_reserve_percent),
        )
        if snapshot.history_enabled:
            volts = snapshot.voltage_out or 0
            amps = snapshot.current_out or 0
            state.history = HistoryEntry(
                time=int(self.clock()),
                status=1 if flowing else 0,
                volts=volts if flowing and volts > MINWATTS else 0,
                watts=power if flowing else 0,
                amps=amps if flowing and amps > 0 else 0,
            )
        return state

    def history_readback(self, data=None):
        """ Current volts/watts/amps; volts and amps only reported while power flows """
        data = super().history_readback(data)
        power = self.snapshot.power_out or 0
        volts = self.snapshot.voltage_out or 0
        amps = self.snapshot.current_out or 0
        data['volts'] = volts if power > 0 and volts > 0 else 0
        data['watts'] = power if power > 0 else 0
        data['amps'] = amps if power > 0 and amps > 0 else 0
        return data


class GatewayDevice(AccessoryDevice):
    label = 'Tesla Gateway'
    device_type = DeviceType.GATEWAY

    def derive(self, snapshot, previous):
        powerflow = snapshot.powerflow or {}
        level = battery_level(snapshot)
        state = DerivedState(
            fault=snapshot.online is not True,
            power_flow=previous.power_flow,
            battery_level=level,
            charging_state=previous.charging_state,
            low_battery=is_low_battery(level, snapshot.backup_reserve_percent),
        )

        battery = powerflow.get('battery')
        power = battery.get('instant_power') if isinstance(battery, dict) else None
        if isinstance(power, (int, float)):
            if power >= MINWATTS:
                # Drawing from the battery; small discharges below MINWATTS are ignored
                state.charging_state = ChargingState.NOT_CHARGING
                state.power_flow = True
            elif power > 0:
                state.charging_state = ChargingState.NOT_CHARGING
                state.power_flow = False
            else:
                state.charging_state = ChargingState.CHARGING if level < 100 else ChargingState.NOT_CHARGING
                state.power_flow = False

        solar = powerflow.get('solar')
        solar_power = solar.get('instant_power') if isinstance(solar, dict) else None
        state.light_level = solar_power if isinstance(solar_power, (int, float)) and solar_power > 0 \
            else MIN_LIGHT_LEVEL
        return state


DEVICE_CLASSES: Dict[DeviceType, Type[AccessoryDevice]] = {
    DeviceType.POWERWALL: PowerwallDevice,
    DeviceType.GATEWAY: GatewayDevice,
}

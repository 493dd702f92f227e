import logging
import uuid
from typing import Dict, Iterable, Optional

from pwaccessory.accessories import AccessoryRegistry
from pwaccessory.devices import AccessoryDevice, DEVICE_CLASSES
from pwaccessory.models import DeviceSnapshot, TrackedDevice

log = logging.getLogger(__name__)

# Namespace for registry ids derived from serial numbers
REGISTRY_NAMESPACE = uuid.UUID('6f1c0e52-58c4-4c0b-9a53-2b7bd0d1e4a7')


def registry_id_for(serial_number: str) -> str:
    """ Stable presentation id for a serial number """
    return str(uuid.uuid5(REGISTRY_NAMESPACE, serial_number.upper()))


class DeviceRegistry:
    """
    Tracks which serial numbers have been materialised as presented devices.

    A serial is tracked the first time it is seen. Excluded serials are
    tracked too, so the exclusion is only reported once. Snapshots reach a
    device handler only after it was created and while it is not excluded.
    Serials are shared across gateways; a serial reported by two gateways
    is updated by whichever cycle ran last.
    """

    def __init__(self, accessories: AccessoryRegistry):
        self.accessories = accessories
        self.tracked: Dict[str, TrackedDevice] = {}
        self.handlers: Dict[str, AccessoryDevice] = {}

    def process(self, snapshots: Iterable[DeviceSnapshot]) -> None:
        for snapshot in snapshots:
            serial = snapshot.serial_number
            if not serial:
                continue
            tracked = self.tracked.get(serial)
            if tracked is None:
                if snapshot.excluded:
                    self._exclude_new(snapshot)
                else:
                    self._create(snapshot)
            elif snapshot.excluded and not tracked.excluded:
                self._exclude_existing(tracked, snapshot)
            elif not snapshot.excluded and tracked.excluded:
                log.info(f"Device '{snapshot.description}' ({serial}) is no longer excluded")
                self._create(snapshot)

            tracked = self.tracked.get(serial)
            if not snapshot.excluded and tracked is not None and not tracked.excluded:
                handler = self.handlers.get(serial)
                if handler is not None:
                    handler.update(snapshot)

    def _create(self, snapshot: DeviceSnapshot):
        device_class = DEVICE_CLASSES.get(snapshot.device_type)
        if device_class is None:
            log.debug(f"No handler for device type {snapshot.device_type} ({snapshot.serial_number})")
            return
        registry_id = registry_id_for(snapshot.serial_number)
        device = device_class(registry_id, self.accessories, snapshot)
        device.add()
        self.handlers[snapshot.serial_number] = device
        tracked = self.tracked.get(snapshot.serial_number)
        if tracked is None:
            self.tracked[snapshot.serial_number] = TrackedDevice(serial_number=snapshot.serial_number,
                                                                 registry_id=registry_id)
        else:
            tracked.excluded = False
        log.info(f"Added {device.label} '{snapshot.description}' serial {snapshot.serial_number}")

    def _exclude_new(self, snapshot: DeviceSnapshot):
        log.warning(f"Device '{snapshot.description}' ({snapshot.serial_number}) is ignored due to it being "
                    f"marked as excluded")
        registry_id = registry_id_for(snapshot.serial_number)
        self.tracked[snapshot.serial_number] = TrackedDevice(serial_number=snapshot.serial_number,
                                                             registry_id=registry_id, excluded=True)
        if self.accessories.is_registered(registry_id):
            # Left over from a run where the device was not excluded
            self.accessories.remove_device(registry_id)

    def _exclude_existing(self, tracked: TrackedDevice, snapshot: DeviceSnapshot):
        log.warning(f"Device '{snapshot.description}' ({snapshot.serial_number}) is now marked as excluded - "
                    f"removing")
        tracked.excluded = True
        self.handlers.pop(snapshot.serial_number, None)
        self.accessories.remove_device(tracked.registry_id)

    def get(self, serial_number: str) -> Optional[AccessoryDevice]:
        return self.handlers.get(serial_number.upper())

    def history_readback(self, serial_number: str, data: Optional[dict] = None) -> Optional[dict]:
        """ Current volts/watts/amps of a presented device for history linking """
        handler = self.get(serial_number)
        if handler is None:
            return None
        return handler.history_readback(data)

    def clear(self):
        self.handlers.clear()
        self.tracked.clear()

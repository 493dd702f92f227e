import abc
import logging
from typing import Dict

from pwaccessory.models import DerivedState, DeviceSnapshot, DeviceType

log = logging.getLogger(__name__)

# Display category for an outlet accessory
CATEGORY_OUTLET = 7


class AccessoryRegistry(abc.ABC):
    """
    Presentation collaborator receiving device lifecycle and state updates.

    Implementations own the presented accessories and their persistence.
    Every call is keyed by the stable registry id of a device.
    """

    @abc.abstractmethod
    def create_device(self, registry_id: str, label: str, device_type: DeviceType, category: int,
                      snapshot: DeviceSnapshot) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def remove_device(self, registry_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def update_device(self, registry_id: str, state: DerivedState) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def is_registered(self, registry_id: str) -> bool:
        raise NotImplementedError


class LoggingAccessoryRegistry(AccessoryRegistry):
    """Keeps the latest state in memory and logs every change."""

    def __init__(self):
        self.devices: Dict[str, DeviceSnapshot] = {}
        self.states: Dict[str, DerivedState] = {}

    def create_device(self, registry_id, label, device_type, category, snapshot):
        log.info(f"Created {label} '{snapshot.description}' serial {snapshot.serial_number} ({registry_id})")
        self.devices[registry_id] = snapshot

    def remove_device(self, registry_id):
        snapshot = self.devices.pop(registry_id, None)
        self.states.pop(registry_id, None)
        log.info(f"Removed device {snapshot.serial_number if snapshot else registry_id}")

    def update_device(self, registry_id, state):
        if self.states.get(registry_id) != state:
            log.info(f"{registry_id}: {state.model_dump(exclude_none=True, exclude={'history'})}")
        self.states[registry_id] = state

    def is_registered(self, registry_id):
        return registry_id in self.devices

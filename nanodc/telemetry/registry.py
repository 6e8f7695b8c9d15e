"""
Facility configuration registry.

Holds one slot layout per facility and a pointer to the facility this
device currently shows. Layouts are immutable; every update builds a new
mapping and swaps it in by reference, so a resolution pass that already
took a layout keeps seeing it unchanged.
"""

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .config import DEFAULT_FACILITY_ID
from .slots import (
    BC01_ORDER,
    BC02_ORDER,
    DEFAULT_ORDER,
    FacilityConfiguration,
    SlotDescriptor,
    SlotType,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIGURATION_ID = "DEFAULT"

# Facility short name -> nanodc_id used by the data API
FACILITY_SERVICE_IDS = {
    "BC01": "dcf1bb07-f621-4b4d-9d61-45fc3cf5ac20",
    "BC02": "5e807a27-7c3a-4a22-8df2-20c392186ed3",
    "GY01": "c236ea9c-3d7e-430b-98b8-1e22d0d6cf01",
}


def facility_service_id(facility_id: str) -> str:
    """Service-side ``nanodc_id`` of a facility; unknown ids pass through."""
    return FACILITY_SERVICE_IDS.get(facility_id.upper(), facility_id)


def facility_for_service_id(nanodc_id: str) -> Optional[str]:
    for facility_id, service_id in FACILITY_SERVICE_IDS.items():
        if service_id.lower() == nanodc_id.lower():
            return facility_id
    return None


def default_configurations() -> Dict[str, FacilityConfiguration]:
    return {
        DEFAULT_CONFIGURATION_ID: FacilityConfiguration.from_types(DEFAULT_CONFIGURATION_ID, DEFAULT_ORDER),
        "GY01": FacilityConfiguration.from_types("GY01", DEFAULT_ORDER),
        "BC01": FacilityConfiguration.from_types("BC01", BC01_ORDER),
        "BC02": FacilityConfiguration.from_types("BC02", BC02_ORDER),
    }


class FacilityRegistry:
    """
    Slot layouts per facility plus the active facility pointer.

    Readers never lock; writers serialize on a lock and publish a new
    dictionary, so a reader holds either the old or the new mapping.
    """

    def __init__(
        self,
        configurations: Optional[Dict[str, FacilityConfiguration]] = None,
        active_facility_id: str = DEFAULT_FACILITY_ID,
    ):
        self._configurations: Dict[str, FacilityConfiguration] = dict(
            configurations if configurations is not None else default_configurations()
        )
        self._active_facility_id = active_facility_id.upper()
        self._write_lock = threading.Lock()

    @staticmethod
    def _key(facility_id: str) -> str:
        return facility_id.upper()

    @property
    def active_facility_id(self) -> str:
        return self._active_facility_id

    def switch_facility(self, facility_id: str) -> None:
        """Make another facility the active one; takes effect on the next cycle."""
        self._active_facility_id = self._key(facility_id)
        logger.info(f"Active facility switched to {self._active_facility_id}")

    def get_configuration(self, facility_id: str) -> FacilityConfiguration:
        """Layout of a facility, or the default layout if none is registered."""
        configurations = self._configurations
        configuration = configurations.get(self._key(facility_id))
        if configuration is None:
            logger.debug(f"No layout registered for {facility_id}, using default order")
            configuration = configurations.get(DEFAULT_CONFIGURATION_ID) or FacilityConfiguration.from_types(
                DEFAULT_CONFIGURATION_ID, DEFAULT_ORDER
            )
        return configuration

    def get_slot_order(self, facility_id: str) -> Tuple[SlotDescriptor, ...]:
        return self.get_configuration(facility_id).slots

    def active_configuration(self) -> FacilityConfiguration:
        return self.get_configuration(self._active_facility_id)

    def set_slot_order(
        self, facility_id: str, order: Sequence[Union[SlotType, SlotDescriptor]]
    ) -> FacilityConfiguration:
        """
        Replace the slot order of a facility.

        Existing slots keep their ordinals; newly inserted slot kinds get
        fresh ones. An unknown facility starts from an empty layout.
        """
        key = self._key(facility_id)
        with self._write_lock:
            current = self._configurations.get(key) or FacilityConfiguration(key, ())
            updated = current.with_order(order)
            configurations = dict(self._configurations)
            configurations[key] = updated
            self._configurations = configurations
        logger.info(f"Slot order for {key} updated: {len(updated.slots)} slots")
        return updated

    def add_configuration(self, configuration: FacilityConfiguration) -> None:
        key = self._key(configuration.facility_id)
        with self._write_lock:
            configurations = dict(self._configurations)
            configurations[key] = configuration
            self._configurations = configurations
        logger.info(f"Layout registered for {key}")

    def reset_to_default(self) -> None:
        """Restore the built-in layouts and the default facility (testing or reset)."""
        with self._write_lock:
            self._configurations = default_configurations()
            self._active_facility_id = DEFAULT_FACILITY_ID
        logger.info("Facility layouts reset to defaults")

    def supported_facilities(self) -> List[str]:
        return list(self._configurations.keys())

    def slot_at(self, position: int, facility_id: Optional[str] = None) -> Optional[SlotDescriptor]:
        return self.get_configuration(facility_id or self._active_facility_id).slot_at(position)

    def index_of(self, slot_type: SlotType, facility_id: Optional[str] = None) -> int:
        return self.get_configuration(facility_id or self._active_facility_id).index_of(slot_type)

    def total_slots(self, facility_id: Optional[str] = None) -> int:
        return len(self.get_slot_order(facility_id or self._active_facility_id))

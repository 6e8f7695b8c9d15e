"""
Display slots and facility layouts.

A facility layout is an ordered tuple of slot descriptors. The position of
a slot in the tuple is where rendering draws it; its ``ordinal`` is a
stable identity that override tables and other consumers key on. Ordinals
are handed out once and never renumbered when the order changes.
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Iterable, Optional, Sequence, Tuple, Union


class SlotType(Enum):
    """Kinds of display slot, with the node-name keyword the generic rule matches."""

    NDP_INFO = ("NDP Information", None)
    NODE_INFO = ("Node Information", None)
    NODE_INFO_AETHIR = ("Node Info Aethir", None)
    SWITCH_100G = ("100G Switch", None)
    NODE_MINER = ("Node Miner", "Filecoin")
    POSTWORKER = ("Post Worker", "PostWorker")
    LONOVO_POST = ("Lonovo Post Worker", "Post")
    SUPRA = ("Supra", "Supra")
    SUPRA_NONE_1 = ("Supra Inactive 1", None)
    SUPRA_NONE_2 = ("Supra Inactive 2", None)
    SUPRA_NONE_3 = ("Supra Inactive 3", None)
    SYSTEMTOAI = ("SystemToAI", None)
    SYSTEMTOAI_NONE = ("SystemToAI Inactive", None)
    AETHIR = ("Aethir", "Aethir")
    AETHIR_NONE = ("Aethir Inactive", None)
    FILECOIN = ("Filecoin", "Filecoin")
    FILECOIN_NONE_1 = ("Filecoin Inactive 1", None)
    FILECOIN_NONE_2 = ("Filecoin Inactive 2", None)
    NOT_STORAGE = ("Storage", "Filecoin")
    STORAGE_1 = ("Storage 1", "Filecoin")
    STORAGE_2 = ("Storage 2", "Filecoin")
    STORAGE_3 = ("Storage 3", "Filecoin")
    STORAGE_4 = ("Storage 4", "Filecoin")
    STORAGE_5 = ("Storage 5", "Filecoin")
    STORAGE_6 = ("Storage 6", "Filecoin")
    STORAGE2_NONE = ("Storage 2 None", None)
    UPS_CONTROLLER = ("UPS Controller", None)
    LOGO_ZETACUBE = ("ZetaCube Logo", None)

    def __init__(self, description: str, keyword: Optional[str]):
        self.description = description
        self.keyword = keyword

    @classmethod
    def from_name(cls, name: str) -> "SlotType":
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Unknown slot type: {name}") from None


@dataclass(frozen=True)
class SlotDescriptor:
    """One display slot of a facility layout."""

    slot_type: SlotType
    ordinal: int
    keyword: Optional[str] = None

    @classmethod
    def of(cls, slot_type: SlotType, ordinal: int) -> "SlotDescriptor":
        return cls(slot_type=slot_type, ordinal=ordinal, keyword=slot_type.keyword)

    @property
    def label(self) -> str:
        return self.slot_type.description

    @property
    def binds_node(self) -> bool:
        return self.keyword is not None


@dataclass(frozen=True)
class FacilityConfiguration:
    """
    Ordered slot layout of one facility.

    ``next_ordinal`` is the ordinal the next newly inserted slot receives;
    it only ever grows, so a removed slot's ordinal is never reused.
    """

    facility_id: str
    slots: Tuple[SlotDescriptor, ...]
    next_ordinal: int = field(default=-1)

    def __post_init__(self):
        if self.next_ordinal < 0:
            highest = max((slot.ordinal for slot in self.slots), default=-1)
            object.__setattr__(self, "next_ordinal", highest + 1)

    @classmethod
    def from_types(cls, facility_id: str, slot_types: Iterable[SlotType]) -> "FacilityConfiguration":
        """Build a fresh layout whose ordinals equal the initial positions."""
        slots = tuple(SlotDescriptor.of(slot_type, i) for i, slot_type in enumerate(slot_types))
        return cls(facility_id=facility_id, slots=slots)

    @property
    def slot_types(self) -> Tuple[SlotType, ...]:
        return tuple(slot.slot_type for slot in self.slots)

    def slot_at(self, position: int) -> Optional[SlotDescriptor]:
        if 0 <= position < len(self.slots):
            return self.slots[position]
        return None

    def slot_by_ordinal(self, ordinal: int) -> Optional[SlotDescriptor]:
        return next((slot for slot in self.slots if slot.ordinal == ordinal), None)

    def index_of(self, slot_type: SlotType) -> int:
        """Position of the first slot of a kind, or -1."""
        for position, slot in enumerate(self.slots):
            if slot.slot_type is slot_type:
                return position
        return -1

    def with_order(self, order: Sequence[Union[SlotType, SlotDescriptor]]) -> "FacilityConfiguration":
        """
        Return a copy laid out in ``order``.

        Slot kinds already present keep their descriptors (and ordinals),
        matched by kind and by occurrence: the second STORAGE_1 in the new
        order reuses the second STORAGE_1 of this layout. Kinds beyond what
        this layout holds get fresh ordinals starting at ``next_ordinal``.
        Explicit descriptors are taken as given.
        """
        available: Dict[SlotType, Deque[SlotDescriptor]] = defaultdict(deque)
        for slot in self.slots:
            available[slot.slot_type].append(slot)

        next_ordinal = self.next_ordinal
        slots = []
        for item in order:
            if isinstance(item, SlotDescriptor):
                slots.append(item)
                next_ordinal = max(next_ordinal, item.ordinal + 1)
            elif available[item]:
                slots.append(available[item].popleft())
            else:
                slots.append(SlotDescriptor.of(item, next_ordinal))
                next_ordinal += 1

        ordinals = [slot.ordinal for slot in slots]
        if len(ordinals) != len(set(ordinals)):
            raise ValueError(f"Duplicate slot ordinals in layout for {self.facility_id}")
        return FacilityConfiguration(self.facility_id, tuple(slots), next_ordinal)


DEFAULT_ORDER = (
    SlotType.NDP_INFO,
    SlotType.NODE_INFO,
    SlotType.NODE_INFO_AETHIR,
    SlotType.SWITCH_100G,
    SlotType.NODE_MINER,
    SlotType.POSTWORKER,
    SlotType.SUPRA,
    SlotType.SUPRA_NONE_1,
    SlotType.SUPRA_NONE_2,
    SlotType.SUPRA_NONE_3,
    SlotType.SYSTEMTOAI,
    SlotType.SYSTEMTOAI_NONE,
    SlotType.AETHIR,
    SlotType.AETHIR_NONE,
    SlotType.FILECOIN,
    SlotType.FILECOIN_NONE_1,
    SlotType.FILECOIN_NONE_2,
    SlotType.NOT_STORAGE,
    SlotType.UPS_CONTROLLER,
    SlotType.LOGO_ZETACUBE,
)

BC01_ORDER = (
    SlotType.NDP_INFO,
    SlotType.NODE_INFO,
    SlotType.NODE_INFO_AETHIR,
    SlotType.SWITCH_100G,
    SlotType.SYSTEMTOAI,
    SlotType.AETHIR,
    SlotType.FILECOIN,
    SlotType.STORAGE_1,
    SlotType.STORAGE_2,
    SlotType.NODE_MINER,
    SlotType.STORAGE_3,
    SlotType.STORAGE_4,
    SlotType.STORAGE_5,
    SlotType.STORAGE_6,
    SlotType.UPS_CONTROLLER,
    SlotType.LOGO_ZETACUBE,
)

# Three Lenovo post servers at 4-6, five NAS shelves at 9-13
BC02_ORDER = (
    SlotType.NDP_INFO,
    SlotType.NODE_INFO,
    SlotType.NODE_INFO_AETHIR,
    SlotType.SWITCH_100G,
    SlotType.LONOVO_POST,
    SlotType.LONOVO_POST,
    SlotType.LONOVO_POST,
    SlotType.SUPRA_NONE_1,
    SlotType.FILECOIN_NONE_1,
    SlotType.STORAGE_1,
    SlotType.STORAGE_1,
    SlotType.STORAGE_1,
    SlotType.STORAGE_1,
    SlotType.STORAGE_1,
    SlotType.UPS_CONTROLLER,
    SlotType.LOGO_ZETACUBE,
)

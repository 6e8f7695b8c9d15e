"""
Facility-specific slot override tables.

Some facilities are wired so that the generic "slot keyword in node name"
rule picks the wrong node. For those, a table keyed by (facility, slot
ordinal) says which keywords the node name must carry. Tables are plain
data and can be loaded from JSON, so a new facility quirk is a new entry
rather than new code.

JSON layout::

    {
        "BC02": {
            "4": {"all_of": ["Filecoin", "Miner"], "display_name": "BC02 Filecoin Miner",
                  "category": "node_miner"}
        }
    }
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class NodeCategory(str, Enum):
    """Role of a node inside a facility with special wiring."""

    POST_WORKER = "post_worker"
    NODE_MINER = "node_miner"
    NAS = "nas"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class KeywordRule:
    """
    Case-insensitive keyword test on a node name.

    Every ``all_of`` keyword must occur, and when ``any_of`` is given at
    least one of those must occur too.
    """

    all_of: Tuple[str, ...] = ()
    any_of: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.all_of and not self.any_of:
            raise ValueError("A keyword rule needs at least one keyword")

    def matches(self, node_name: str) -> bool:
        name = node_name.lower()
        if not all(keyword.lower() in name for keyword in self.all_of):
            return False
        return not self.any_of or any(keyword.lower() in name for keyword in self.any_of)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KeywordRule":
        return cls(all_of=tuple(data.get("all_of", ())), any_of=tuple(data.get("any_of", ())))


@dataclass(frozen=True)
class SlotOverride:
    """Replacement matching rule for one slot of one facility."""

    rule: KeywordRule
    display_name: Optional[str] = None
    category: NodeCategory = NodeCategory.UNKNOWN


class OverrideTable:
    """Slot overrides keyed by (facility id, slot ordinal)."""

    def __init__(self, entries: Optional[Dict[Tuple[str, int], SlotOverride]] = None):
        self._entries: Dict[Tuple[str, int], SlotOverride] = {
            (facility_id.upper(), ordinal): override
            for (facility_id, ordinal), override in (entries or {}).items()
        }

    def get(self, facility_id: str, ordinal: int) -> Optional[SlotOverride]:
        return self._entries.get((facility_id.upper(), ordinal))

    def register(self, facility_id: str, ordinal: int, override: SlotOverride) -> None:
        self._entries[(facility_id.upper(), ordinal)] = override

    def has_facility(self, facility_id: str) -> bool:
        key = facility_id.upper()
        return any(facility == key for facility, _ in self._entries)

    def merged(self, other: "OverrideTable") -> "OverrideTable":
        """New table with ``other``'s entries layered over this one."""
        entries = dict(self._entries)
        entries.update(other._entries)
        return OverrideTable(entries)

    def __iter__(self) -> Iterator[Tuple[Tuple[str, int], SlotOverride]]:
        return iter(sorted(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> "OverrideTable":
        entries = {}
        for facility_id, slots in data.items():
            for ordinal, spec in slots.items():
                entries[(facility_id, int(ordinal))] = SlotOverride(
                    rule=KeywordRule.from_dict(spec),
                    display_name=spec.get("display_name"),
                    category=NodeCategory(spec.get("category", NodeCategory.UNKNOWN.value)),
                )
        return cls(entries)


def load_override_table(path: Union[str, Path]) -> OverrideTable:
    """
    Load an override table from a JSON file.

    Raises:
        ValueError: If the file content does not describe a valid table
    """
    with open(path, encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as e:
            raise ValueError(f"Override file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Override file {path} must contain an object keyed by facility")
    table = OverrideTable.from_mapping(data)
    logger.info(f"Loaded {len(table)} slot overrides from {path}")
    return table


BC02_OVERRIDES = {
    "BC02": {
        "4": {"all_of": ["Filecoin", "Miner"], "display_name": "BC02 Filecoin Miner", "category": "node_miner"},
        "5": {"any_of": ["3080Ti", "GPU Worker"], "display_name": "BC02 3080Ti GPU Worker", "category": "node_miner"},
        "6": {"all_of": ["Post Worker"], "display_name": "BC02 Post Worker", "category": "post_worker"},
        "9": {"all_of": ["NAS1"], "display_name": "BC02 NAS1", "category": "nas"},
        "10": {"all_of": ["NAS2"], "display_name": "BC02 NAS2", "category": "nas"},
        "11": {"all_of": ["NAS3"], "display_name": "BC02 NAS3", "category": "nas"},
        "12": {"all_of": ["NAS4"], "display_name": "BC02 NAS4", "category": "nas"},
        "13": {"all_of": ["NAS5"], "display_name": "BC02 NAS5", "category": "nas"},
    }
}

# BC01 shelves are cabled out of order relative to their slot labels
BC01_OVERRIDES = {
    "BC01": {
        "7": {"all_of": ["NAS5"], "category": "nas"},
        "8": {"any_of": ["NAS3", "NAS4"], "category": "nas"},
        "9": {"all_of": ["Filecoin-Miner"], "category": "node_miner"},
        "10": {"all_of": ["NAS2"], "category": "nas"},
        "11": {"all_of": ["NAS1"], "category": "nas"},
        "12": {"all_of": ["SAI Server"]},
    }
}


def builtin_override_table() -> OverrideTable:
    return OverrideTable.from_mapping({**BC01_OVERRIDES, **BC02_OVERRIDES})

"""
Presentation classifier.

Picks the layout category a renderer uses for a node. Facilities with
keyword groups classify by node name; everything else rotates through the
general layouts by a stable per-node index, so the same node always gets
the same layout.
"""

import logging
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .overrides import KeywordRule

logger = logging.getLogger(__name__)


class LayoutCategory(str, Enum):
    GRID_BALANCED = "grid_balanced"
    VERTICAL_EMPHASIS = "vertical_emphasis"
    HORIZONTAL_EMPHASIS = "horizontal_emphasis"
    MIXED = "mixed"
    DASHBOARD = "dashboard"
    STORAGE_FOCUS = "storage_focus"
    PROCESSING_FOCUS = "processing_focus"
    NETWORK_STORAGE_FOCUS = "network_storage_focus"


ROTATION: Tuple[LayoutCategory, ...] = (
    LayoutCategory.GRID_BALANCED,
    LayoutCategory.VERTICAL_EMPHASIS,
    LayoutCategory.HORIZONTAL_EMPHASIS,
    LayoutCategory.MIXED,
    LayoutCategory.DASHBOARD,
    LayoutCategory.STORAGE_FOCUS,
)


@dataclass(frozen=True)
class KeywordGroup:
    rule: KeywordRule
    category: LayoutCategory


# Checked top to bottom; "Post Worker" has to win over the miner groups
BC02_KEYWORD_GROUPS = (
    KeywordGroup(KeywordRule(all_of=("Post Worker",)), LayoutCategory.PROCESSING_FOCUS),
    KeywordGroup(KeywordRule(all_of=("Filecoin", "Miner")), LayoutCategory.MIXED),
    KeywordGroup(KeywordRule(any_of=("3080Ti", "GPU Worker")), LayoutCategory.MIXED),
    KeywordGroup(KeywordRule(all_of=("NAS",)), LayoutCategory.NETWORK_STORAGE_FOCUS),
)


def stable_index(node_name: str) -> int:
    """Index derived from the node name that survives restarts."""
    return zlib.crc32(node_name.lower().encode("utf-8"))


class PresentationClassifier:
    """
    Maps (facility, node name) to a layout category.

    Attributes:
        keyword_groups: Ordered keyword groups per facility id
    """

    def __init__(self, keyword_groups: Optional[Dict[str, Tuple[KeywordGroup, ...]]] = None):
        groups = keyword_groups if keyword_groups is not None else {"BC02": BC02_KEYWORD_GROUPS}
        self.keyword_groups: Dict[str, List[KeywordGroup]] = {
            facility_id.upper(): list(entries) for facility_id, entries in groups.items()
        }

    def register_keyword_group(
        self,
        facility_id: str,
        rule: KeywordRule,
        category: LayoutCategory,
        position: Optional[int] = None,
    ) -> None:
        """Add a keyword group; appended unless a position is given."""
        groups = list(self.keyword_groups.get(facility_id.upper(), []))
        group = KeywordGroup(rule, category)
        if position is None:
            groups.append(group)
        else:
            groups.insert(position, group)
        self.keyword_groups[facility_id.upper()] = groups
        logger.info(f"Keyword group {rule} -> {category.value} registered for {facility_id.upper()}")

    @staticmethod
    def rotation_category(index: int) -> LayoutCategory:
        return ROTATION[index % len(ROTATION)]

    def classify(self, facility_id: str, node_name: str, index: Optional[int] = None) -> LayoutCategory:
        """
        Classify one node.

        Args:
            facility_id: Facility the node is shown for
            node_name: Name of the node
            index: Stable per-node index; defaults to a checksum of the name

        Returns:
            LayoutCategory: The keyword group's category, or the rotation's
        """
        for group in self.keyword_groups.get(facility_id.upper(), ()):
            if group.rule.matches(node_name):
                return group.category

        return self.rotation_category(stable_index(node_name) if index is None else index)

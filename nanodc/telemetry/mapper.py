"""
Node-to-slot mapper.

Decides which node of a snapshot fills which display slot. A slot is
matched either through a facility override (see ``overrides``) or, when
the facility has none for that slot, through the slot's own keyword. The
mapper never mutates its inputs and returns the same answer for the same
(facility, slot, snapshot).
"""

import logging
from dataclasses import dataclass
from typing import AbstractSet, Dict, List, Optional, Tuple

from .errors import MappingAmbiguity
from .overrides import NodeCategory, OverrideTable, SlotOverride, builtin_override_table
from .schemas import HardwareSpec, NodeRecord, ScoreRecord, Snapshot, UsageSample
from .slots import FacilityConfiguration, SlotDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSlot:
    """A slot together with the node bound to it, if any."""

    facility_id: str
    position: int
    slot: SlotDescriptor
    node: Optional[NodeRecord] = None
    hardware_spec: Optional[HardwareSpec] = None
    usage: Optional[UsageSample] = None
    score: Optional[ScoreRecord] = None
    display_name: Optional[str] = None
    node_category: NodeCategory = NodeCategory.UNKNOWN
    candidate_count: int = 0
    via_override: bool = False

    @property
    def is_empty(self) -> bool:
        return self.node is None

    @property
    def ambiguous(self) -> bool:
        return self.candidate_count > 1

    @property
    def title(self) -> str:
        if self.display_name:
            return self.display_name
        if self.node is not None:
            return self.node.node_name
        return self.slot.label


@dataclass(frozen=True)
class Resolution:
    """Result of resolving every slot of a layout against one snapshot."""

    facility_id: str
    slots: Tuple[ResolvedSlot, ...]
    ambiguities: Tuple[MappingAmbiguity, ...] = ()

    def bound_node_ids(self) -> List[str]:
        return [s.node.node_id for s in self.slots if s.node is not None]

    def state_counts(self) -> Dict[str, int]:
        bound = sum(1 for s in self.slots if s.node is not None)
        return {"bound": bound, "empty": len(self.slots) - bound}


class NodeSlotMapper:
    """
    Resolves display slots to nodes.

    Attributes:
        overrides: Facility-specific slot rules consulted before the generic rule
    """

    def __init__(self, overrides: Optional[OverrideTable] = None):
        self.overrides = overrides if overrides is not None else builtin_override_table()

    def _override_for(self, facility_id: str, slot: SlotDescriptor) -> Optional[SlotOverride]:
        return self.overrides.get(facility_id, slot.ordinal)

    def candidates(
        self,
        facility_id: str,
        slot: SlotDescriptor,
        snapshot: Snapshot,
        exclude: AbstractSet[str] = frozenset(),
    ) -> List[NodeRecord]:
        """All nodes matching a slot, in snapshot order, minus excluded node ids."""
        override = self._override_for(facility_id, slot)
        if override is not None:
            matches = override.rule.matches
        elif slot.keyword is not None:
            keyword = slot.keyword.lower()

            def matches(node_name: str) -> bool:
                return keyword in node_name.lower()
        else:
            return []

        return [
            node for node in snapshot.nodes
            if node.node_id not in exclude and matches(node.node_name)
        ]

    def resolve(
        self,
        facility_id: str,
        slot: SlotDescriptor,
        snapshot: Snapshot,
        exclude: AbstractSet[str] = frozenset(),
        position: Optional[int] = None,
    ) -> ResolvedSlot:
        """
        Bind one slot to at most one node.

        Args:
            facility_id: Facility whose rules apply
            slot: The slot to fill
            snapshot: Records of the current cycle
            exclude: Node ids already bound elsewhere in the same pass
            position: Display position to report; defaults to the ordinal

        Returns:
            ResolvedSlot: Empty when no node matches
        """
        resolved, _ = self._resolve(facility_id, slot, snapshot, exclude, position)
        return resolved

    def _resolve(
        self,
        facility_id: str,
        slot: SlotDescriptor,
        snapshot: Snapshot,
        exclude: AbstractSet[str],
        position: Optional[int],
    ) -> Tuple[ResolvedSlot, Optional[MappingAmbiguity]]:
        facility_id = facility_id.upper()
        position = slot.ordinal if position is None else position
        override = self._override_for(facility_id, slot)
        display_name = override.display_name if override else None
        category = override.category if override else NodeCategory.UNKNOWN

        found = self.candidates(facility_id, slot, snapshot, exclude)
        if not found:
            if slot.binds_node or override is not None:
                logger.debug(f"{facility_id} slot {slot.ordinal} ({slot.label}) has no matching node")
            return ResolvedSlot(
                facility_id=facility_id,
                position=position,
                slot=slot,
                display_name=display_name,
                node_category=category,
                via_override=override is not None,
            ), None

        node = found[0]
        ambiguity = None
        if len(found) > 1:
            ambiguity = MappingAmbiguity(
                facility_id=facility_id,
                ordinal=slot.ordinal,
                chosen_node_id=node.node_id,
                candidate_node_ids=tuple(n.node_id for n in found),
            )
            logger.warning(
                f"{facility_id} slot {slot.ordinal} ({slot.label}) matches {len(found)} nodes "
                f"{[n.node_name for n in found]}; using {node.node_name}"
            )

        return ResolvedSlot(
            facility_id=facility_id,
            position=position,
            slot=slot,
            node=node,
            hardware_spec=snapshot.spec_for(node.node_id),
            usage=snapshot.usage_for(node.node_id),
            score=snapshot.score_for(node.node_id),
            display_name=display_name,
            node_category=category,
            candidate_count=len(found),
            via_override=override is not None,
        ), ambiguity

    def resolve_all(
        self,
        configuration: FacilityConfiguration,
        snapshot: Snapshot,
        facility_id: Optional[str] = None,
    ) -> Resolution:
        """
        Resolve every slot of a layout, binding each node at most once.

        Override slots are resolved before generic ones, each group in
        ordinal order, so a specific rule is never starved by a broad
        keyword. The result lists slots in display order.
        """
        facility_id = (facility_id or configuration.facility_id).upper()
        positions = {slot.ordinal: i for i, slot in enumerate(configuration.slots)}
        ordered = sorted(
            configuration.slots,
            key=lambda s: (self._override_for(facility_id, s) is None, s.ordinal),
        )

        bound: set = set()
        by_ordinal: Dict[int, ResolvedSlot] = {}
        ambiguities = []
        for slot in ordered:
            resolved, ambiguity = self._resolve(
                facility_id, slot, snapshot, frozenset(bound), positions[slot.ordinal]
            )
            if resolved.node is not None:
                bound.add(resolved.node.node_id)
            if ambiguity is not None:
                ambiguities.append(ambiguity)
            by_ordinal[slot.ordinal] = resolved

        slots = tuple(by_ordinal[slot.ordinal] for slot in configuration.slots)
        return Resolution(facility_id=facility_id, slots=slots, ambiguities=tuple(ambiguities))

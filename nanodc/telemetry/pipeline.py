"""
Monitor pipeline.

One cycle fetches a snapshot for the facility that is active when the
cycle starts and resolves the layout taken at that moment against it.
Every bound node is then normalized and classified, and the result is
published. Publishing is a single reference assignment of an immutable
``PublishedState``; a failed cycle publishes nothing, so readers keep the
last good state.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .classifier import LayoutCategory, PresentationClassifier
from .client import TelemetryClient
from .errors import AuthError, AuthErrorKind, FetchError, FetchErrorKind, MappingAmbiguity, TelemetryError
from .mapper import NodeSlotMapper, ResolvedSlot
from .metrics import record_ambiguity, record_cycle, update_slot_counts
from .normalizer import ExtendedMetrics, normalize
from .registry import FacilityRegistry
from .schemas import Snapshot, Token
from .slots import FacilityConfiguration
from .settings_store import DeviceSettingsStore

logger = logging.getLogger(__name__)


class CycleOutcome(str, Enum):
    PUBLISHED = "published"
    FAILED = "failed"
    CREDENTIALS_REJECTED = "credentials_rejected"


@dataclass(frozen=True)
class SlotView:
    """What a renderer needs to draw one slot."""

    resolved: ResolvedSlot
    metrics: Optional[ExtendedMetrics] = None
    category: Optional[LayoutCategory] = None

    def to_dict(self) -> Dict[str, Any]:
        resolved = self.resolved
        node = resolved.node
        return {
            "position": resolved.position,
            "ordinal": resolved.slot.ordinal,
            "slot_type": resolved.slot.slot_type.name,
            "label": resolved.slot.label,
            "title": resolved.title,
            "node_id": node.node_id if node else None,
            "node_name": node.node_name if node else None,
            "status": node.status if node else None,
            "node_category": resolved.node_category.value,
            "candidate_count": resolved.candidate_count,
            "layout": self.category.value if self.category else None,
            "metrics": self.metrics.to_dict() if self.metrics else None,
        }


@dataclass(frozen=True)
class PublishedState:
    """Everything one successful cycle produced, or the empty initial state."""

    facility_id: str
    slots: Tuple[SlotView, ...]
    snapshot: Optional[Snapshot] = None
    updated_at: Optional[datetime] = None
    ambiguities: Tuple[MappingAmbiguity, ...] = field(default=())

    @property
    def has_data(self) -> bool:
        return self.snapshot is not None

    def is_stale(self, refresh_interval_ms: int, now: Optional[datetime] = None) -> bool:
        """True when nothing was ever published or the last success is older than one interval."""
        if self.updated_at is None:
            return True
        now = now or datetime.now()
        return now - self.updated_at > timedelta(milliseconds=refresh_interval_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facility_id": self.facility_id,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "slots": [view.to_dict() for view in self.slots],
        }


StateListener = Callable[[PublishedState], Awaitable[None]]


class MonitorPipeline:
    """
    Runs fetch cycles and holds the last published state.

    Only the scheduler calls ``run_cycle``; any number of readers may read
    ``state`` at any time.
    """

    def __init__(
        self,
        client: TelemetryClient,
        registry: FacilityRegistry,
        settings_store: DeviceSettingsStore,
        mapper: Optional[NodeSlotMapper] = None,
        classifier: Optional[PresentationClassifier] = None,
        client_id: str = "",
        secret: str = "",
    ):
        self.client = client
        self.registry = registry
        self.settings_store = settings_store
        self.mapper = mapper or NodeSlotMapper()
        self.classifier = classifier or PresentationClassifier()
        self._client_id = client_id
        self._secret = secret
        self._token: Optional[Token] = None
        self._credentials_rejected = False
        self._listeners: List[StateListener] = []
        self.last_error: Optional[TelemetryError] = None
        self.cycles_run = 0
        self.cycles_failed = 0
        self._state = self.empty_state(registry.active_facility_id)

    @property
    def state(self) -> PublishedState:
        return self._state

    @property
    def credentials_rejected(self) -> bool:
        return self._credentials_rejected

    def add_listener(self, listener: StateListener) -> None:
        """Register a coroutine called with every newly published state."""
        self._listeners.append(listener)

    def update_credentials(self, client_id: str, secret: str) -> None:
        """Install new credentials; clears a previous rejection."""
        self._client_id = client_id
        self._secret = secret
        self._token = None
        self._credentials_rejected = False
        logger.info("API credentials updated")

    def empty_state(self, facility_id: str) -> PublishedState:
        configuration = self.registry.get_configuration(facility_id)
        slots = tuple(
            SlotView(ResolvedSlot(facility_id=facility_id.upper(), position=i, slot=slot))
            for i, slot in enumerate(configuration.slots)
        )
        return PublishedState(facility_id=facility_id.upper(), slots=slots)

    def build_state(
        self,
        facility_id: str,
        snapshot: Snapshot,
        configuration: Optional[FacilityConfiguration] = None,
    ) -> PublishedState:
        """
        Resolve, normalize and classify one snapshot. No I/O, no shared state.

        ``configuration`` is the layout taken when the cycle started; the
        registry is only consulted when none is given.
        """
        if configuration is None:
            configuration = self.registry.get_configuration(facility_id)
        resolution = self.mapper.resolve_all(configuration, snapshot, facility_id)

        views = []
        for resolved in resolution.slots:
            if resolved.node is None:
                views.append(SlotView(resolved))
                continue
            views.append(
                SlotView(
                    resolved,
                    metrics=normalize(resolved.usage, resolved.hardware_spec),
                    category=self.classifier.classify(facility_id, resolved.node.node_name),
                )
            )

        return PublishedState(
            facility_id=resolution.facility_id,
            slots=tuple(views),
            snapshot=snapshot,
            updated_at=datetime.now(),
            ambiguities=resolution.ambiguities,
        )

    async def _fetch(self, facility_id: str) -> Snapshot:
        if self._token is None:
            self._token = await self.client.authenticate(self._client_id, self._secret)
        return await self.client.fetch_snapshot(self._token, facility_id)

    async def run_cycle(self) -> CycleOutcome:
        """
        Run one fetch cycle.

        Returns:
            CycleOutcome: PUBLISHED when a new state was swapped in
        """
        facility_id = self.registry.active_facility_id
        configuration = self.registry.get_configuration(facility_id)
        self.cycles_run += 1

        if self._credentials_rejected:
            logger.warning("Skipping fetch: credentials were rejected, waiting for new ones")
            record_cycle(CycleOutcome.CREDENTIALS_REJECTED.value)
            return CycleOutcome.CREDENTIALS_REJECTED

        timeout = await asyncio.to_thread(self.settings_store.get_api_timeout_seconds)
        try:
            snapshot = await asyncio.wait_for(self._fetch(facility_id), timeout=timeout)
        except asyncio.TimeoutError:
            return self._fail(FetchError(FetchErrorKind.TIMEOUT, f"Cycle exceeded {timeout}s"))
        except AuthError as e:
            if e.kind is AuthErrorKind.INVALID_CREDENTIALS:
                self._credentials_rejected = True
                self.last_error = e
                self.cycles_failed += 1
                logger.error(f"Credentials rejected, fetching paused: {str(e)}")
                record_cycle(CycleOutcome.CREDENTIALS_REJECTED.value)
                return CycleOutcome.CREDENTIALS_REJECTED
            return self._fail(e)
        except FetchError as e:
            if e.is_auth_rejection:
                # Token expired or revoked; log in again next cycle
                self._token = None
            return self._fail(e)

        state = self.build_state(facility_id, snapshot, configuration)
        self._state = state
        self.last_error = None

        update_slot_counts(state.facility_id, self._state_counts(state))
        for _ in state.ambiguities:
            record_ambiguity(state.facility_id)
        record_cycle(CycleOutcome.PUBLISHED.value)
        logger.info(f"Published {len(state.slots)} slots for {state.facility_id}")

        await self._notify(state)
        return CycleOutcome.PUBLISHED

    def _fail(self, error: TelemetryError) -> CycleOutcome:
        self.last_error = error
        self.cycles_failed += 1
        logger.error(f"Fetch cycle failed, keeping last published state: {str(error)}")
        record_cycle(CycleOutcome.FAILED.value)
        return CycleOutcome.FAILED

    @staticmethod
    def _state_counts(state: PublishedState) -> Dict[str, int]:
        bound = sum(1 for view in state.slots if view.resolved.node is not None)
        return {"bound": bound, "empty": len(state.slots) - bound}

    async def _notify(self, state: PublishedState) -> None:
        for listener in self._listeners:
            try:
                await listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {str(e)}")

"""Pydantic schemas for the records served by the NanoDC data API."""

from datetime import datetime
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field

# Records are read-only snapshots of what the remote service owns
RECORD_CONFIG = {"frozen": True, "populate_by_name": True, "extra": "ignore"}


class NodeRecord(BaseModel):
    """Identity and lifecycle of one compute node."""

    id: int = 0
    node_id: str
    node_name: str
    nanodc_id: Optional[str] = None
    user_uuid: Optional[str] = None
    status: Optional[str] = None
    create_at: Optional[str] = None
    update_at: Optional[str] = None

    model_config = RECORD_CONFIG

    @property
    def is_active(self) -> bool:
        return (self.status or "").lower() == "active"


class HardwareSpec(BaseModel):
    """Static capability description of a node."""

    id: int = 0
    node_id: str
    cpu_model: Optional[str] = None
    cpu_cores: Optional[str] = Field(None, alias="cpucores")
    gpu_model: Optional[str] = None
    gpu_vram_gb: Optional[str] = None
    total_ram_gb: Optional[str] = None
    storage_type: Optional[str] = None
    storage_total_gb: Optional[str] = None
    cpu_count: Optional[str] = None
    gpu_count: Optional[str] = None
    nvme_count: Optional[str] = None
    nanodc_id: Optional[str] = None
    total_harddisk_gb: Optional[str] = None

    model_config = RECORD_CONFIG


class UsageSample(BaseModel):
    """
    Time-stamped dynamic metrics of a node.

    Every metric is an optional decimal string; a missing value means the
    node does not report that metric, not that it is zero.
    """

    id: int = 0
    node_id: str
    timestamp: str = ""
    cpu_usage_percent: Optional[str] = None
    mem_usage_percent: Optional[str] = None
    cpu_temp: Optional[str] = None
    gpu_usage_percent: Optional[str] = None
    gpu_temp: Optional[str] = None
    used_storage_gb: Optional[str] = None
    ssd_health_percent: Optional[str] = None
    gpu_vram_percent: Optional[str] = None
    harddisk_used_percent: Optional[str] = None
    stage_used: Optional[str] = None

    model_config = RECORD_CONFIG


DEFAULT_SCORE = "80.00"
DEFAULT_TOTAL_SCORE = "480.00"


class ScoreRecord(BaseModel):
    """Per-node quality scores, each a decimal string."""

    id: int = 0
    node_id: str
    cpu_score: Optional[str] = None
    gpu_score: Optional[str] = None
    ssd_score: Optional[str] = None
    ram_score: Optional[str] = None
    network_score: Optional[str] = None
    hardware_health_score: Optional[str] = None
    total_score: Optional[str] = None
    average_score: Optional[str] = None

    model_config = RECORD_CONFIG

    @classmethod
    def default(cls, node_id: str = "default-node") -> "ScoreRecord":
        """Placeholder used when the service has no score to show."""
        return cls(
            node_id=node_id,
            cpu_score=DEFAULT_SCORE,
            gpu_score=DEFAULT_SCORE,
            ssd_score=DEFAULT_SCORE,
            ram_score=DEFAULT_SCORE,
            network_score=DEFAULT_SCORE,
            hardware_health_score=DEFAULT_SCORE,
            total_score=DEFAULT_TOTAL_SCORE,
            average_score=DEFAULT_SCORE,
        )

    def as_floats(self) -> Dict[str, float]:
        """Parse every score; unparseable values become 0.0."""
        values = {}
        for name in (
            "cpu_score",
            "gpu_score",
            "ssd_score",
            "ram_score",
            "network_score",
            "hardware_health_score",
            "total_score",
            "average_score",
        ):
            try:
                values[name] = float(getattr(self, name))
            except (TypeError, ValueError):
                values[name] = 0.0
        return values


class FacilityRecord(BaseModel):
    """A physical data center as described by the service."""

    id: int = 0
    nanodc_id: str
    name: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    ip: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = Field(None, alias="longtitude")

    model_config = RECORD_CONFIG


class LedgerTransaction(BaseModel):
    """One reward transfer recorded for a node."""

    id: int = 0
    node_id: str
    sender: Optional[str] = Field(None, alias="from")
    recipient: Optional[str] = Field(None, alias="to")
    amount: Optional[str] = None
    tx_hash: Optional[str] = None
    date: Optional[str] = None

    model_config = RECORD_CONFIG


class Snapshot(BaseModel):
    """
    One consistent fetch result.

    Arrays keep the service's order; the mapper relies on it to break ties.
    """

    hardware_specs: Tuple[HardwareSpec, ...] = ()
    nodes: Tuple[NodeRecord, ...] = ()
    node_usage: Tuple[UsageSample, ...] = ()
    scores: Tuple[ScoreRecord, ...] = ()
    facilities: Tuple[FacilityRecord, ...] = Field((), alias="nanodc")
    transactions: Tuple[LedgerTransaction, ...] = Field((), alias="ndpListFiltered")

    facility_id: Optional[str] = None
    fetched_at: datetime = Field(default_factory=datetime.now)
    response_bytes: int = 0

    model_config = RECORD_CONFIG

    def spec_for(self, node_id: str) -> Optional[HardwareSpec]:
        return next((s for s in self.hardware_specs if s.node_id == node_id), None)

    def usage_for(self, node_id: str) -> Optional[UsageSample]:
        """Latest usage sample of a node by timestamp, first one on ties."""
        latest = None
        for sample in self.node_usage:
            if sample.node_id != node_id:
                continue
            if latest is None or sample.timestamp > latest.timestamp:
                latest = sample
        return latest

    def score_for(self, node_id: str) -> Optional[ScoreRecord]:
        return next((s for s in self.scores if s.node_id == node_id), None)

    def transactions_for(self, node_id: str) -> Tuple[LedgerTransaction, ...]:
        return tuple(t for t in self.transactions if t.node_id == node_id)

    def summary_score(self) -> ScoreRecord:
        """First reported score, or the default placeholder."""
        if self.scores:
            return self.scores[0]
        return ScoreRecord.default()

    def counts(self) -> Dict[str, int]:
        return {
            "hardware_specs": len(self.hardware_specs),
            "nodes": len(self.nodes),
            "node_usage": len(self.node_usage),
            "scores": len(self.scores),
            "facilities": len(self.facilities),
            "transactions": len(self.transactions),
        }


class Token(BaseModel):
    """Bearer token returned by the login endpoint."""

    access_token: str
    token_type: str = "bearer"
    issued_at: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}

    @property
    def authorization_header(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


class UsageStatistics(BaseModel):
    """Summary of the API usage counters kept in the settings store."""

    total_calls: int = 0
    success_count: int = 0
    fail_count: int = 0
    success_rate: float = 0.0
    avg_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    total_bytes: int = 0
    last_sync_time: Optional[datetime] = None


# Request bodies of the rendering feed


class SlotOrderUpdate(BaseModel):
    """New display order of a facility, as slot type names."""

    slot_types: Tuple[str, ...]


class SettingsUpdate(BaseModel):
    refresh_interval_ms: Optional[int] = Field(None, gt=0)
    api_timeout_seconds: Optional[float] = Field(None, gt=0)


class CredentialsUpdate(BaseModel):
    client_id: str
    secret: str

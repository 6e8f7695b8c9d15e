import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nanodc.telemetry.client import TelemetryClient
from nanodc.telemetry.models import Base
from nanodc.telemetry.registry import FacilityRegistry
from nanodc.telemetry.schemas import Snapshot, Token
from nanodc.telemetry.settings_store import DeviceSettingsStore

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_API_URL = "http://nanodc.test/api"


def bc02_payload():
    """A BC02 snapshot body the way the data API serves it."""
    return {
        "nodes": [
            {"id": 1, "node_id": "n-post", "node_name": "BC02 Post Worker", "nanodc_id": "bc02", "status": "active"},
            {"id": 2, "node_id": "n-nas3", "node_name": "BC02 NAS3", "nanodc_id": "bc02", "status": "active"},
            {"id": 3, "node_id": "n-miner", "node_name": "BC02 Filecoin Miner", "nanodc_id": "bc02", "status": "active"},
            {"id": 4, "node_id": "n-gpu", "node_name": "BC02 3080Ti GPU Worker", "nanodc_id": "bc02", "status": "pre"},
            {"id": 5, "node_id": "n-nas1", "node_name": "BC02 NAS1", "nanodc_id": "bc02", "status": "active"},
        ],
        "hardware_specs": [
            {"node_id": "n-nas3", "cpu_model": "Xeon", "cpucores": "16", "storage_total_gb": "2000"},
        ],
        "node_usage": [
            {"node_id": "n-post", "timestamp": "2024-05-01T10:00:00", "cpu_usage_percent": "12.0"},
            {"node_id": "n-post", "timestamp": "2024-05-01T10:05:00", "cpu_usage_percent": "57.3",
             "mem_usage_percent": None, "gpu_temp": "65"},
            {"node_id": "n-nas3", "timestamp": "2024-05-01T10:05:00", "cpu_usage_percent": "3.5",
             "used_storage_gb": "812"},
        ],
        "scores": [
            {"node_id": "n-post", "cpu_score": "90.10", "total_score": "500.00"},
        ],
        "nanodc": [
            {"nanodc_id": "5e807a27-7c3a-4a22-8df2-20c392186ed3", "name": "BC02", "longtitude": "127.1"},
        ],
        "ndpListFiltered": [
            {"node_id": "n-miner", "from": "pool", "to": "wallet", "amount": "1.5", "tx_hash": "0xabc"},
        ],
    }


def make_snapshot(node_names, facility_id=None, usage=()):
    """Snapshot with one node per name; node ids are n0, n1, ..."""
    nodes = [{"node_id": f"n{i}", "node_name": name} for i, name in enumerate(node_names)]
    return Snapshot.model_validate({"nodes": nodes, "node_usage": list(usage), "facility_id": facility_id})


class FakeDataApi:
    """Scriptable stand-in for the NanoDC data API, served through httpx.MockTransport."""

    def __init__(self, payload=None):
        self.payload = payload if payload is not None else bc02_payload()
        self.login_status = 200
        self.login_error = None
        self.login_body = None
        self.get_status = 200
        self.post_status = 200
        self.get_error = None
        self.post_error = None
        self.body = None
        self.on_data = None
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/auth/login"):
            if self.login_error is not None:
                raise self.login_error
            if self.login_status != 200:
                return httpx.Response(self.login_status, json={"detail": "denied"})
            if self.login_body is not None:
                return httpx.Response(200, content=self.login_body)
            return httpx.Response(200, json={"token": "test-token"})

        if path.endswith("/data"):
            if self.on_data is not None:
                self.on_data(request)
            error = self.get_error if request.method == "GET" else self.post_error
            if error is not None:
                raise error
            status = self.get_status if request.method == "GET" else self.post_status
            if status != 200:
                return httpx.Response(status, text="upstream failure")
            if self.body is not None:
                return httpx.Response(200, content=self.body)
            return httpx.Response(200, json=self.payload)

        if path.endswith("/scores"):
            node_id = request.url.params.get("node_id")
            for score in self.payload.get("scores", []):
                if score["node_id"] == node_id:
                    return httpx.Response(200, json=score)
            return httpx.Response(404, json={"detail": "not found"})

        return httpx.Response(404)

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)

    def calls(self, method, suffix):
        return [r for r in self.requests if r.method == method and r.url.path.endswith(suffix)]


@pytest.fixture(scope="function")
def session_factory():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    try:
        yield TestingSessionLocal
    finally:
        # Drop all tables after the test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings_store(session_factory):
    return DeviceSettingsStore(session_factory)


@pytest.fixture
def fake_api():
    return FakeDataApi()


@pytest.fixture
def telemetry_client(settings_store, fake_api):
    return TelemetryClient(settings_store, base_url=TEST_API_URL, transport=fake_api.transport)


@pytest.fixture
def token():
    return Token(access_token="test-token")


@pytest.fixture
def registry():
    return FacilityRegistry(active_facility_id="BC02")


@pytest.fixture
def services(session_factory, fake_api):
    """Service graph of the feed app wired to the fake data API."""
    from nanodc.telemetry.main import build_services

    return build_services(
        session_factory=session_factory,
        transport=fake_api.transport,
        base_url=TEST_API_URL,
        overrides_file="",
        client_id="device-1",
        secret="s3cret",
    )

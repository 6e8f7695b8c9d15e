"""Main entrypoint for the NanoDC monitor rendering feed."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from sqlalchemy.orm import sessionmaker

from .classifier import PresentationClassifier
from .client import TelemetryClient
from .config import API_BASE_URL, API_CLIENT_ID, API_CLIENT_SECRET, CORS_ALLOWED_ORIGINS, OVERRIDES_FILE
from .database import get_session_factory
from .mapper import NodeSlotMapper
from .metrics import setup_metrics
from .overrides import builtin_override_table, load_override_table
from .pipeline import MonitorPipeline
from .registry import FACILITY_SERVICE_IDS, FacilityRegistry
from .scheduler import PeriodicScheduler
from .schemas import CredentialsUpdate, SettingsUpdate, SlotOrderUpdate
from .settings_store import DeviceSettingsStore
from .slots import SlotType
from .websocket import RenderConnectionManager, handle_render_websocket

# Configure Rich console and logging
console = Console()
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
log = logging.getLogger("nanodc_monitor")


@dataclass
class MonitorServices:
    """Process-wide service instances, wired once at startup."""

    settings_store: DeviceSettingsStore
    registry: FacilityRegistry
    client: TelemetryClient
    pipeline: MonitorPipeline
    scheduler: PeriodicScheduler
    render_manager: RenderConnectionManager

    def reset_configuration(self) -> None:
        """Drop stored settings and built-in layouts together so both agree on the default facility."""
        self.settings_store.reset_configuration()
        self.registry.reset_to_default()
        self.settings_store.set_active_facility_id(self.registry.active_facility_id)


def build_services(
    session_factory: Optional[sessionmaker] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    base_url: str = API_BASE_URL,
    overrides_file: str = OVERRIDES_FILE,
    client_id: str = API_CLIENT_ID,
    secret: str = API_CLIENT_SECRET,
) -> MonitorServices:
    settings_store = DeviceSettingsStore(session_factory or get_session_factory())
    registry = FacilityRegistry(active_facility_id=settings_store.get_active_facility_id())

    overrides = builtin_override_table()
    if overrides_file:
        overrides = overrides.merged(load_override_table(overrides_file))

    client = TelemetryClient(settings_store, base_url=base_url, transport=transport)
    pipeline = MonitorPipeline(
        client,
        registry,
        settings_store,
        mapper=NodeSlotMapper(overrides),
        classifier=PresentationClassifier(),
        client_id=client_id,
        secret=secret,
    )
    render_manager = RenderConnectionManager()
    pipeline.add_listener(render_manager.publish_state)

    return MonitorServices(
        settings_store=settings_store,
        registry=registry,
        client=client,
        pipeline=pipeline,
        scheduler=PeriodicScheduler(pipeline, settings_store),
        render_manager=render_manager,
    )


def get_services(request: Request) -> MonitorServices:
    return request.app.state.services


def facility_summary(services: MonitorServices) -> dict:
    registry = services.registry
    configuration = registry.active_configuration()
    return {
        "active_facility_id": registry.active_facility_id,
        "supported_facilities": registry.supported_facilities(),
        "slots": [
            {"position": i, "ordinal": slot.ordinal, "slot_type": slot.slot_type.name, "label": slot.label}
            for i, slot in enumerate(configuration.slots)
        ],
    }


def create_app(services: Optional[MonitorServices] = None, run_scheduler: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built services; built from the environment on startup when omitted
        run_scheduler: Whether startup starts the periodic fetch scheduler
    """
    app = FastAPI(
        title="NanoDC Monitor",
        description="Telemetry acquisition and slot mapping feed for NanoDC facility displays",
        version="0.1.0"
    )
    app.state.services = services

    console.print(Panel.fit(
        """
    [bold blue]NanoDC Monitor[/bold blue]

    [bold green]Facility telemetry feed for display renderers[/bold green]
    """,
        title="[bold yellow]NanoDC[/bold yellow]",
        border_style="green",
    ))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_metrics(app)

    @app.on_event("startup")
    async def startup_event():
        """Wire services and start background tasks."""
        log.info("Starting up the monitor")
        if app.state.services is None:
            app.state.services = await asyncio.to_thread(build_services)
        current = app.state.services
        current.render_manager.start_heartbeat_monitor()
        if run_scheduler:
            current.scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop background tasks."""
        log.info("Shutting down the monitor")
        current = app.state.services
        if current is not None:
            await current.scheduler.stop()
            current.render_manager.stop_heartbeat_monitor()

    @app.get("/")
    def read_root():
        return {"message": "NanoDC monitor feed"}

    @app.get("/health")
    def health_check(services: MonitorServices = Depends(get_services)):
        pipeline = services.pipeline
        state = pipeline.state
        return {
            "status": "healthy",
            "facility_id": state.facility_id,
            "has_data": state.has_data,
            "stale": state.is_stale(services.settings_store.get_refresh_interval_ms()),
            "credentials_rejected": pipeline.credentials_rejected,
            "last_error": str(pipeline.last_error) if pipeline.last_error else None,
            "scheduler_running": services.scheduler.is_running,
        }

    @app.get("/slots")
    def get_slots(services: MonitorServices = Depends(get_services)):
        """Last published slot views of the active facility."""
        state = services.pipeline.state
        payload = state.to_dict()
        payload["stale"] = state.is_stale(services.settings_store.get_refresh_interval_ms())
        return payload

    @app.get("/stats")
    def get_stats(services: MonitorServices = Depends(get_services)):
        pipeline = services.pipeline
        return {
            "api": services.settings_store.usage_statistics().model_dump(mode="json"),
            "cycles_run": pipeline.cycles_run,
            "cycles_failed": pipeline.cycles_failed,
            "skipped_ticks": services.scheduler.skipped_ticks,
            "ambiguities": len(pipeline.state.ambiguities),
            "renderers": services.render_manager.get_connection_stats(),
        }

    @app.get("/facility")
    def get_facility(services: MonitorServices = Depends(get_services)):
        return facility_summary(services)

    @app.put("/facility/{facility_id}")
    def switch_facility(facility_id: str, services: MonitorServices = Depends(get_services)):
        """Select the facility shown from the next fetch cycle on."""
        key = facility_id.upper()
        if key not in services.registry.supported_facilities() and key not in FACILITY_SERVICE_IDS:
            raise HTTPException(status_code=404, detail=f"Unknown facility: {facility_id}")
        services.registry.switch_facility(key)
        services.settings_store.set_active_facility_id(key)
        return facility_summary(services)

    @app.put("/facility/{facility_id}/slots")
    def update_slot_order(
        facility_id: str, body: SlotOrderUpdate, services: MonitorServices = Depends(get_services)
    ):
        try:
            order = [SlotType.from_name(name) for name in body.slot_types]
            configuration = services.registry.set_slot_order(facility_id, order)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {
            "facility_id": configuration.facility_id,
            "slots": [
                {"position": i, "ordinal": slot.ordinal, "slot_type": slot.slot_type.name}
                for i, slot in enumerate(configuration.slots)
            ],
        }

    @app.put("/settings")
    def update_settings(body: SettingsUpdate, services: MonitorServices = Depends(get_services)):
        store = services.settings_store
        if body.refresh_interval_ms is not None:
            store.set_refresh_interval_ms(body.refresh_interval_ms)
        if body.api_timeout_seconds is not None:
            store.set_api_timeout_seconds(body.api_timeout_seconds)
        return {
            "refresh_interval_ms": store.get_refresh_interval_ms(),
            "api_timeout_seconds": store.get_api_timeout_seconds(),
        }

    @app.post("/reset")
    def reset_configuration(services: MonitorServices = Depends(get_services)):
        services.reset_configuration()
        return facility_summary(services)

    @app.put("/credentials", status_code=204)
    def update_credentials(body: CredentialsUpdate, services: MonitorServices = Depends(get_services)):
        services.pipeline.update_credentials(body.client_id, body.secret)

    @app.get("/ws/stats")
    def websocket_stats(services: MonitorServices = Depends(get_services)):
        return services.render_manager.get_connection_stats()

    @app.websocket("/ws/render")
    async def render_websocket(websocket: WebSocket):
        current = websocket.app.state.services
        await handle_render_websocket(websocket, current.render_manager, current.pipeline)

    return app


app = create_app()

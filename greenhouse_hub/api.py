#!/usr/bin/env python3
"""
REST API for the Greenhouse Hub

This module provides a FastAPI-based REST API for the local UI/display: it
reads node records and writes node settings through the same registry
contract the reconciliation engine uses.

Endpoints:
    GET   /api/health                   - Health check
    GET   /api/status                   - Hub status and statistics
    GET   /api/nodes                    - List all node slots
    GET   /api/nodes/{node_id}          - Get one node
    PATCH /api/nodes/{node_id}/settings - Change node settings
    POST  /api/nodes/{node_id}/command  - Send a manual command to one node
    POST  /api/nodes/command            - Send a manual command to all live nodes
    GET   /api/nodes/{node_id}/history  - Recorded telemetry history
    POST  /api/sync                     - Run a reconciliation cycle now

Usage:
    from greenhouse_hub import HubController, HubConfig
    from greenhouse_hub.api import create_api, run_api_server

    config = HubConfig.from_yaml("config.yaml")
    hub = HubController(config)
    hub.initialize()

    app = create_api(hub)
    run_api_server(app, host="0.0.0.0", port=8080)
"""

import logging
import math
from datetime import datetime
from typing import List, Optional

try:
    from fastapi import FastAPI, HTTPException, Query
    from fastapi.middleware.cors import CORSMiddleware
    from pydantic import BaseModel, Field
except ImportError:
    raise ImportError(
        "FastAPI and Pydantic are required for the API module.\n"
        "Install with: pip3 install fastapi uvicorn pydantic"
    )

from .models import (
    HYSTERESIS_RANGE,
    TEMPERATURE_THRESHOLD_RANGE,
    HubState,
    ManualCommand,
    NodeSettings,
    vent_state_name,
)


# =============================================================================
# Constants (NASA Rule 2: Fixed bounds)
# =============================================================================

# Maximum history entries to return per request
MAX_HISTORY_PER_REQUEST = 1000


# =============================================================================
# Pydantic Models for API Requests/Responses
# =============================================================================

class SensorResponse(BaseModel):
    """Latest telemetry of a node."""
    temperature: Optional[float] = Field(None, description="Temperature in Celsius")
    humidity: Optional[float] = Field(None, description="Humidity percentage")
    pressure: Optional[float] = Field(None, description="Pressure in hPa")
    vent_status: str = Field(..., description="closed, opening, open, closing or unknown")
    timestamp: int = Field(..., description="Node supplied timestamp")


class ScheduleModel(BaseModel):
    """Daily vent schedule."""
    open_hour: int = Field(..., ge=0, le=23)
    open_minute: int = Field(..., ge=0, le=59)
    close_hour: int = Field(..., ge=0, le=23)
    close_minute: int = Field(..., ge=0, le=59)
    enabled: bool


class SettingsResponse(BaseModel):
    """Node settings."""
    temperature_threshold: float
    hysteresis: float
    mode: str = Field(..., description="auto or manual")
    manual_command: Optional[str] = Field(None, description="Pending one-shot command")
    schedule: ScheduleModel


class NodeResponse(BaseModel):
    """One node slot."""
    node_id: int
    seen: bool = Field(..., description="Node has been heard at least once")
    live: bool = Field(..., description="Node heard within the stale window")
    seconds_since_seen: Optional[float] = None
    sensor: Optional[SensorResponse] = None
    settings: SettingsResponse


class NodeListResponse(BaseModel):
    """List of node slots."""
    nodes: List[NodeResponse]
    total: int
    live_count: int


class HubStatusResponse(BaseModel):
    """Hub status and statistics."""
    state: str
    node_capacity: int
    seen_nodes: int
    live_nodes: int
    telemetry_received: int
    invalid_payloads: int
    control_sent: int
    control_failures: int
    sync_cycles: int
    remote_configured: bool
    last_sync: Optional[float] = None


class SettingsUpdate(BaseModel):
    """Partial settings change, unset fields are left alone."""
    temperature_threshold: Optional[float] = Field(
        None, ge=TEMPERATURE_THRESHOLD_RANGE[0], le=TEMPERATURE_THRESHOLD_RANGE[1]
    )
    hysteresis: Optional[float] = Field(
        None, ge=HYSTERESIS_RANGE[0], le=HYSTERESIS_RANGE[1]
    )
    auto_mode: Optional[bool] = None
    schedule: Optional[ScheduleModel] = None


class CommandRequest(BaseModel):
    """Manual command request."""
    command: str = Field(..., description="open, close or stop")


class CommandResponse(BaseModel):
    """Command result."""
    success: bool
    message: str
    node_ids: List[int] = Field(default_factory=list)


class SyncResponse(BaseModel):
    """Reconciliation cycle result."""
    skipped: bool
    pushed: List[int]
    pulled: List[int]
    dirty: List[int]
    commands: dict
    failures: List[str]


class HistoryEntryResponse(BaseModel):
    """One recorded telemetry snapshot."""
    recorded_at: int
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    vent_status: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    radio_connected: bool


# =============================================================================
# API Factory
# =============================================================================

def create_api(hub_controller) -> FastAPI:
    """
    Create a FastAPI application with hub controller reference.

    Args:
        hub_controller: HubController instance.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Greenhouse Hub API",
        description="REST API for monitoring and controlling greenhouse nodes",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Add CORS middleware for web access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.hub = hub_controller
    logger = logging.getLogger("API")

    # -------------------------------------------------------------------------
    # Helper Functions
    # -------------------------------------------------------------------------

    def get_hub():
        """Get hub controller from app state."""
        return app.state.hub

    def require_node(node_id: int):
        hub = get_hub()
        if not hub.registry.is_valid_node_id(node_id):
            raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
        return hub

    def parse_command(name: str) -> ManualCommand:
        command = ManualCommand.from_remote(name.lower())
        if command is None:
            valid = [c.remote_name for c in ManualCommand]
            raise HTTPException(
                status_code=400,
                detail=f"Invalid command: {name}. Valid: {valid}"
            )
        return command

    def finite(value: float) -> Optional[float]:
        return value if math.isfinite(value) else None

    def node_to_response(node_id: int) -> NodeResponse:
        hub = get_hub()
        record = hub.registry.get_record(node_id)
        settings = record.settings
        schedule = settings.schedule

        sensor = None
        since = None
        if record.is_online:
            since = hub.registry.clock() - record.last_seen
            sensor = SensorResponse(
                temperature=finite(record.sensor.temperature),
                humidity=finite(record.sensor.humidity),
                pressure=finite(record.sensor.pressure),
                vent_status=vent_state_name(record.sensor.vent_state),
                timestamp=record.sensor.timestamp,
            )

        return NodeResponse(
            node_id=node_id,
            seen=record.is_online,
            live=hub.registry.is_live(node_id),
            seconds_since_seen=since,
            sensor=sensor,
            settings=SettingsResponse(
                temperature_threshold=settings.temperature_threshold,
                hysteresis=settings.hysteresis,
                mode="auto" if settings.auto_mode else "manual",
                manual_command=settings.manual_command.remote_name if settings.manual_command else None,
                schedule=ScheduleModel(
                    open_hour=schedule.open_hour,
                    open_minute=schedule.open_minute,
                    close_hour=schedule.close_hour,
                    close_minute=schedule.close_minute,
                    enabled=schedule.enabled,
                ),
            ),
        )

    # -------------------------------------------------------------------------
    # Health / Status Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Check API and radio health."""
        hub = get_hub()
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now().isoformat(),
            radio_connected=hub.state == HubState.READY,
        )

    @app.get("/api/status", response_model=HubStatusResponse, tags=["Hub"])
    async def get_hub_status():
        """Get hub status and statistics."""
        return HubStatusResponse(**get_hub().get_stats())

    @app.post("/api/sync", response_model=SyncResponse, tags=["Hub"])
    def sync_now():
        """Run one reconciliation cycle immediately."""
        report = get_hub().sync_now()
        return SyncResponse(
            skipped=report.skipped,
            pushed=report.pushed,
            pulled=report.pulled,
            dirty=report.dirty,
            commands=report.commands,
            failures=report.failures,
        )

    # -------------------------------------------------------------------------
    # Node Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/nodes", response_model=NodeListResponse, tags=["Nodes"])
    async def list_nodes(
        live_only: bool = Query(False, description="Only return live nodes"),
    ):
        """List all node slots."""
        hub = get_hub()
        live = hub.registry.live_node_ids()
        node_ids = live if live_only else list(hub.registry.node_ids())

        return NodeListResponse(
            nodes=[node_to_response(node_id) for node_id in node_ids],
            total=len(node_ids),
            live_count=len(live),
        )

    @app.get("/api/nodes/{node_id}", response_model=NodeResponse, tags=["Nodes"])
    async def get_node(node_id: int):
        """Get one node slot."""
        require_node(node_id)
        return node_to_response(node_id)

    @app.patch("/api/nodes/{node_id}/settings", response_model=NodeResponse, tags=["Nodes"])
    def update_settings(node_id: int, update: SettingsUpdate):
        """
        Change node settings.

        Settings are persisted and sent to the node if it is live; the next
        reconciliation cycle mirrors them to the remote store.
        """
        hub = require_node(node_id)

        def apply(settings: NodeSettings):
            if update.temperature_threshold is not None:
                settings.temperature_threshold = update.temperature_threshold
            if update.hysteresis is not None:
                settings.hysteresis = update.hysteresis
            if update.auto_mode is not None:
                settings.auto_mode = update.auto_mode
            if update.schedule is not None:
                settings.schedule.open_hour = update.schedule.open_hour
                settings.schedule.open_minute = update.schedule.open_minute
                settings.schedule.close_hour = update.schedule.close_hour
                settings.schedule.close_minute = update.schedule.close_minute
                settings.schedule.enabled = update.schedule.enabled

        hub.update_settings(node_id, apply)
        logger.info(f"Settings updated for node {node_id}")
        return node_to_response(node_id)

    @app.post("/api/nodes/command", response_model=CommandResponse, tags=["Commands"])
    def command_all(request: CommandRequest):
        """Send a manual command to every live node."""
        command = parse_command(request.command)
        node_ids = get_hub().broadcast_command(command)

        return CommandResponse(
            success=bool(node_ids),
            message=f"Command {command.remote_name} sent to {len(node_ids)} node(s)",
            node_ids=node_ids,
        )

    @app.post("/api/nodes/{node_id}/command", response_model=CommandResponse, tags=["Commands"])
    def command_node(node_id: int, request: CommandRequest):
        """Send a manual command to one node."""
        hub = require_node(node_id)
        command = parse_command(request.command)

        if not hub.registry.is_live(node_id):
            raise HTTPException(status_code=409, detail=f"Node {node_id} is not live")

        success = hub.send_command(node_id, command)

        return CommandResponse(
            success=success,
            message=f"Command {command.remote_name} sent" if success else "Send failed",
            node_ids=[node_id],
        )

    @app.get(
        "/api/nodes/{node_id}/history",
        response_model=List[HistoryEntryResponse],
        tags=["Nodes"],
    )
    def get_history(
        node_id: int,
        limit: int = Query(100, ge=1, le=MAX_HISTORY_PER_REQUEST),
    ):
        """Get recorded telemetry for a node (newest first)."""
        hub = require_node(node_id)
        return [
            HistoryEntryResponse(
                recorded_at=entry.recorded_at,
                temperature=entry.temperature,
                humidity=entry.humidity,
                pressure=entry.pressure,
                vent_status=vent_state_name(entry.vent_state),
            )
            for entry in hub.history.get_latest(node_id, limit=limit)
        ]

    return app


# =============================================================================
# Server Runner
# =============================================================================

def run_api_server(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 8080,
    log_level: str = "info",
):
    """
    Run the API server (blocking).

    Args:
        app: FastAPI application instance.
        host: Host to bind to.
        port: Port to bind to.
        log_level: Logging level.
    """
    try:
        import uvicorn
    except ImportError:
        raise ImportError("uvicorn is required. Install with: pip3 install uvicorn")

    uvicorn.run(app, host=host, port=port, log_level=log_level)

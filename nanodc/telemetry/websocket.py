"""
Renderer WebSocket feed.

Renderers connect to ``/ws/render``, receive the current published state
right away and every newly published state afterwards. Renderers that stop
sending heartbeats are dropped by the heartbeat monitor.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List

from fastapi import WebSocket, WebSocketDisconnect

from .metrics import decrement_render_connections, increment_render_connections
from .pipeline import MonitorPipeline, PublishedState

logger = logging.getLogger(__name__)


class RenderConnectionManager:
    def __init__(self):
        # Map of connection id to WebSocket connection
        self.active_connections: Dict[str, WebSocket] = {}
        self.last_heartbeat: Dict[str, datetime] = {}
        self.pool_status = {
            "total_connections_ever": 0,
            "max_concurrent_connections": 0,
            "connection_errors": 0,
            "heartbeat_failures": 0,
            "states_pushed": 0,
        }
        self.heartbeat_monitor_task = None
        self.heartbeat_timeout = 120  # seconds
        self.heartbeat_check_interval = 30  # seconds

    async def connect(self, websocket: WebSocket, connection_id: str):
        await websocket.accept()
        self.active_connections[connection_id] = websocket
        self.last_heartbeat[connection_id] = datetime.now()

        self.pool_status["total_connections_ever"] += 1
        current_connections = len(self.active_connections)
        if current_connections > self.pool_status["max_concurrent_connections"]:
            self.pool_status["max_concurrent_connections"] = current_connections

        logger.info(f"Renderer {connection_id} connected. Active connections: {current_connections}")
        increment_render_connections()

    def disconnect(self, connection_id: str, reason: str = "normal"):
        if connection_id not in self.active_connections:
            return
        del self.active_connections[connection_id]
        self.last_heartbeat.pop(connection_id, None)

        if reason != "normal":
            logger.warning(f"Renderer {connection_id} disconnected: {reason}")
            if reason == "heartbeat_timeout":
                self.pool_status["heartbeat_failures"] += 1
            elif reason == "error":
                self.pool_status["connection_errors"] += 1
        else:
            logger.info(f"Renderer {connection_id} disconnected")

        decrement_render_connections()

    async def broadcast(self, message: Dict[str, Any]):
        disconnected = []
        for connection_id, websocket in list(self.active_connections.items()):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.error(f"Error pushing to renderer {connection_id}: {str(e)}")
                disconnected.append(connection_id)

        for connection_id in disconnected:
            self.disconnect(connection_id, reason="error")

        logger.debug(f"Message {message.get('type')} pushed to {len(self.active_connections)} renderers")

    async def publish_state(self, state: PublishedState):
        """Pipeline listener: push a newly published state to every renderer."""
        self.pool_status["states_pushed"] += 1
        await self.broadcast(state_message(state, "state_update"))

    def update_heartbeat(self, connection_id: str):
        if connection_id in self.active_connections:
            self.last_heartbeat[connection_id] = datetime.now()

    def get_connected_renderers(self) -> List[str]:
        return list(self.active_connections.keys())

    def get_connection_stats(self) -> Dict[str, Any]:
        stats = self.pool_status.copy()
        stats["current_connections"] = len(self.active_connections)
        return stats

    async def check_heartbeats(self):
        """Drop renderers whose last heartbeat is older than the timeout."""
        cutoff = datetime.now() - timedelta(seconds=self.heartbeat_timeout)
        inactive = [cid for cid, last_time in self.last_heartbeat.items() if last_time < cutoff]
        for connection_id in inactive:
            websocket = self.active_connections.get(connection_id)
            if websocket is not None:
                try:
                    await websocket.close(code=1000)
                except RuntimeError:
                    logger.debug(f"Renderer {connection_id} already closed")
            self.disconnect(connection_id, reason="heartbeat_timeout")

    async def monitor_heartbeats(self):
        logger.info("Starting renderer heartbeat monitor")
        while True:
            try:
                await self.check_heartbeats()
            except Exception as e:
                logger.error(f"Error in heartbeat monitor: {str(e)}")
            await asyncio.sleep(self.heartbeat_check_interval)

    def start_heartbeat_monitor(self):
        if self.heartbeat_monitor_task is None or self.heartbeat_monitor_task.done():
            self.heartbeat_monitor_task = asyncio.create_task(self.monitor_heartbeats())
            logger.info("Heartbeat monitor started")

    def stop_heartbeat_monitor(self):
        if self.heartbeat_monitor_task and not self.heartbeat_monitor_task.done():
            self.heartbeat_monitor_task.cancel()
            logger.info("Heartbeat monitor stopped")


def state_message(state: PublishedState, message_type: str) -> Dict[str, Any]:
    return {
        "type": message_type,
        "state": state.to_dict(),
        "timestamp": datetime.now().isoformat(),
    }


async def handle_render_websocket(websocket: WebSocket, manager: RenderConnectionManager, pipeline: MonitorPipeline):
    """
    Serve one renderer connection.

    Args:
        websocket: The WebSocket connection
        manager: Connection manager the renderer is registered with
        pipeline: Source of the current published state
    """
    connection_id = str(uuid.uuid4())
    await manager.connect(websocket, connection_id)

    try:
        await websocket.send_json({
            "type": "connection_established",
            "connection_id": connection_id,
            "timestamp": datetime.now().isoformat(),
            "heartbeat_timeout": manager.heartbeat_timeout,
        })
        await websocket.send_json(state_message(pipeline.state, "state"))

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.error(f"Invalid JSON received from renderer {connection_id}")
                await websocket.send_json({
                    "type": "error",
                    "error": "Invalid JSON",
                    "timestamp": datetime.now().isoformat(),
                })
                continue

            message_type = message.get("type") if isinstance(message, dict) else None
            if message_type == "heartbeat":
                manager.update_heartbeat(connection_id)
                await websocket.send_json({
                    "type": "heartbeat_ack",
                    "timestamp": datetime.now().isoformat(),
                })
            elif message_type == "get_state":
                await websocket.send_json(state_message(pipeline.state, "state"))
            else:
                logger.warning(f"Unknown message type from renderer {connection_id}: {message_type}")
                await websocket.send_json({
                    "type": "error",
                    "error": "Unknown message type",
                    "timestamp": datetime.now().isoformat(),
                })

    except WebSocketDisconnect:
        manager.disconnect(connection_id)
    except Exception as e:
        logger.error(f"WebSocket error for renderer {connection_id}: {str(e)}")
        manager.disconnect(connection_id, reason="error")

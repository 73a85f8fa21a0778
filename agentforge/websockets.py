"""
WebSocket delivery of lifecycle events.

Runs execute on worker threads, so hub callbacks hand events to the event
loop with call_soon_threadsafe; one queue per connection, drained by a single
sender, keeps them in production order.
"""

import asyncio
import logging
from typing import Dict, Optional

from fastapi import WebSocket

from .events import EventHub, Subscription
from .schemas import NodeEvent

logger = logging.getLogger(__name__)


class Connection:
    def __init__(self, websocket: WebSocket, subscription: Subscription, queue: asyncio.Queue):
        self.websocket = websocket
        self.subscription = subscription
        self.queue = queue


class ConnectionManager:
    def __init__(self, hub: EventHub):
        self.hub = hub
        self.active_connections: Dict[int, Connection] = {}
        logger.info("ConnectionManager initialized")

    async def connect(self, websocket: WebSocket, workflow_id: str, execution_id: str) -> Connection:
        await websocket.accept()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_event(event: NodeEvent):
            loop.call_soon_threadsafe(queue.put_nowait, event.model_dump_json())

        subscription = self.hub.subscribe(workflow_id, execution_id, on_event)
        connection = Connection(websocket, subscription, queue)
        self.active_connections[id(websocket)] = connection
        await websocket.send_json({"type": "connected", "executionId": execution_id})
        logger.info(f"WebSocket connected for {workflow_id}:{execution_id}. Total connections: {len(self.active_connections)}")
        return connection

    def disconnect(self, websocket: WebSocket):
        connection: Optional[Connection] = self.active_connections.pop(id(websocket), None)
        if connection is None:
            logger.warning("Attempted to disconnect WebSocket that wasn't in active connections")
            return
        self.hub.unsubscribe(connection.subscription)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def pump(self, connection: Connection):
        """Forward queued events until the client goes away."""
        while True:
            message = await connection.queue.get()
            await connection.websocket.send_text(message)

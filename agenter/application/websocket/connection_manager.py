from typing import Dict, List, Optional, Set, Tuple
from fastapi import WebSocket
import asyncio
import uuid
from datetime import datetime, timezone
import structlog

from agenter.domain.models.cognitive_state import CognitiveState
from .schema.events import EventType, ServerEvent, create_event

logger = structlog.get_logger(__name__)

HISTORY_LIMIT = 100
DEFAULT_TAB_ID = 1


class InputHistory:
    """Shell-style history of submitted inputs for one connection"""

    def __init__(self, limit: int = HISTORY_LIMIT):
        self.limit = limit
        self.entries: List[str] = []
        self.current_index = -1
        self.temp_entry = ""

    def add(self, entry: str):
        if not entry.strip():
            return
        # consecutive duplicates are stored once
        if self.entries and self.entries[-1] == entry:
            return
        self.entries.append(entry)
        if len(self.entries) > self.limit:
            self.entries.pop(0)
        self.current_index = -1
        self.temp_entry = ""

    def prev(self, current_draft: str = "") -> Tuple[str, bool]:
        """Step back; the draft is kept when leaving the bottom"""

        if self.current_index == -1:
            self.temp_entry = current_draft
        if not self.entries:
            return current_draft, False

        if self.current_index == -1:
            self.current_index = len(self.entries) - 1
        else:
            self.current_index = max(0, self.current_index - 1)
        return self.entries[self.current_index], self.current_index > 0

    def next(self) -> Tuple[str, bool]:
        """Step forward; past the newest entry the saved draft comes back"""

        if self.current_index == -1 or not self.entries:
            return self.temp_entry, bool(self.entries)

        new_index = self.current_index + 1
        if new_index >= len(self.entries):
            self.current_index = -1
            return self.temp_entry, True

        self.current_index = new_index
        return self.entries[new_index], new_index < len(self.entries) - 1


class ConnectionContext:
    """Everything owned by one websocket connection"""

    def __init__(self, websocket: WebSocket):
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.history = InputHistory()
        self.cognitive_states: Dict[int, CognitiveState] = {}
        self.cancel = asyncio.Event()
        self.tasks: Set[asyncio.Task] = set()
        self.connected_at = datetime.now(timezone.utc)
        self.last_activity = self.connected_at
        self._send_lock = asyncio.Lock()

    def get_state(self, tab_id: int) -> Optional[CognitiveState]:
        return self.cognitive_states.get(tab_id)

    def set_state(self, tab_id: int, state: CognitiveState):
        self.cognitive_states[tab_id] = state

    async def send(self, event: ServerEvent) -> bool:
        """Send one event; concurrent handlers are serialized"""

        try:
            async with self._send_lock:
                await self.websocket.send_json(event.to_json())
        except Exception as e:
            logger.error("Failed to send event", connection_id=self.id, error=str(e))
            return False

        self.last_activity = datetime.now(timezone.utc)
        return True


class ConnectionManager:
    """Creates and tears down connection contexts"""

    def __init__(self):
        self.active_connections: Dict[str, ConnectionContext] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, version: str) -> ConnectionContext:
        """Accept a new WebSocket connection"""
        await websocket.accept()

        context = ConnectionContext(websocket)
        async with self._lock:
            self.active_connections[context.id] = context

        await context.send(
            create_event(
                None,
                EventType.CONNECTED,
                message="Welcome to Agenter WebSocket API",
                version=version,
            )
        )

        logger.info("WebSocket connected", connection_id=context.id, total=len(self.active_connections))
        return context

    async def disconnect(self, context: ConnectionContext):
        """Cancel in-flight work and forget the connection"""

        context.cancel.set()
        for task in list(context.tasks):
            task.cancel()

        async with self._lock:
            self.active_connections.pop(context.id, None)

        logger.info("WebSocket disconnected", connection_id=context.id, total=len(self.active_connections))

    def clear_cognitive_states(self):
        """Drop every per-tab cognitive state on every connection"""

        for context in self.active_connections.values():
            context.cognitive_states.clear()

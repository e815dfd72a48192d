"""
Server-Sent Events (SSE) Manager for live viewer connections.

Every viewer connection gets its own queue, so several viewers can watch the
same application session and each one can disconnect independently.
"""

import asyncio
import logging
import uuid
from typing import Dict, Tuple

logger = logging.getLogger(__name__)


class SSEManager:
    """Manages per-connection Server-Sent Event streams for live sessions."""

    def __init__(self):
        self.active_streams: Dict[str, asyncio.Queue] = {}
        self.stream_sessions: Dict[str, str] = {}  # stream_id -> session_id

    async def add_stream(self, session_id: str) -> Tuple[str, asyncio.Queue]:
        """
        Register a new viewer stream for a session.

        Args:
            session_id: Application session the viewer is watching

        Returns:
            Tuple of (stream id, asyncio.Queue the stream reads from)
        """
        stream_id = str(uuid.uuid4())
        queue = asyncio.Queue()
        self.active_streams[stream_id] = queue
        self.stream_sessions[stream_id] = session_id
        logger.info(f"SSE stream {stream_id} added for session {session_id}")
        return stream_id, queue

    async def remove_stream(self, stream_id: str):
        """
        Remove a viewer stream, sending the end signal first.

        Args:
            stream_id: Stream identifier to remove
        """
        queue = self.active_streams.pop(stream_id, None)
        session_id = self.stream_sessions.pop(stream_id, None)
        if queue is not None:
            # None closes the stream gracefully
            queue.put_nowait(None)
            logger.info(f"SSE stream {stream_id} removed for session {session_id}")

    async def send_event(self, stream_id: str, event: dict):
        """
        Send event to one viewer stream.

        Args:
            stream_id: Target stream identifier
            event: Event data dict with 'type' and 'data' keys
        """
        queue = self.active_streams.get(stream_id)
        if queue is None:
            logger.warning(f"No active stream {stream_id}")
            return
        await queue.put(event)
        logger.debug(f"Event sent to stream {stream_id}: {event.get('type')}")

    async def broadcast(self, session_id: str, event: dict):
        """Send event to every viewer of a session."""
        for stream_id, owner in list(self.stream_sessions.items()):
            if owner == session_id:
                await self.send_event(stream_id, event)

    def streams_for(self, session_id: str) -> list[str]:
        return [sid for sid, owner in self.stream_sessions.items() if owner == session_id]

import asyncio
import logging
from typing import Callable, List, Optional

from .models import SessionEvent


logger = logging.getLogger(__name__)


class EventManager:
    def __init__(self):
        self.event_queue: asyncio.Queue = asyncio.Queue()
        self.event_handlers: List[Callable] = []
        self._running = False
        self._worker_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the event manager worker."""
        # The queue binds to the loop it is first awaited on
        pending = []
        while not self.event_queue.empty():
            pending.append(self.event_queue.get_nowait())
        self.event_queue = asyncio.Queue()
        for event in pending:
            self.event_queue.put_nowait(event)

        self._running = True
        self._worker_task = asyncio.create_task(self._process_events())
        logger.info("Event manager started")

    async def stop(self):
        """Stop the event manager."""
        self._running = False
        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
        logger.info("Event manager stopped")

    def add_handler(self, handler: Callable):
        """Add an event handler function."""
        self.event_handlers.append(handler)
        logger.info(f"Added event handler: {handler.__name__}")

    def remove_handler(self, handler: Callable) -> bool:
        if handler in self.event_handlers:
            self.event_handlers.remove(handler)
            return True
        return False

    def publish(self, event: SessionEvent):
        """Queue an event from synchronous code (signal handlers, timers)."""
        self.event_queue.put_nowait(event)
        logger.debug(f"Published event: {event.event_type} for session {event.session_id}")

    async def emit_event(self, event: SessionEvent):
        """Emit an event to be processed."""
        await self.event_queue.put(event)
        logger.debug(f"Emitted event: {event.event_type} for session {event.session_id}")

    async def _process_events(self):
        """Process events from the queue."""
        while self._running:
            try:
                # Wait for event with timeout to allow checking _running
                try:
                    event = await asyncio.wait_for(self.event_queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                await self._handle_event(event)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error processing event: {e}")

    async def _handle_event(self, event: SessionEvent):
        """Handle a single event."""
        for handler in self.event_handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Error in event handler {handler.__name__}: {e}")

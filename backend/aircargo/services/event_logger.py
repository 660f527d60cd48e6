"""
Fire-and-forget business event logging.

Events are dispatched as detached asyncio tasks so the caller never waits on
them, and any failure while writing an event is logged and dropped.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Set, Union

from ..models.enums import BusinessEvent
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


class BusinessEventLogger:
    """Writes business events to the ``aircargo.events`` logger."""

    def __init__(self, logger_name: str = "aircargo.events"):
        self.event_log = logging.getLogger(logger_name)
        self._pending: Set[asyncio.Task] = set()
        self.emitted_count = 0
        self.failed_count = 0

    def _write(self, event: str, data: Dict[str, Any]) -> None:
        record = {"event": event, "timestamp": utcnow().isoformat(), **data}
        self.event_log.info(json.dumps(record, default=str))
        self.emitted_count += 1

    async def _dispatch(self, event: str, data: Dict[str, Any]) -> None:
        try:
            self._write(event, data)
        except Exception as e:
            self.failed_count += 1
            logger.warning(f"Failed to write business event {event}: {e}")

    def emit(self, event: Union[BusinessEvent, str], **data: Any) -> None:
        """Schedule an event write without waiting for it."""
        name = event.value if isinstance(event, BusinessEvent) else str(event)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            try:
                self._write(name, data)
            except Exception as e:
                self.failed_count += 1
                logger.warning(f"Failed to write business event {name}: {e}")
            return

        task = loop.create_task(self._dispatch(name, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for all scheduled events to be written."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

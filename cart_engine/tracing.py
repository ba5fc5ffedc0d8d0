"""
Decision trace for commit and reconciliation passes.

Every point where the engine makes a pricing-relevant decision (a drink
classified as paid, a payer chosen, a delta applied to a stored price)
records a named event here. Events are also logged at DEBUG so a running
service shows the same information with LOG_LEVEL=DEBUG, while tests read
the recorded events directly instead of scraping log output.

Usage:
    trace = DecisionTrace()
    builder = OrderBuilder(catalog, trace=trace)
    builder.commit(selection, queue, pool)
    assert trace.events("payer.selected")[0].fields["line_item_id"] == ...
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TraceEvent(BaseModel):
    name: str
    fields: Dict[str, Any] = Field(default_factory=dict)


class DecisionTrace:
    """Append-only list of decision events."""

    def __init__(self) -> None:
        self._events: List[TraceEvent] = []

    def record(self, name: str, **fields: Any) -> TraceEvent:
        event = TraceEvent(name=name, fields=fields)
        self._events.append(event)
        logger.debug("%s %s", name, fields)
        return event

    def events(self, name: Optional[str] = None) -> List[TraceEvent]:
        if name is None:
            return list(self._events)
        return [e for e in self._events if e.name == name]

    def names(self) -> List[str]:
        return [e.name for e in self._events]

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from chat_checkout.models import AuditEvent

logger = logging.getLogger(__name__)


class EventLog:
    """
    Audit sink for business events (`cart_cleared`, `checkout_initiated`, ...).

    Keeps events in memory (for tests and diagnostics) and mirrors them to the logger.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.events: List[AuditEvent] = []

    def log(self, customer_id: str, event: str, details: Optional[Dict[str, Any]] = None) -> None:
        entry = AuditEvent(customer_id=customer_id, name=event, details=dict(details or {}), timestamp=self._clock())
        self.events.append(entry)
        logger.info(f"[customer={customer_id}] EVENT {event} {entry.details}")

    def for_customer(self, customer_id: str) -> List[AuditEvent]:
        return [e for e in self.events if e.customer_id == customer_id]

    def names(self, customer_id: Optional[str] = None) -> List[str]:
        events = self.events if customer_id is None else self.for_customer(customer_id)
        return [e.name for e in events]

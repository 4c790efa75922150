from __future__ import annotations

import logging
import math
import threading
import time
from datetime import date
from typing import Any, Callable, Dict, Optional

from chat_checkout import messages
from chat_checkout.config import Settings
from chat_checkout.models import Admission, CooldownStatus, MessageWindow, OrderCounter

logger = logging.getLogger(__name__)


class AbuseGuard:
    """
    Per-customer message rate limit, daily order limit and error cooldown.

    Counters are plain in-memory dicts keyed by customer id. Expired entries are
    dropped lazily when they are looked at; `cleanup()` only frees memory.
    """

    def __init__(
        self,
        message_limit: int = 20,
        window_seconds: int = 60,
        order_limit: int = 5,
        cooldown_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.message_limit = message_limit
        self.window_seconds = window_seconds
        self.order_limit = order_limit
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()

        self.message_counts: Dict[str, MessageWindow] = {}
        self.order_counts: Dict[str, OrderCounter] = {}
        self.cooldowns: Dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.time) -> "AbuseGuard":
        return cls(
            message_limit=settings.message_limit,
            window_seconds=settings.message_window_seconds,
            order_limit=settings.order_limit,
            cooldown_seconds=settings.error_cooldown_seconds,
            clock=clock,
        )

    def _today(self) -> str:
        return date.fromtimestamp(self._clock()).isoformat()

    def can_send_message(self, customer_id: str) -> Admission:
        now = self._clock()
        with self._lock:
            data = self.message_counts.get(customer_id)
            if data is None or now > data.reset_at:
                self.message_counts[customer_id] = MessageWindow(count=1, reset_at=now + self.window_seconds)
                return Admission(allowed=True, remaining=self.message_limit - 1)

            if data.count >= self.message_limit:
                wait_time = min(max(1, math.ceil(data.reset_at - now)), self.window_seconds)
                logger.info(f"[customer={customer_id}] rate limited for {wait_time}s")
                return Admission(
                    allowed=False,
                    reason="rate_limit",
                    message=messages.rate_limited(wait_time),
                    wait_time=wait_time,
                )

            data.count += 1
            return Admission(allowed=True, remaining=self.message_limit - data.count)

    def can_place_order(self, customer_id: str) -> Admission:
        today = self._today()
        with self._lock:
            data = self.order_counts.get(customer_id)
            if data is None or data.reset_date != today:
                self.order_counts[customer_id] = OrderCounter(count=1, reset_date=today)
                return Admission(allowed=True, remaining=self.order_limit - 1)

            if data.count >= self.order_limit:
                logger.info(f"[customer={customer_id}] daily order limit reached ({self.order_limit})")
                return Admission(
                    allowed=False,
                    reason="order_limit",
                    message=messages.order_limit_reached(self.order_limit),
                )

            data.count += 1
            return Admission(allowed=True, remaining=self.order_limit - data.count)

    def set_error_cooldown(self, customer_id: str, seconds: Optional[int] = None) -> None:
        duration = self.cooldown_seconds if seconds is None else seconds
        with self._lock:
            self.cooldowns[customer_id] = self._clock() + duration
        logger.info(f"[customer={customer_id}] error cooldown for {duration}s")

    def is_in_cooldown(self, customer_id: str) -> CooldownStatus:
        now = self._clock()
        with self._lock:
            until = self.cooldowns.get(customer_id)
            if until is None:
                return CooldownStatus(in_cooldown=False)
            if now >= until:
                del self.cooldowns[customer_id]
                return CooldownStatus(in_cooldown=False)
            wait_time = max(1, math.ceil(until - now))
            return CooldownStatus(in_cooldown=True, wait_time=wait_time, message=messages.cooldown_active(wait_time))

    def get_rate_limit_status(self, customer_id: str) -> Dict[str, float]:
        now = self._clock()
        with self._lock:
            data = self.message_counts.get(customer_id)
            if data is None or now > data.reset_at:
                return {"remaining": self.message_limit, "reset_in": self.window_seconds}
            return {"remaining": max(0, self.message_limit - data.count), "reset_in": data.reset_at - now}

    def cleanup(self) -> int:
        """Drop expired windows, past-day order counters and elapsed cooldowns. Returns how many were removed."""
        now = self._clock()
        today = self._today()
        removed = 0
        with self._lock:
            for key in [k for k, v in self.message_counts.items() if now > v.reset_at]:
                del self.message_counts[key]
                removed += 1
            for key in [k for k, v in self.order_counts.items() if v.reset_date != today]:
                del self.order_counts[key]
                removed += 1
            for key in [k for k, until in self.cooldowns.items() if now >= until]:
                del self.cooldowns[key]
                removed += 1
        if removed:
            logger.debug(f"guard cleanup removed {removed} entries")
        return removed

    def get_stats(self, customer_id: str) -> Dict[str, Any]:
        now = self._clock()
        today = self._today()
        with self._lock:
            window = self.message_counts.get(customer_id)
            orders = self.order_counts.get(customer_id)
            until = self.cooldowns.get(customer_id)
            return {
                "messages": window.count if window and now <= window.reset_at else 0,
                "message_limit": self.message_limit,
                "orders": orders.count if orders and orders.reset_date == today else 0,
                "order_limit": self.order_limit,
                "in_cooldown": until is not None and now < until,
            }

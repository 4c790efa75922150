from __future__ import annotations

import copy
import dataclasses
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple

from chat_checkout.locks import KeyedLocks
from chat_checkout.models import CartLine, Session, SessionStep
from chat_checkout.store import SessionStore

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Per-customer session state: step, cart, selected promo and pending order id.

    Every write is a read-modify-write under the customer's own lock, so two
    requests from one customer never lose each other's updates while requests
    from different customers never wait on each other. Reads take the lock but
    never save, and a customer is only stored once something changes.
    """

    def __init__(self, store: SessionStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock
        self._locks = KeyedLocks(threading.RLock)

    def _get_or_create(self, customer_id: str) -> Session:
        session = self.store.load_session(customer_id)
        if session is None:
            session = Session.new(customer_id, self._clock())
            logger.debug(f"[customer={customer_id}] new session")
        return session

    @contextmanager
    def transaction(self, customer_id: str) -> Iterator[Session]:
        """
        Yield the customer's session for mutation and save it when the block ends.

        The session is saved, and its `last_activity` touched, only if the block
        changed it. Nothing is saved if the block raises.
        """
        with self._locks.hold(customer_id):
            session = self._get_or_create(customer_id)
            before = copy.deepcopy(session)
            yield session
            if session != before:
                session.last_activity = self._clock()
                self.store.save_session(session)

    @contextmanager
    def _read(self, customer_id: str) -> Iterator[Session]:
        # lock only; a customer with no stored session reads the defaults
        with self._locks.hold(customer_id):
            yield self._get_or_create(customer_id)

    def get_session(self, customer_id: str) -> Session:
        with self._read(customer_id) as session:
            return copy.deepcopy(session)

    def get_step(self, customer_id: str) -> SessionStep:
        with self._read(customer_id) as session:
            return session.step

    def set_step(self, customer_id: str, step: SessionStep) -> None:
        step = SessionStep(step)
        with self.transaction(customer_id) as session:
            if session.step != step:
                logger.debug(f"[customer={customer_id}] step {session.step.value} -> {step.value}")
            session.step = step

    def get_cart(self, customer_id: str) -> List[CartLine]:
        with self._read(customer_id) as session:
            return copy.deepcopy(session.cart)

    def add_to_cart(self, customer_id: str, line: CartLine) -> int:
        with self.transaction(customer_id) as session:
            session.cart.append(dataclasses.replace(line))
            return len(session.cart)

    def clear_cart(self, customer_id: str, step: Optional[SessionStep] = None) -> None:
        """Empty the cart and drop the promo and pending order with it; optionally move to `step`."""
        with self.transaction(customer_id) as session:
            session.cart = []
            session.drop_promo()
            session.order_id = None
            if step is not None:
                session.step = SessionStep(step)

    def get_promo(self, customer_id: str) -> Tuple[Optional[str], int]:
        with self._read(customer_id) as session:
            return session.promo_code, session.discount_percent

    def set_promo(self, customer_id: str, code: str, discount_percent: int) -> None:
        with self.transaction(customer_id) as session:
            session.set_promo(code, discount_percent)

    def clear_promo(self, customer_id: str) -> None:
        with self.transaction(customer_id) as session:
            session.drop_promo()

    def get_order_id(self, customer_id: str) -> Optional[str]:
        with self._read(customer_id) as session:
            return session.order_id

    def set_order_id(self, customer_id: str, order_id: Optional[str]) -> None:
        with self.transaction(customer_id) as session:
            session.order_id = order_id

    def commit_order(self, customer_id: str, order_id: str) -> None:
        with self.transaction(customer_id) as session:
            session.order_id = order_id
            session.step = SessionStep.SELECT_PAYMENT

    def find_customer_by_order_id(self, order_id: str) -> Optional[str]:
        for session in self.store.iter_sessions():
            if session.order_id == order_id:
                return session.customer_id
        return None

    def expire_idle(self, ttl_seconds: int) -> int:
        """Delete sessions idle for longer than `ttl_seconds`. Returns how many were removed."""
        cutoff = self._clock() - ttl_seconds
        removed = 0
        for stale in self.store.iter_sessions():
            if stale.last_activity >= cutoff:
                continue
            with self._locks.hold(stale.customer_id):
                current = self.store.load_session(stale.customer_id)
                if current is not None and current.last_activity < cutoff:
                    self.store.delete_session(stale.customer_id)
                    removed += 1
        if removed:
            logger.info(f"expired {removed} idle session(s)")
        return removed

    def active_count(self) -> int:
        return sum(1 for _ in self.store.iter_sessions())

"""Pytest fixtures for the checkout core (in-memory store, controllable clock)."""

import pytest

from chat_checkout.checkout import CheckoutOrchestrator
from chat_checkout.events import EventLog
from chat_checkout.guard import AbuseGuard
from chat_checkout.promos import PromoLedger
from chat_checkout.services import InventoryService
from chat_checkout.sessions import SessionManager
from chat_checkout.store import InMemoryStore

DAY = 24 * 60 * 60
START = 1_760_000_000.0  # fixed "now" for every test


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryStore:
    store = InMemoryStore()

    store.add_product("netflix", "Netflix Premium", price=50000, on_hand=10)
    store.add_product("spotify", "Spotify Premium", price=30000, on_hand=5)
    store.add_product("disney", "Disney+", price=40000, on_hand=0)  # Out of stock

    store.add_promo("DISC20", 20, expiry_timestamp=clock() + 30 * DAY, max_uses=100)
    store.add_promo("LASTONE", 15, expiry_timestamp=clock() + 30 * DAY, max_uses=5, current_uses=4)
    store.add_promo("EXPIRED", 20, expiry_timestamp=clock() - DAY, max_uses=50, current_uses=10)
    store.add_promo("INACTIVE", 15, expiry_timestamp=clock() + DAY, max_uses=50, current_uses=5, is_active=False)
    store.usage["628123456789@c.us"] = ["DISC20", "SUMMER20"]

    return store


@pytest.fixture
def events(clock) -> EventLog:
    return EventLog(clock=clock)


@pytest.fixture
def ledger(store, clock) -> PromoLedger:
    return PromoLedger(store, clock=clock)


@pytest.fixture
def sessions(store, clock) -> SessionManager:
    return SessionManager(store, clock=clock)


@pytest.fixture
def inventory(store) -> InventoryService:
    return InventoryService(store)


@pytest.fixture
def orchestrator(sessions, ledger, inventory, events) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(sessions, ledger, inventory, events)


@pytest.fixture
def guard(clock) -> AbuseGuard:
    return AbuseGuard(clock=clock)

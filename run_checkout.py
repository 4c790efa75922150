from __future__ import annotations

import argparse
import logging

from chat_checkout.checkout import CheckoutOrchestrator
from chat_checkout.config import Settings
from chat_checkout.events import EventLog
from chat_checkout.gateway import MessageGateway
from chat_checkout.guard import AbuseGuard
from chat_checkout.promos import PromoLedger
from chat_checkout.services import InventoryService
from chat_checkout.sessions import SessionManager
from chat_checkout.store import InMemoryStore, JsonPromoStore


def seed(store: InMemoryStore) -> None:
    store.add_product("netflix", "Netflix Premium 1 Month", price=50000, on_hand=10)
    store.add_product("spotify", "Spotify Premium 1 Month", price=30000, on_hand=5)
    store.add_product("disney", "Disney+ Hotstar 1 Month", price=40000, on_hand=0)  # out of stock


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    p = argparse.ArgumentParser(description="Play one customer's chat through the checkout core and print the replies.")
    p.add_argument("--customer", type=str, default="628123456789@c.us")
    p.add_argument("--products", nargs="*", default=["netflix"], help="Product ids to put in the cart")
    p.add_argument("--promo", type=str, default=None, help="Promo code to use at checkout")
    p.add_argument("--create-promo", type=str, default="SAVE10:10:30:100", help="CODE:PERCENT:DAYS:MAX_USES, empty to skip")
    p.add_argument("--persist", action="store_true", help="Keep promos as JSON under SHOP_PROMO_DATA_DIR")
    args = p.parse_args()

    settings = Settings()
    store = InMemoryStore()
    seed(store)

    promo_store = JsonPromoStore(settings.promo_data_dir) if args.persist else store
    ledger = PromoLedger(promo_store, default_max_uses=settings.promo_default_max_uses)
    if args.create_promo:
        code, percent, days, max_uses = args.create_promo.split(":")
        print(ledger.create_promo(code, int(percent), int(days), int(max_uses)).message)

    events = EventLog()
    sessions = SessionManager(store)
    inventory = InventoryService(store)
    orchestrator = CheckoutOrchestrator(sessions, ledger, inventory, events)
    gateway = MessageGateway(AbuseGuard.from_settings(settings), sessions, inventory, orchestrator)

    script = ["menu", "browse", *args.products, "cart"]
    if args.promo:
        script.append(f"promo {args.promo}")
    script.append("checkout")

    for text in script:
        print(f"\n> {text}")
        print(gateway.handle(args.customer, text))

    print("\n=== RESULT ===")
    print("session:", sessions.get_session(args.customer))
    print("events:", events.names(args.customer))
    print("promos:", ledger.list_promos())
    print("expired idle sessions:", sessions.expire_idle(settings.session_ttl_seconds))


if __name__ == "__main__":
    main()

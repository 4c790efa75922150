from __future__ import annotations

import logging
import re

from chat_checkout import messages
from chat_checkout.checkout import CHECKOUT_COMMANDS, CheckoutOrchestrator
from chat_checkout.guard import AbuseGuard
from chat_checkout.models import SessionStep
from chat_checkout.services import InventoryService
from chat_checkout.sessions import SessionManager

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def sanitize_message(text: str | None) -> str:
    if not text:
        return ""
    cleaned = _CONTROL_CHARS.sub("", text).strip()
    return cleaned[:MAX_MESSAGE_LENGTH]


class MessageGateway:
    """
    Front door for inbound chat text: admits it through the abuse guard, then
    routes it by the customer's current step.
    """

    def __init__(
        self,
        guard: AbuseGuard,
        sessions: SessionManager,
        inventory: InventoryService,
        orchestrator: CheckoutOrchestrator,
    ):
        self.guard = guard
        self.sessions = sessions
        self.inventory = inventory
        self.orchestrator = orchestrator

    def handle(self, customer_id: str, text: str | None) -> str:
        admission = self.guard.can_send_message(customer_id)
        if not admission.allowed:
            self.orchestrator.emit(customer_id, "rate_limit_exceeded", {"limit": self.guard.message_limit})
            return admission.message

        cooldown = self.guard.is_in_cooldown(customer_id)
        if cooldown.in_cooldown:
            return cooldown.message

        cleaned = sanitize_message(text)
        if not cleaned:
            return messages.invalid_message()

        command = cleaned.lower()
        try:
            return self._route(customer_id, command)
        except Exception as e:
            logger.exception(f"[customer={customer_id}] failed to handle {command!r}: {e}")
            self.guard.set_error_cooldown(customer_id)
            return messages.internal_error()

    def _route(self, customer_id: str, command: str) -> str:
        if command in ("menu", "help"):
            self.sessions.set_step(customer_id, SessionStep.MENU)
            return messages.main_menu()
        if command == "cart":
            return self._show_cart(customer_id)

        step = self.sessions.get_step(customer_id)
        if step == SessionStep.MENU and command in ("1", "browse", "products"):
            self.sessions.set_step(customer_id, SessionStep.BROWSING)
            return messages.product_list(self.inventory.list_products())
        if step == SessionStep.BROWSING:
            return self._add_product(customer_id, command)
        if step == SessionStep.CHECKOUT:
            head = command.split()[0]
            if head in CHECKOUT_COMMANDS:
                quota = self.guard.can_place_order(customer_id)
                if not quota.allowed:
                    return quota.message
            return self.orchestrator.handle_checkout(customer_id, command).message
        return messages.main_menu()

    def _show_cart(self, customer_id: str) -> str:
        cart = self.sessions.get_cart(customer_id)
        if not cart:
            return messages.empty_cart()
        self.sessions.set_step(customer_id, SessionStep.CHECKOUT)
        return messages.cart_view(cart, sum(line.unit_price for line in cart))

    def _add_product(self, customer_id: str, product_id: str) -> str:
        line = self.inventory.cart_line(product_id)
        if line is None:
            return messages.product_not_found(product_id)
        size = self.sessions.add_to_cart(customer_id, line)
        return messages.added_to_cart(line, size)

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from chat_checkout import messages
from chat_checkout.events import EventLog
from chat_checkout.locks import KeyedLocks
from chat_checkout.models import CartLine, CheckoutResult, DiscountBreakdown, SessionStep
from chat_checkout.promos import PromoLedger, normalize_code
from chat_checkout.services import OrderIdGenerator
from chat_checkout.sessions import SessionManager

logger = logging.getLogger(__name__)

CHECKOUT_COMMANDS = frozenset({"checkout", "buy", "order"})


class StockService(Protocol):
    def is_in_stock(self, product_id: str) -> bool: ...


class CheckoutAborted(Exception):
    """An expected stop of the pipeline; carries the result to hand back to the customer."""

    def __init__(self, result: CheckoutResult):
        super().__init__(result.reason)
        self.result = result


@dataclass
class CheckoutContext:
    customer_id: str
    cart: List[CartLine]
    promo_code: Optional[str] = None
    discount_percent: int = 0
    redeemed_promo: Optional[str] = None
    subtotal: int = 0
    total: int = 0
    discount: Optional[DiscountBreakdown] = None
    order_id: Optional[str] = None


class Step(ABC):
    def __init__(self, orchestrator: "CheckoutOrchestrator", ctx: CheckoutContext):
        self.orchestrator = orchestrator
        self.ctx = ctx

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def execute(self) -> None: ...

    def compensate(self) -> None:
        pass

    def run(self) -> None:
        logger.info(f"[customer={self.ctx.customer_id}] STEP {self.name()}")
        self.execute()
        logger.info(f"[customer={self.ctx.customer_id}] STEP {self.name()} OK")

    def run_compensation(self) -> None:
        logger.info(f"[customer={self.ctx.customer_id}] COMPENSATE {self.name()}")
        self.compensate()
        logger.info(f"[customer={self.ctx.customer_id}] COMPENSATE {self.name()} OK")


class RedeemPromo(Step):
    """Spend the selected promo. A promo that no longer redeems is dropped, never fatal."""

    def name(self) -> str:
        return "RedeemPromo"

    def execute(self) -> None:
        ctx = self.ctx
        if not ctx.promo_code:
            return
        o = self.orchestrator
        result = o.ledger.apply_promo(ctx.promo_code, ctx.customer_id)
        if not result.success:
            logger.info(f"[customer={ctx.customer_id}] promo {ctx.promo_code} dropped at checkout: {result.reason}")
            o.sessions.clear_promo(ctx.customer_id)
            ctx.promo_code = None
            ctx.discount_percent = 0
            return

        ctx.redeemed_promo = ctx.promo_code
        ctx.discount_percent = result.discount_percent or 0
        o.emit(ctx.customer_id, "promo_code_applied", {
            "promo_code": ctx.promo_code,
            "discount_percent": ctx.discount_percent,
        })

    def compensate(self) -> None:
        if self.ctx.redeemed_promo:
            self.orchestrator.ledger.release_promo(self.ctx.redeemed_promo, self.ctx.customer_id)


class VerifyStock(Step):
    def name(self) -> str:
        return "VerifyStock"

    def execute(self) -> None:
        ctx = self.ctx
        o = self.orchestrator

        missing_ids: List[str] = []
        missing_names: List[str] = []
        seen = set()
        for line in ctx.cart:
            if line.product_id in seen:
                continue
            seen.add(line.product_id)
            if not o.stock.is_in_stock(line.product_id):
                missing_ids.append(line.product_id)
                missing_names.append(line.name)

        if missing_ids:
            o.emit(ctx.customer_id, "checkout_failed_out_of_stock", {"items": missing_ids})
            raise CheckoutAborted(CheckoutResult(
                success=False,
                reason="out_of_stock",
                message=messages.out_of_stock(missing_names),
            ))


class PriceOrder(Step):
    def name(self) -> str:
        return "PriceOrder"

    def execute(self) -> None:
        ctx = self.ctx
        ctx.subtotal = sum(line.unit_price for line in ctx.cart)
        ctx.total = ctx.subtotal
        if ctx.redeemed_promo and ctx.discount_percent:
            ctx.discount = self.orchestrator.ledger.calculate_discount(ctx.subtotal, ctx.discount_percent)
            ctx.total = ctx.discount.final_amount


class IssueOrder(Step):
    def name(self) -> str:
        return "IssueOrder"

    def execute(self) -> None:
        ctx = self.ctx
        o = self.orchestrator
        ctx.order_id = o.order_ids(ctx.customer_id)
        o.sessions.commit_order(ctx.customer_id, ctx.order_id)
        o.emit(ctx.customer_id, "checkout_initiated", {
            "order_id": ctx.order_id,
            "item_count": len(ctx.cart),
            "total": ctx.total,
        })


class CheckoutOrchestrator:
    """
    Entry point for checkout-step input: `checkout`/`buy`/`order`, `clear`, `promo <code>`.

    At most one command per customer runs at a time; an overlapping one is
    rejected with reason `checkout_in_progress`.
    """

    def __init__(
        self,
        sessions: SessionManager,
        ledger: PromoLedger,
        stock: StockService,
        events: EventLog,
        order_ids: Optional[Callable[[str], str]] = None,
    ):
        self.sessions = sessions
        self.ledger = ledger
        self.stock = stock
        self.events = events
        self.order_ids = order_ids or OrderIdGenerator()
        self._in_flight = KeyedLocks()

    def emit(self, customer_id: str, event: str, details: Optional[Dict[str, Any]] = None) -> None:
        try:
            self.events.log(customer_id, event, details)
        except Exception as e:
            logger.warning(f"[customer={customer_id}] event sink failed for {event}: {e}")

    def handle_checkout(self, customer_id: str, raw_command: str) -> CheckoutResult:
        tokens = (raw_command or "").strip().split()
        command = tokens[0].lower() if tokens else ""

        if command in CHECKOUT_COMMANDS:
            return self.process_checkout(customer_id)
        if command == "clear":
            return self.clear(customer_id)
        if command == "promo":
            return self.apply_promo(customer_id, " ".join(tokens[1:]))

        return CheckoutResult(success=False, reason="checkout_prompt", message=messages.checkout_prompt())

    def _busy(self, customer_id: str) -> CheckoutResult:
        logger.info(f"[customer={customer_id}] rejected: checkout already in progress")
        return CheckoutResult(success=False, reason="checkout_in_progress", message=messages.checkout_in_progress())

    def clear(self, customer_id: str) -> CheckoutResult:
        with self._in_flight.try_hold(customer_id) as acquired:
            if not acquired:
                return self._busy(customer_id)
            self.sessions.clear_cart(customer_id, step=SessionStep.MENU)
            self.emit(customer_id, "cart_cleared", {})
            return CheckoutResult(success=True, reason="cart_cleared", message=messages.cart_cleared())

    def apply_promo(self, customer_id: str, code: str) -> CheckoutResult:
        """Check the code and keep it on the session; the use is spent at checkout."""
        code = normalize_code(code)
        if not code:
            return CheckoutResult(success=False, reason="promo_missing_code", message=messages.promo_usage())

        with self._in_flight.try_hold(customer_id) as acquired:
            if not acquired:
                return self._busy(customer_id)

            check = self.ledger.validate_promo(code, customer_id)
            if not check.valid:
                return CheckoutResult(success=False, reason=check.reason, message=check.message)

            percent = check.discount_percent or 0
            with self.sessions.transaction(customer_id) as session:
                session.set_promo(code, percent)
                subtotal = sum(line.unit_price for line in session.cart)

            breakdown = self.ledger.calculate_discount(subtotal, percent)
            self.emit(customer_id, "promo_applied", {"promo_code": code, "discount_percent": percent})
            return CheckoutResult(
                success=True,
                reason="promo_applied",
                message=messages.promo_applied(code, breakdown),
                total=breakdown.final_amount,
                discount=breakdown,
            )

    def process_checkout(self, customer_id: str) -> CheckoutResult:
        with self._in_flight.try_hold(customer_id) as acquired:
            if not acquired:
                return self._busy(customer_id)
            return self._run_pipeline(customer_id)

    def _run_pipeline(self, customer_id: str) -> CheckoutResult:
        session = self.sessions.get_session(customer_id)
        if not session.cart:
            return CheckoutResult(success=False, reason="empty_cart", message=messages.empty_cart())

        ctx = CheckoutContext(
            customer_id=customer_id,
            cart=session.cart,
            promo_code=session.promo_code,
            discount_percent=session.discount_percent,
        )
        steps: List[Step] = [
            RedeemPromo(self, ctx),
            VerifyStock(self, ctx),
            PriceOrder(self, ctx),
            IssueOrder(self, ctx),
        ]

        completed: List[Step] = []
        try:
            for step in steps:
                step.run()
                completed.append(step)
        except CheckoutAborted as aborted:
            logger.info(f"[customer={customer_id}] CHECKOUT ABORTED: {aborted.result.reason}")
            self._compensate(ctx, completed)
            return aborted.result
        except Exception as e:
            logger.error(f"[customer={customer_id}] CHECKOUT FAILED: {e}")
            self._compensate(ctx, completed)
            raise

        logger.info(f"[customer={customer_id}] CHECKOUT OK order={ctx.order_id} total={ctx.total}")
        discount_amount = ctx.discount.discount_amount if ctx.discount else 0
        return CheckoutResult(
            success=True,
            reason="order_created",
            message=messages.order_summary(ctx.order_id, ctx.cart, ctx.total, ctx.redeemed_promo, discount_amount),
            order_id=ctx.order_id,
            total=ctx.total,
            discount=ctx.discount,
        )

    def _compensate(self, ctx: CheckoutContext, completed: List[Step]) -> None:
        for step in reversed(completed):
            try:
                step.run_compensation()
            except Exception as comp_exc:
                logger.error(f"[customer={ctx.customer_id}] COMPENSATION FAILED at {step.name()}: {comp_exc}")

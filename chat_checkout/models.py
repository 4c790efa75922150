from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SessionStep(str, Enum):
    MENU = "menu"
    BROWSING = "browsing"
    CHECKOUT = "checkout"
    SELECT_PAYMENT = "select_payment"
    SELECT_BANK = "select_bank"
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_ADMIN_APPROVAL = "awaiting_admin_approval"
    UPLOAD_PROOF = "upload_proof"


@dataclass(slots=True)
class Product:
    product_id: str
    name: str
    price: int
    on_hand: int


@dataclass(slots=True)
class CartLine:
    product_id: str
    name: str
    unit_price: int  # minor units


@dataclass(slots=True)
class Session:
    """
    Conversational state of one customer.

    `promo_code` and `discount_percent` always move together: use `set_promo` /
    `drop_promo`, never assign them one by one.
    """

    customer_id: str
    step: SessionStep = SessionStep.MENU
    cart: List[CartLine] = field(default_factory=list)
    promo_code: Optional[str] = None
    discount_percent: int = 0
    order_id: Optional[str] = None
    last_activity: float = 0.0

    @classmethod
    def new(cls, customer_id: str, now: float) -> "Session":
        return cls(customer_id=customer_id, last_activity=now)

    def set_promo(self, code: str, discount_percent: int) -> None:
        if not code:
            raise ValueError("promo code must not be empty")
        if not 1 <= discount_percent <= 100:
            raise ValueError(f"discount_percent must be in 1..100, got {discount_percent}")
        self.promo_code = code
        self.discount_percent = discount_percent

    def drop_promo(self) -> None:
        self.promo_code = None
        self.discount_percent = 0


@dataclass(slots=True)
class PromoCode:
    code: str
    discount_percent: int
    expiry_timestamp: float
    max_uses: int
    current_uses: int = 0
    created_at: float = 0.0
    is_active: bool = True


@dataclass(slots=True)
class MessageWindow:
    count: int
    reset_at: float


@dataclass(slots=True)
class OrderCounter:
    count: int
    reset_date: str  # ISO calendar day


@dataclass(slots=True)
class AuditEvent:
    customer_id: str
    name: str
    details: Dict[str, Any]
    timestamp: float


# Structured results. `reason` is machine-checkable, `message` is ready to display.


@dataclass(slots=True)
class Admission:
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    remaining: int = 0
    wait_time: int = 0  # seconds


@dataclass(slots=True)
class CooldownStatus:
    in_cooldown: bool
    wait_time: int = 0
    message: Optional[str] = None


@dataclass(slots=True)
class PromoCheck:
    valid: bool
    message: str
    reason: str
    discount_percent: Optional[int] = None


@dataclass(slots=True)
class PromoResult:
    success: bool
    message: str
    reason: str
    discount_percent: Optional[int] = None
    promo: Optional[PromoCode] = None


@dataclass(slots=True)
class DiscountBreakdown:
    original_amount: int
    discount_percent: int
    discount_amount: int
    final_amount: int


@dataclass(slots=True)
class CheckoutResult:
    success: bool
    reason: str
    message: str
    order_id: Optional[str] = None
    total: Optional[int] = None
    discount: Optional[DiscountBreakdown] = None

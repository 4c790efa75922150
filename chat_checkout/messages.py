"""Customer-facing texts. Every rejected action carries one of these next to its reason code."""

from __future__ import annotations

from typing import Iterable, List, Optional

from chat_checkout.models import CartLine, DiscountBreakdown


def format_price(amount: int) -> str:
    return "Rp " + f"{amount:,}".replace(",", ".")


def main_menu() -> str:
    return "*Main menu*\n\nReply *browse* to see products, *cart* to view your cart."


def product_list(products: Iterable) -> str:
    lines = [f"- *{p.product_id}*: {p.name} ({format_price(p.price)})" for p in products]
    return "*Products*\n\n" + "\n".join(lines) + "\n\nReply with a product id to add it to your cart."


def product_not_found(product_id: str) -> str:
    return f"Product *{product_id}* not found. Reply with a product id from the list."


def added_to_cart(line: CartLine, cart_size: int) -> str:
    return f"Added *{line.name}* to your cart ({cart_size} item(s)).\nReply *cart* to check out."


def cart_view(cart: List[CartLine], total: int) -> str:
    if not cart:
        return empty_cart()
    items = "\n".join(f"{i}. {line.name} - {format_price(line.unit_price)}" for i, line in enumerate(cart, 1))
    return f"*Your cart*\n\n{items}\n\nTotal: {format_price(total)}\n\n" + checkout_prompt()


def empty_cart() -> str:
    return "Your cart is empty. Reply *browse* to see products."


def cart_cleared() -> str:
    return "Your cart is now empty. Back to the main menu."


def checkout_prompt() -> str:
    return "Reply *checkout* to place the order, *promo <code>* to use a promo code, or *clear* to empty the cart."


def promo_usage() -> str:
    return "Send the code as *promo <code>*, for example *promo SAVE10*."


def promo_applied(code: str, breakdown: DiscountBreakdown) -> str:
    return (
        f"*Promo code applied: {code}*\n\n"
        f"Discount: {breakdown.discount_percent}%\n"
        f"Subtotal: {format_price(breakdown.original_amount)}\n"
        f"You save: {format_price(breakdown.discount_amount)}\n"
        f"Total: {format_price(breakdown.final_amount)}\n\n"
        "The discount is redeemed when you *checkout*."
    )


def out_of_stock(names: List[str]) -> str:
    return (
        "*Out of stock*\n\nSorry, these products are not available right now:\n"
        + ", ".join(names)
        + "\n\nReply *clear* to empty the cart and pick something else."
    )


def checkout_in_progress() -> str:
    return "Your previous request is still being processed. Please wait a moment."


def order_summary(
    order_id: str,
    cart: List[CartLine],
    total: int,
    promo_code: Optional[str] = None,
    discount_amount: int = 0,
) -> str:
    items = "\n".join(f"{i}. {line.name} - {format_price(line.unit_price)}" for i, line in enumerate(cart, 1))
    text = f"*Order summary*\n\nOrder ID: {order_id}\n\n{items}\n\n"
    if promo_code:
        text += f"Promo {promo_code}: -{format_price(discount_amount)}\n"
    text += f"Total: {format_price(total)}\n\nPlease choose a payment method."
    return text


# Promo ledger


def promo_not_found() -> str:
    return "Promo code not found."


def promo_inactive() -> str:
    return "This promo code is no longer active."


def promo_expired() -> str:
    return "This promo code has expired."


def promo_exhausted() -> str:
    return "This promo code has reached its maximum number of uses."


def promo_already_used() -> str:
    return "You have already used this promo code."


def promo_valid(percent: int) -> str:
    return f"Promo code is valid: {percent}% off."


def promo_redeemed(code: str, percent: int) -> str:
    return f"Promo code {code} redeemed: {percent}% off."


def promo_created(code: str) -> str:
    return f"Promo code {code} created."


def promo_exists(code: str) -> str:
    return f"Promo code {code} already exists."


def promo_code_too_short() -> str:
    return "Promo code must be at least 3 characters long."


def promo_bad_percent() -> str:
    return "Discount must be between 1 and 100%."


def promo_bad_expiry() -> str:
    return "Expiry must be at least 1 day."


def promo_bad_max_uses() -> str:
    return "Maximum uses must be at least 1."


def promo_deactivated(code: str) -> str:
    return f"Promo code {code} deactivated."


def promo_deleted(code: str) -> str:
    return f"Promo code {code} deleted."


# Abuse guard


def rate_limited(wait_time: int) -> str:
    return f"*Too many messages.* Please wait {wait_time} seconds before trying again."


def order_limit_reached(limit: int) -> str:
    return f"*Daily order limit reached.* You can place at most {limit} orders per day. Please try again tomorrow."


def cooldown_active(wait_time: int) -> str:
    return f"*Cooldown active.* Please wait {wait_time} seconds before trying again."


def invalid_message() -> str:
    return "Invalid message. Please try again."


def internal_error() -> str:
    return "Sorry, something went wrong. Please try again later or reply *menu* to go back."

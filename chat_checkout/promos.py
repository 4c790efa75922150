from __future__ import annotations

import dataclasses
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from chat_checkout import messages
from chat_checkout.locks import KeyedLocks
from chat_checkout.models import DiscountBreakdown, PromoCheck, PromoCode, PromoResult
from chat_checkout.store import PromoStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class PromoLedger:
    """
    Promo codes and who redeemed them.

    `validate_promo` is a pure read. `apply_promo` is the only call that spends a use:
    it re-checks and increments under the code's lock, so two customers racing for
    the last use cannot both win. Both collections are written back to the store
    after every change.
    """

    def __init__(self, store: PromoStore, clock: Callable[[], float] = time.time, default_max_uses: int = 100):
        self.store = store
        self.default_max_uses = default_max_uses
        self._clock = clock
        self._lock = threading.RLock()
        self._code_locks = KeyedLocks()

        self._promos: Dict[str, PromoCode] = store.load_promos()
        self._usage: Dict[str, List[str]] = store.load_usage()

    def _persist(self) -> None:
        self.store.save_promos(self._promos)
        self.store.save_usage(self._usage)

    def _persist_or_undo(self, undo: Callable[[], None]) -> None:
        """
        Persist both collections; if that fails, run `undo` and persist again.

        The promo table is written before the usage map, so a failed write can
        leave the store half updated. Writing the restored state back keeps the
        store in step with memory. The original error is always re-raised.
        """
        try:
            self._persist()
        except Exception:
            undo()
            try:
                self._persist()
            except Exception as restore_error:
                logger.error(f"could not restore promo state after failed write: {restore_error}")
            raise

    def create_promo(
        self,
        code: str,
        discount_percent: int,
        expiry_days: int,
        max_uses: Optional[int] = None,
    ) -> PromoResult:
        code = normalize_code(code)
        max_uses = self.default_max_uses if max_uses is None else max_uses

        if len(code) < 3:
            return PromoResult(success=False, reason="promo_invalid", message=messages.promo_code_too_short())
        if not 1 <= discount_percent <= 100:
            return PromoResult(success=False, reason="promo_invalid", message=messages.promo_bad_percent())
        if expiry_days < 1:
            return PromoResult(success=False, reason="promo_invalid", message=messages.promo_bad_expiry())
        if max_uses < 1:
            return PromoResult(success=False, reason="promo_invalid", message=messages.promo_bad_max_uses())

        now = self._clock()
        with self._code_locks.hold(code), self._lock:
            if code in self._promos:
                return PromoResult(success=False, reason="promo_exists", message=messages.promo_exists(code))

            promo = PromoCode(
                code=code,
                discount_percent=discount_percent,
                expiry_timestamp=now + expiry_days * SECONDS_PER_DAY,
                max_uses=max_uses,
                current_uses=0,
                created_at=now,
                is_active=True,
            )
            self._promos[code] = promo
            try:
                self.store.save_promos(self._promos)
            except Exception:
                del self._promos[code]
                raise

        logger.info(f"promo created: {code} ({discount_percent}%, {expiry_days}d, max_uses={max_uses})")
        return PromoResult(
            success=True,
            reason="promo_created",
            message=messages.promo_created(code),
            discount_percent=discount_percent,
            promo=dataclasses.replace(promo),
        )

    def _check(self, code: str, customer_id: str) -> PromoCheck:
        with self._lock:
            promo = self._promos.get(code)
            if promo is None:
                return PromoCheck(valid=False, reason="promo_not_found", message=messages.promo_not_found())
            if not promo.is_active:
                return PromoCheck(valid=False, reason="promo_inactive", message=messages.promo_inactive())
            if self._clock() > promo.expiry_timestamp:
                return PromoCheck(valid=False, reason="promo_expired", message=messages.promo_expired())
            if promo.current_uses >= promo.max_uses:
                return PromoCheck(valid=False, reason="promo_exhausted", message=messages.promo_exhausted())
            if code in self._usage.get(customer_id, []):
                return PromoCheck(valid=False, reason="promo_already_used", message=messages.promo_already_used())
            return PromoCheck(
                valid=True,
                reason="promo_valid",
                message=messages.promo_valid(promo.discount_percent),
                discount_percent=promo.discount_percent,
            )

    def validate_promo(self, code: str, customer_id: str) -> PromoCheck:
        return self._check(normalize_code(code), customer_id)

    def apply_promo(self, code: str, customer_id: str) -> PromoResult:
        code = normalize_code(code)
        with self._code_locks.hold(code):
            check = self._check(code, customer_id)
            if not check.valid:
                return PromoResult(success=False, reason=check.reason, message=check.message)

            with self._lock:
                promo = self._promos[code]
                promo.current_uses += 1
                self._usage.setdefault(customer_id, []).append(code)

                def undo() -> None:
                    promo.current_uses -= 1
                    self._usage[customer_id].remove(code)
                    if not self._usage[customer_id]:
                        del self._usage[customer_id]

                self._persist_or_undo(undo)

        logger.info(f"[customer={customer_id}] promo redeemed: {code} (uses={promo.current_uses}/{promo.max_uses})")
        return PromoResult(
            success=True,
            reason="promo_applied",
            message=messages.promo_redeemed(code, promo.discount_percent),
            discount_percent=promo.discount_percent,
        )

    def release_promo(self, code: str, customer_id: str) -> bool:
        """Undo one redemption by this customer. Returns False if there was nothing to undo."""
        code = normalize_code(code)
        with self._code_locks.hold(code), self._lock:
            used = self._usage.get(customer_id, [])
            if code not in used:
                return False
            position = used.index(code)
            used.pop(position)
            if not used:
                del self._usage[customer_id]
            promo = self._promos.get(code)
            decremented = promo is not None and promo.current_uses > 0
            if decremented:
                promo.current_uses -= 1

            def undo() -> None:
                self._usage.setdefault(customer_id, used).insert(position, code)
                if decremented:
                    promo.current_uses += 1

            self._persist_or_undo(undo)

        logger.info(f"[customer={customer_id}] promo released: {code}")
        return True

    @staticmethod
    def calculate_discount(amount: int, discount_percent: int) -> DiscountBreakdown:
        discount_amount = amount * discount_percent // 100
        return DiscountBreakdown(
            original_amount=amount,
            discount_percent=discount_percent,
            discount_amount=discount_amount,
            final_amount=amount - discount_amount,
        )

    def deactivate_promo(self, code: str) -> PromoResult:
        code = normalize_code(code)
        with self._code_locks.hold(code), self._lock:
            promo = self._promos.get(code)
            if promo is None:
                return PromoResult(success=False, reason="promo_not_found", message=messages.promo_not_found())
            was_active = promo.is_active
            promo.is_active = False
            try:
                self.store.save_promos(self._promos)
            except Exception:
                promo.is_active = was_active
                raise

        logger.info(f"promo deactivated: {code}")
        return PromoResult(success=True, reason="promo_deactivated", message=messages.promo_deactivated(code))

    def delete_promo(self, code: str) -> PromoResult:
        """Remove the code. Usage entries stay, so re-creating the code cannot be reused by past customers."""
        code = normalize_code(code)
        with self._code_locks.hold(code), self._lock:
            promo = self._promos.pop(code, None)
            if promo is None:
                return PromoResult(success=False, reason="promo_not_found", message=messages.promo_not_found())
            try:
                self.store.save_promos(self._promos)
            except Exception:
                self._promos[code] = promo
                raise

        logger.info(f"promo deleted: {code}")
        return PromoResult(success=True, reason="promo_deleted", message=messages.promo_deleted(code))

    def get_customer_usage(self, customer_id: str) -> List[str]:
        with self._lock:
            return list(self._usage.get(customer_id, []))

    def get_promo(self, code: str) -> Optional[PromoCode]:
        with self._lock:
            promo = self._promos.get(normalize_code(code))
            return dataclasses.replace(promo) if promo is not None else None

    def list_promos(self) -> List[PromoCode]:
        with self._lock:
            return [dataclasses.replace(p) for p in self._promos.values()]

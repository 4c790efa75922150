from __future__ import annotations

import copy
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from pydantic import TypeAdapter

from chat_checkout.models import PromoCode, Product, Session

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Persistence contract for customer sessions. Returned objects are detached copies."""

    @abstractmethod
    def load_session(self, customer_id: str) -> Optional[Session]: ...

    @abstractmethod
    def save_session(self, session: Session) -> None: ...

    @abstractmethod
    def delete_session(self, customer_id: str) -> None: ...

    @abstractmethod
    def iter_sessions(self) -> Iterator[Session]: ...


class PromoStore(ABC):
    """Persistence contract for the promo collection and the per-customer usage ledger."""

    @abstractmethod
    def load_promos(self) -> Dict[str, PromoCode]: ...

    @abstractmethod
    def save_promos(self, promos: Dict[str, PromoCode]) -> None: ...

    @abstractmethod
    def load_usage(self) -> Dict[str, List[str]]: ...

    @abstractmethod
    def save_usage(self, usage: Dict[str, List[str]]) -> None: ...


class InMemoryStore(SessionStore, PromoStore):
    """
    In-memory storage for sessions, promos, usage and the product catalog.

    Everything goes in and out as a deep copy, so a caller that mutates a loaded
    object without saving it changes nothing, as with a real backend.
    """

    def __init__(self) -> None:
        self.sessions: Dict[str, Session] = {}
        self.promos: Dict[str, PromoCode] = {}
        self.usage: Dict[str, List[str]] = {}
        self.products: Dict[str, Product] = {}

    def load_session(self, customer_id: str) -> Optional[Session]:
        session = self.sessions.get(customer_id)
        return copy.deepcopy(session) if session is not None else None

    def save_session(self, session: Session) -> None:
        self.sessions[session.customer_id] = copy.deepcopy(session)

    def delete_session(self, customer_id: str) -> None:
        self.sessions.pop(customer_id, None)

    def iter_sessions(self) -> Iterator[Session]:
        for session in list(self.sessions.values()):
            yield copy.deepcopy(session)

    def load_promos(self) -> Dict[str, PromoCode]:
        return copy.deepcopy(self.promos)

    def save_promos(self, promos: Dict[str, PromoCode]) -> None:
        self.promos = copy.deepcopy(promos)

    def load_usage(self) -> Dict[str, List[str]]:
        return copy.deepcopy(self.usage)

    def save_usage(self, usage: Dict[str, List[str]]) -> None:
        self.usage = copy.deepcopy(usage)

    # Seed helpers (handy for tests and the demo)
    def add_product(self, product_id: str, name: str, price: int, on_hand: int) -> None:
        self.products[product_id] = Product(product_id=product_id, name=name, price=price, on_hand=on_hand)

    def add_promo(
        self,
        code: str,
        discount_percent: int,
        expiry_timestamp: float,
        max_uses: int,
        current_uses: int = 0,
        is_active: bool = True,
    ) -> None:
        code = code.upper()
        self.promos[code] = PromoCode(
            code=code,
            discount_percent=discount_percent,
            expiry_timestamp=expiry_timestamp,
            max_uses=max_uses,
            current_uses=current_uses,
            is_active=is_active,
        )


_PROMOS_ADAPTER = TypeAdapter(List[PromoCode])
_USAGE_ADAPTER = TypeAdapter(Dict[str, List[str]])


class JsonPromoStore(PromoStore):
    """Promo collection in `promos.json`, usage ledger in `promo_usage.json`."""

    def __init__(self, data_dir: str | os.PathLike) -> None:
        self.data_dir = Path(data_dir)
        self.promos_path = self.data_dir / "promos.json"
        self.usage_path = self.data_dir / "promo_usage.json"

    def load_promos(self) -> Dict[str, PromoCode]:
        if not self.promos_path.exists():
            return {}
        promos = _PROMOS_ADAPTER.validate_json(self.promos_path.read_bytes())
        return {p.code: p for p in promos}

    def save_promos(self, promos: Dict[str, PromoCode]) -> None:
        self._write(self.promos_path, _PROMOS_ADAPTER.dump_json(list(promos.values()), indent=2))

    def load_usage(self) -> Dict[str, List[str]]:
        if not self.usage_path.exists():
            return {}
        return _USAGE_ADAPTER.validate_json(self.usage_path.read_bytes())

    def save_usage(self, usage: Dict[str, List[str]]) -> None:
        self._write(self.usage_path, _USAGE_ADAPTER.dump_json(usage, indent=2))

    def _write(self, path: Path, payload: bytes) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        # atomic replace
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(payload)
        os.replace(tmp, path)
        logger.debug(f"saved {path}")

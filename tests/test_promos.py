"""Tests for the promo ledger."""
import threading

import pytest
from conftest import DAY

from chat_checkout.promos import PromoLedger
from chat_checkout.store import InMemoryStore

USED_CUSTOMER = "628123456789@c.us"  # already redeemed DISC20
NEW_CUSTOMER = "628999999999@c.us"


def test_create_promo_persists(ledger, store, clock):
    result = ledger.create_promo("newyear25", 25, 30, 200)

    assert result.success is True
    assert result.promo.code == "NEWYEAR25"
    assert result.promo.discount_percent == 25
    assert result.promo.max_uses == 200
    assert result.promo.current_uses == 0
    assert result.promo.is_active is True
    assert result.promo.expiry_timestamp == clock() + 30 * DAY
    assert "NEWYEAR25" in store.promos


def test_create_promo_defaults_max_uses(ledger):
    assert ledger.create_promo("WELCOME", 10, 7).promo.max_uses == 100


@pytest.mark.parametrize(
    "code, percent, days, max_uses, text",
    [
        ("AB", 10, 30, 10, "at least 3 characters"),
        ("INVALID", 150, 30, 10, "between 1 and 100"),
        ("INVALID", 0, 30, 10, "between 1 and 100"),
        ("INVALID", 10, 0, 10, "at least 1 day"),
        ("INVALID", 10, 30, 0, "at least 1"),
    ],
)
def test_create_promo_rejects_bad_input(ledger, store, code, percent, days, max_uses, text):
    result = ledger.create_promo(code, percent, days, max_uses)

    assert result.success is False
    assert result.reason == "promo_invalid"
    assert text in result.message
    assert code.upper() not in store.promos


def test_create_duplicate_is_case_insensitive(ledger):
    result = ledger.create_promo("disc20", 15, 30, 50)

    assert result.success is False
    assert result.reason == "promo_exists"
    assert "already exists" in result.message


@pytest.mark.parametrize(
    "code, customer, reason",
    [
        ("NOPE", NEW_CUSTOMER, "promo_not_found"),
        ("EXPIRED", NEW_CUSTOMER, "promo_expired"),
        ("INACTIVE", NEW_CUSTOMER, "promo_inactive"),
        ("DISC20", USED_CUSTOMER, "promo_already_used"),
    ],
)
def test_validate_rejections(ledger, code, customer, reason):
    result = ledger.validate_promo(code, customer)

    assert result.valid is False
    assert result.reason == reason
    assert result.message


def test_validate_exhausted(store, clock):
    store.promos["DISC20"].current_uses = 100
    ledger = PromoLedger(store, clock=clock)

    result = ledger.validate_promo("DISC20", NEW_CUSTOMER)

    assert result.valid is False
    assert result.reason == "promo_exhausted"


def test_validate_does_not_spend_a_use(ledger, store):
    result = ledger.validate_promo(" disc20 ", NEW_CUSTOMER)

    assert result.valid is True
    assert result.discount_percent == 20
    assert ledger.get_promo("DISC20").current_uses == 0
    assert ledger.get_customer_usage(NEW_CUSTOMER) == []


def test_promo_round_trip(ledger, store):
    """Create, preview, redeem once; the second redemption by the same customer fails."""
    assert ledger.create_promo("SAVE10", 10, 30, 100).success is True

    check = ledger.validate_promo("SAVE10", NEW_CUSTOMER)
    assert check.valid is True
    assert check.discount_percent == 10

    first = ledger.apply_promo("SAVE10", NEW_CUSTOMER)
    assert first.success is True
    assert first.discount_percent == 10

    second = ledger.apply_promo("SAVE10", NEW_CUSTOMER)
    assert second.success is False
    assert second.reason == "promo_already_used"
    assert "already used" in second.message

    assert ledger.get_promo("SAVE10").current_uses == 1
    assert store.promos["SAVE10"].current_uses == 1
    assert store.usage[NEW_CUSTOMER] == ["SAVE10"]


def test_apply_rejects_expired_after_time_passes(ledger, clock):
    ledger.create_promo("SHORT", 10, 1, 10)
    clock.advance(DAY + 1)

    result = ledger.apply_promo("SHORT", NEW_CUSTOMER)

    assert result.success is False
    assert result.reason == "promo_expired"
    assert ledger.get_promo("SHORT").current_uses == 0


class FlakyUsageStore(InMemoryStore):
    """Writes the promo table normally; the usage map write fails while `broken` is set."""

    def __init__(self):
        super().__init__()
        self.broken = False

    def save_usage(self, usage):
        if self.broken:
            raise OSError("disk full")
        super().save_usage(usage)


@pytest.fixture
def flaky(store):
    flaky = FlakyUsageStore()
    flaky.promos = store.promos
    flaky.usage = store.usage
    return flaky


def test_apply_rolls_back_when_persistence_fails(flaky, clock):
    ledger = PromoLedger(flaky, clock=clock)
    flaky.broken = True

    with pytest.raises(OSError):
        ledger.apply_promo("DISC20", NEW_CUSTOMER)

    # Assertions
    assert ledger.get_promo("DISC20").current_uses == 0
    assert ledger.get_customer_usage(NEW_CUSTOMER) == []
    # the promo table was written before the usage map failed; it is restored too
    assert flaky.promos["DISC20"].current_uses == 0
    assert NEW_CUSTOMER not in flaky.usage


def test_release_rolls_back_when_persistence_fails(flaky, clock):
    ledger = PromoLedger(flaky, clock=clock)
    assert ledger.apply_promo("DISC20", NEW_CUSTOMER).success is True
    flaky.broken = True

    with pytest.raises(OSError):
        ledger.release_promo("DISC20", NEW_CUSTOMER)

    # Assertions
    assert ledger.get_promo("DISC20").current_uses == 1
    assert ledger.get_customer_usage(NEW_CUSTOMER) == ["DISC20"]
    assert flaky.promos["DISC20"].current_uses == 1
    assert flaky.usage[NEW_CUSTOMER] == ["DISC20"]

    flaky.broken = False
    assert ledger.release_promo("DISC20", NEW_CUSTOMER) is True
    assert flaky.promos["DISC20"].current_uses == 0
    assert NEW_CUSTOMER not in flaky.usage


def test_release_keeps_position_of_other_codes_on_failure(flaky, clock):
    ledger = PromoLedger(flaky, clock=clock)
    flaky.broken = True

    with pytest.raises(OSError):
        ledger.release_promo("DISC20", USED_CUSTOMER)

    assert ledger.get_customer_usage(USED_CUSTOMER) == ["DISC20", "SUMMER20"]
    assert flaky.usage[USED_CUSTOMER] == ["DISC20", "SUMMER20"]

def test_release_undoes_a_redemption(ledger):
    ledger.apply_promo("DISC20", NEW_CUSTOMER)

    assert ledger.release_promo("DISC20", NEW_CUSTOMER) is True
    assert ledger.get_promo("DISC20").current_uses == 0
    assert ledger.get_customer_usage(NEW_CUSTOMER) == []
    assert ledger.release_promo("DISC20", NEW_CUSTOMER) is False


def test_calculate_discount():
    breakdown = PromoLedger.calculate_discount(50000, 20)

    assert breakdown.original_amount == 50000
    assert breakdown.discount_percent == 20
    assert breakdown.discount_amount == 10000
    assert breakdown.final_amount == 40000


def test_calculate_discount_truncates():
    breakdown = PromoLedger.calculate_discount(999, 15)

    assert breakdown.discount_amount == 149
    assert breakdown.final_amount == 850


def test_deactivate_keeps_history(ledger, store):
    result = ledger.deactivate_promo("disc20")

    assert result.success is True
    assert store.promos["DISC20"].is_active is False
    assert ledger.validate_promo("DISC20", NEW_CUSTOMER).reason == "promo_inactive"
    assert ledger.get_customer_usage(USED_CUSTOMER) == ["DISC20", "SUMMER20"]
    assert ledger.deactivate_promo("NOPE").reason == "promo_not_found"


def test_delete_keeps_usage_and_blocks_recreated_code(ledger, store):
    result = ledger.delete_promo("DISC20")

    assert result.success is True
    assert "DISC20" not in store.promos
    assert ledger.delete_promo("DISC20").reason == "promo_not_found"

    assert ledger.create_promo("DISC20", 50, 30, 10).success is True
    assert ledger.validate_promo("DISC20", USED_CUSTOMER).reason == "promo_already_used"


def test_customer_usage(ledger):
    assert ledger.get_customer_usage(USED_CUSTOMER) == ["DISC20", "SUMMER20"]
    assert ledger.get_customer_usage(NEW_CUSTOMER) == []


def test_last_use_race_has_one_winner(ledger):
    """Two customers racing for the last remaining use: exactly one redeems it."""
    barrier = threading.Barrier(2)
    results = {}

    def redeem(customer_id):
        barrier.wait()
        results[customer_id] = ledger.apply_promo("LASTONE", customer_id)

    threads = [threading.Thread(target=redeem, args=(c,)) for c in ("628000000001@c.us", "628000000002@c.us")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [r for r in results.values() if r.success]
    losers = [r for r in results.values() if not r.success]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].reason == "promo_exhausted"

    promo = ledger.get_promo("LASTONE")
    assert promo.current_uses == promo.max_uses == 5
    # no lock is left behind for the code once the race is over
    assert len(ledger._code_locks) == 0

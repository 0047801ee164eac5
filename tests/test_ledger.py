"""Tests for the balance ledger: reservation protocol, settlement and conservation."""

import pytest

from tradeledger.core.errors import InsufficientFunds, InvariantViolation, NotFoundError, ValidationError
from tradeledger.core.ledger.ledger import BalanceLedger
from tradeledger.core.models.enums import Bucket, Currency


@pytest.fixture
def ledger(db, clock) -> BalanceLedger:
    return BalanceLedger(db=db, clock=clock)


def _held(ledger, *users):
    return tuple(sum(ledger.get(u).held(c) for u in users) for c in (Currency.A, Currency.B))


class TestAccounts:
    def test_open_account_is_idempotent(self, ledger):
        assert ledger.open_account(1) is True
        assert ledger.open_account(1) is False
        assert ledger.get(1).to_dict() == {
            "user_id": 1, "available_a": 0, "reserved_a": 0, "available_b": 0, "reserved_b": 0,
        }

    def test_unknown_user(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get(42)
        with pytest.raises(NotFoundError):
            ledger.deposit(42, Currency.B, 10)
        with pytest.raises(NotFoundError):
            ledger.withdraw(42, Currency.B, 10)

    def test_totals(self, ledger):
        for uid, amount in ((1, 100), (2, 250)):
            ledger.open_account(uid)
            ledger.deposit(uid, Currency.B, amount)
        ledger.reserve(2, Currency.B, 50)

        t = ledger.totals()
        assert t["users"] == 2
        assert t["available_b"] == 300
        assert t["reserved_b"] == 50
        assert t["available_a"] == 0


class TestReservation:
    """available <-> reserved moves."""

    def test_reserve_and_release(self, ledger):
        ledger.open_account(1)
        ledger.deposit(1, Currency.A, 1_000)

        ledger.reserve(1, Currency.A, 400)
        b = ledger.get(1)
        assert (b.available_a, b.reserved_a) == (600, 400)

        ledger.release(1, Currency.A, 400)
        b = ledger.get(1)
        assert (b.available_a, b.reserved_a) == (1_000, 0)

    def test_reserve_more_than_available(self, ledger):
        ledger.open_account(1)
        ledger.deposit(1, Currency.B, 100)

        with pytest.raises(InsufficientFunds) as exc:
            ledger.reserve(1, Currency.B, 101)
        assert exc.value.currency == "B"
        assert exc.value.required == 101
        assert ledger.get(1).available_b == 100

    def test_release_more_than_reserved(self, ledger):
        ledger.open_account(1)
        ledger.deposit(1, Currency.B, 100)
        ledger.reserve(1, Currency.B, 10)
        with pytest.raises(InsufficientFunds):
            ledger.release(1, Currency.B, 11)
        assert ledger.get(1).reserved_b == 10

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amounts(self, ledger, amount):
        ledger.open_account(1)
        with pytest.raises(ValidationError):
            ledger.reserve(1, Currency.A, amount)


class TestSettle:
    def test_settle_from_available(self, ledger):
        ledger.open_account(1)
        ledger.deposit(1, Currency.B, 110_000)

        ledger.settle(1, Currency.B, 110_000, Currency.A, 100_000_000)

        b = ledger.get(1)
        assert (b.available_a, b.available_b) == (100_000_000, 0)

    def test_settle_from_reserved_credits_available(self, ledger):
        ledger.open_account(1)
        ledger.deposit(1, Currency.A, 500)
        ledger.reserve(1, Currency.A, 500)

        ledger.settle(1, Currency.A, 500, Currency.B, 45, Bucket.RESERVED)

        b = ledger.get(1)
        assert (b.available_a, b.reserved_a, b.available_b, b.reserved_b) == (0, 0, 45, 0)

    def test_settle_short_changes_nothing(self, ledger):
        ledger.open_account(1)
        ledger.deposit(1, Currency.B, 99)
        with pytest.raises(InsufficientFunds):
            ledger.settle(1, Currency.B, 100, Currency.A, 1)
        assert ledger.get(1).available_b == 99
        assert ledger.get(1).available_a == 0

    def test_same_currency_rejected(self, ledger):
        ledger.open_account(1)
        with pytest.raises(ValidationError):
            ledger.settle(1, Currency.A, 1, Currency.A, 1)

    def test_shared_transaction_rolls_back_together(self, ledger, db):
        ledger.open_account(1)
        ledger.deposit(1, Currency.B, 100)

        with pytest.raises(InsufficientFunds):
            with db.transaction() as tx:
                ledger.settle(1, Currency.B, 60, Currency.A, 6, tx=tx)
                ledger.settle(1, Currency.B, 60, Currency.A, 6, tx=tx)

        b = ledger.get(1)
        assert (b.available_a, b.available_b) == (0, 100)


class TestTransfer:
    """Movements between users conserve totals."""

    def test_transfer_conserves(self, ledger):
        for uid in (1, 2):
            ledger.open_account(uid)
        ledger.deposit(1, Currency.B, 1_000)
        before = _held(ledger, 1, 2)

        ledger.transfer(1, 2, Currency.B, 300)
        ledger.transfer(2, 1, Currency.B, 100)

        assert _held(ledger, 1, 2) == before
        assert ledger.get(1).available_b == 800
        assert ledger.get(2).available_b == 200

    def test_transfer_overdraft(self, ledger):
        for uid in (1, 2):
            ledger.open_account(uid)
        ledger.deposit(2, Currency.A, 5)
        with pytest.raises(InsufficientFunds):
            ledger.transfer(2, 1, Currency.A, 6)
        assert ledger.get(2).available_a == 5
        assert ledger.get(1).available_a == 0

    def test_transfer_to_unknown_user_rolls_back(self, ledger):
        ledger.open_account(1)
        ledger.deposit(1, Currency.B, 100)
        with pytest.raises(NotFoundError):
            ledger.transfer(1, 99, Currency.B, 40)
        assert ledger.get(1).available_b == 100

    def test_transfer_to_self(self, ledger):
        ledger.open_account(1)
        with pytest.raises(ValidationError):
            ledger.transfer(1, 1, Currency.B, 1)


class TestNonNegativity:
    def test_store_rejects_negative_column(self, ledger, db):
        """Direct writes that bypass the ledger still hit the CHECK constraint."""
        ledger.open_account(1)
        with pytest.raises(InvariantViolation):
            with db.transaction() as tx:
                tx.execute("UPDATE balances SET available_a = -1 WHERE user_id = %s", (1,))
        assert ledger.get(1).available_a == 0

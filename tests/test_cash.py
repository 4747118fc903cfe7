"""
test_cash.py - Unit tests for CashAccount
"""

import pytest
from decimal import Decimal

from papertrade import CashAccount, InsufficientCash


@pytest.fixture
def account():
    return CashAccount(currency="USD", available=Decimal("1000"), initial=Decimal("1000"))


class TestCashAccount:

    def test_total(self, account):
        account.reserve(Decimal("400"))
        assert account.available == Decimal("600")
        assert account.reserved == Decimal("400")
        assert account.total == Decimal("1000")

    def test_debit_and_credit(self, account):
        account.debit(Decimal("250.50"))
        account.credit(Decimal("0.50"))
        assert account.available == Decimal("750.00")

    def test_debit_over_available(self, account):
        account.reserve(Decimal("900"))
        with pytest.raises(InsufficientCash, match="Insufficient cash"):
            account.debit(Decimal("200"))
        assert account.available == Decimal("100")

    def test_reserve_over_available(self, account):
        with pytest.raises(InsufficientCash, match="reserve"):
            account.reserve(Decimal("1000.01"))
        assert account.reserved == Decimal("0")

    def test_release_is_clamped(self, account):
        account.reserve(Decimal("300"))
        released = account.release(Decimal("500"))
        assert released == Decimal("300")
        assert account.reserved == Decimal("0")
        assert account.available == Decimal("1000")

    def test_negative_amounts_rejected(self, account):
        with pytest.raises(ValueError, match="non-negative"):
            account.credit(Decimal("-1"))
        with pytest.raises(ValueError, match="non-negative"):
            CashAccount(available=Decimal("-5"))

    def test_accepts_floats_and_ints(self, account):
        account.debit(0.1)
        account.debit(1)
        assert account.available == Decimal("998.9")

"""
Test suite for transaction records and the append-only log
"""

import dataclasses
import pytest
from decimal import Decimal
from datetime import datetime, timezone, timedelta
import uuid

from savings_ledger.errors import NotFound
from savings_ledger.storage import InMemoryStorage
from savings_ledger.transactions import (
    DepositResult, Transaction, TransactionKind, TransactionLog,
    WithdrawalResult, withdrawal_summary
)


def make_transaction(kind=TransactionKind.DEPOSIT, amount='100.00', before='0.00',
                     after='100.00', when=None, account_id="acc-1", **fields):
    now = datetime.now(timezone.utc)
    return Transaction(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        account_id=account_id,
        kind=kind,
        amount=Decimal(amount),
        transaction_date=when or datetime(2024, 1, 15, tzinfo=timezone.utc),
        balance_before=Decimal(before),
        balance_after=Decimal(after),
        **fields
    )


class TestTransaction:
    """Test per-record invariants"""

    def test_deposit_balance_invariant(self):
        deposit = make_transaction()
        assert deposit.signed_amount == Decimal('100.00')
        assert deposit.is_deposit

    def test_withdrawal_includes_interest(self):
        withdrawal = make_transaction(
            TransactionKind.WITHDRAWAL, amount='50000.00',
            before='1000000.00', after='980377.51',
            months_held=6, interest_earned=Decimal('30377.51')
        )
        assert withdrawal.signed_amount == Decimal('-19622.49')
        assert not withdrawal.is_deposit

    def test_mismatched_balance_rejected(self):
        with pytest.raises(ValueError, match="does not match"):
            make_transaction(after='99.99')

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValueError, match="positive"):
            make_transaction(amount='0.00', after='0.00')

    def test_deposit_cannot_carry_interest(self):
        with pytest.raises(ValueError, match="Deposits do not earn interest"):
            make_transaction(after='105.00', interest_earned=Decimal('5.00'))

    def test_negative_interest_rejected(self):
        with pytest.raises(ValueError, match="Interest"):
            make_transaction(
                TransactionKind.WITHDRAWAL, amount='10.00', before='100.00',
                after='89.00', interest_earned=Decimal('-1.00')
            )

    def test_to_response_uses_strings_for_money(self):
        deposit = make_transaction(request_id="req-1")
        response = deposit.to_response()

        assert response["kind"] == "DEPOSIT"
        assert response["amount"] == "100.00"
        assert response["balance_before"] == "0.00"
        assert response["balance_after"] == "100.00"
        assert response["interest_earned"] == "0.00"
        assert response["months_held"] == 0
        assert response["request_id"] == "req-1"

    def test_records_are_immutable(self):
        deposit = make_transaction()
        with pytest.raises(dataclasses.FrozenInstanceError):
            deposit.balance_after = Decimal('1000.00')


class TestResults:

    def test_deposit_result(self):
        result = DepositResult(make_transaction())
        assert result.kind == TransactionKind.DEPOSIT
        assert result.to_dict()["amount"] == "100.00"

    def test_withdrawal_result_adds_ending_balance_and_summary(self):
        transaction = make_transaction(
            TransactionKind.WITHDRAWAL, amount='50000.00',
            before='1000000.00', after='980377.51',
            months_held=6, interest_earned=Decimal('30377.51')
        )
        result = WithdrawalResult(
            transaction=transaction,
            ending_balance=Decimal('1030377.51'),
            summary=withdrawal_summary(Decimal('50000.00'), Decimal('30377.51'), 6)
        )

        data = result.to_dict()
        assert result.kind == TransactionKind.WITHDRAWAL
        assert data["ending_balance"] == "1030377.51"
        assert data["summary"] == (
            "Successfully withdrawn 50000.00 with 30377.51 interest earned over 6 months"
        )


class TestTransactionLog:
    """Test the append-only log"""

    def setup_method(self):
        self.log = TransactionLog(InMemoryStorage())

    def test_append_and_get(self):
        deposit = self.log.append(make_transaction(request_id="req-1"))

        loaded = self.log.require(deposit.id)
        assert loaded == deposit
        assert loaded.transaction_date.tzinfo is not None
        assert self.log.find_by_request_id("req-1") == deposit
        assert self.log.find_by_request_id("req-2") is None

    def test_append_is_write_once(self):
        deposit = self.log.append(make_transaction())
        with pytest.raises(ValueError, match="already recorded"):
            self.log.append(deposit)

    def test_missing_transaction(self):
        assert self.log.get("missing") is None
        with pytest.raises(NotFound, match="Transaction with ID missing not found"):
            self.log.require("missing")

    def test_list_newest_first(self):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        first = self.log.append(make_transaction(when=base))
        third = self.log.append(make_transaction(when=base + timedelta(days=20), before='200.00', after='300.00'))
        second = self.log.append(make_transaction(when=base + timedelta(days=10), before='100.00', after='200.00'))
        self.log.append(make_transaction(account_id="acc-2"))

        history = self.log.list_for_account("acc-1")
        assert [t.id for t in history] == [third.id, second.id, first.id]
        assert [t.id for t in self.log.list_for_account("acc-1", limit=2)] == [third.id, second.id]
        assert len(self.log.list_for_account()) == 4

    def test_latest_deposit_ignores_withdrawals(self):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        deposit = self.log.append(make_transaction(when=base))
        self.log.append(make_transaction(
            TransactionKind.WITHDRAWAL, amount='10.00', before='100.00', after='90.00',
            when=base + timedelta(days=40)
        ))

        assert self.log.latest_deposit("acc-1") == deposit
        assert self.log.latest_deposit("acc-2") is None

    def test_list_by_kind(self):
        self.log.append(make_transaction())
        self.log.append(make_transaction(
            TransactionKind.WITHDRAWAL, amount='10.00', before='100.00', after='90.00'
        ))

        withdrawals = self.log.list_for_account("acc-1", kind=TransactionKind.WITHDRAWAL)
        assert len(withdrawals) == 1
        assert withdrawals[0].kind == TransactionKind.WITHDRAWAL

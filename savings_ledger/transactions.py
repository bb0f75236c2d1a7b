"""
Transaction Log Module

Append-only record of every deposit and withdrawal. A transaction is written
once, in the same unit of work as the balance change it describes, and is
never updated or deleted afterwards.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum

from .errors import NotFound
from .money import ZERO, ensure_utc, format_amount, to_decimal
from .storage import StorageInterface, StorageRecord


class TransactionKind(Enum):
    """Kinds of balance changes"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


@dataclass(frozen=True)
class Transaction(StorageRecord):
    """
    Immutable evidence of one balance change.

    For a withdrawal the interest credit is applied before the debit:
    ``balance_after = balance_before + interest_earned - amount``.
    """
    account_id: str
    kind: TransactionKind
    amount: Decimal
    transaction_date: datetime
    balance_before: Decimal
    balance_after: Decimal
    months_held: int = 0
    interest_earned: Decimal = ZERO
    request_id: Optional[str] = None

    def __post_init__(self):
        if self.amount <= Decimal('0'):
            raise ValueError("Transaction amount must be positive")
        if self.months_held < 0:
            raise ValueError("Months held cannot be negative")
        if self.interest_earned < Decimal('0'):
            raise ValueError("Interest earned cannot be negative")
        if self.kind == TransactionKind.DEPOSIT and (self.months_held or self.interest_earned):
            raise ValueError("Deposits do not earn interest")
        if self.balance_after != self.balance_before + self.signed_amount:
            raise ValueError(
                f"Balance after {self.balance_after} does not match "
                f"{self.balance_before} {self.signed_amount:+}"
            )

    @property
    def signed_amount(self) -> Decimal:
        """Net effect on the balance, interest included"""
        if self.kind == TransactionKind.DEPOSIT:
            return self.amount
        return self.interest_earned - self.amount

    @property
    def is_deposit(self) -> bool:
        return self.kind == TransactionKind.DEPOSIT

    def to_response(self) -> Dict[str, Any]:
        """Serialize for API responses"""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "kind": self.kind.value,
            "amount": format_amount(self.amount),
            "transaction_date": self.transaction_date.isoformat(),
            "balance_before": format_amount(self.balance_before),
            "balance_after": format_amount(self.balance_after),
            "months_held": self.months_held,
            "interest_earned": format_amount(self.interest_earned),
            "request_id": self.request_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class DepositResult:
    """Outcome of a deposit"""
    transaction: Transaction

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind.DEPOSIT

    def to_dict(self) -> Dict[str, Any]:
        return self.transaction.to_response()


@dataclass(frozen=True)
class WithdrawalResult:
    """Outcome of a withdrawal: the record plus the interest-adjusted balance before the debit"""
    transaction: Transaction
    ending_balance: Decimal
    summary: str

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind.WITHDRAWAL

    def to_dict(self) -> Dict[str, Any]:
        result = self.transaction.to_response()
        result["ending_balance"] = format_amount(self.ending_balance)
        result["summary"] = self.summary
        return result


TransactionResult = Union[DepositResult, WithdrawalResult]


def withdrawal_summary(amount: Decimal, interest_earned: Decimal, months_held: int) -> str:
    return (
        f"Successfully withdrawn {amount:.2f} with {interest_earned:.2f} "
        f"interest earned over {months_held} months"
    )


class TransactionLog:
    """
    Append-only store of transactions, queryable by account, anchor deposit
    and request id
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"

    def append(self, transaction: Transaction) -> Transaction:
        """
        Write a new transaction

        Raises:
            ValueError: If a transaction with the same id already exists
        """
        if self.storage.exists(self.table_name, transaction.id):
            raise ValueError(f"Transaction {transaction.id} already recorded")
        self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))
        return transaction

    def get(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return self._transaction_from_dict(data)
        return None

    def require(self, transaction_id: str) -> Transaction:
        """Get transaction or raise NotFound"""
        transaction = self.get(transaction_id)
        if not transaction:
            raise NotFound("Transaction", transaction_id)
        return transaction

    def list_for_account(
        self,
        account_id: Optional[str] = None,
        kind: Optional[TransactionKind] = None,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        """
        Transactions ordered by transaction date, newest first

        Args:
            account_id: Only this account's transactions (all accounts when omitted)
            kind: Only deposits or only withdrawals
            limit: Optional limit on number of transactions
        """
        filters: Dict[str, Any] = {}
        if account_id:
            filters["account_id"] = account_id
        if kind:
            filters["kind"] = kind.value

        records = self.storage.find(self.table_name, filters)
        transactions = [self._transaction_from_dict(data) for data in records]
        transactions.sort(key=lambda t: (t.transaction_date, t.created_at), reverse=True)

        if limit is not None and limit > 0:
            transactions = transactions[:limit]
        return transactions

    def latest_deposit(self, account_id: str) -> Optional[Transaction]:
        """Most recent deposit by transaction date; the interest anchor for withdrawals"""
        deposits = self.list_for_account(account_id, kind=TransactionKind.DEPOSIT, limit=1)
        return deposits[0] if deposits else None

    def find_by_request_id(self, request_id: str) -> Optional[Transaction]:
        records = self.storage.find(self.table_name, {"request_id": request_id})
        if records:
            return self._transaction_from_dict(records[0])
        return None

    def _transaction_to_dict(self, transaction: Transaction) -> Dict[str, Any]:
        result = transaction.to_dict()
        result['kind'] = transaction.kind.value
        result['transaction_date'] = transaction.transaction_date.isoformat()
        return result

    def _transaction_from_dict(self, data: Dict[str, Any]) -> Transaction:
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            kind=TransactionKind(data['kind']),
            amount=to_decimal(data['amount']),
            transaction_date=ensure_utc(datetime.fromisoformat(data['transaction_date'])),
            balance_before=to_decimal(data['balance_before']),
            balance_after=to_decimal(data['balance_after']),
            months_held=int(data.get('months_held', 0)),
            interest_earned=to_decimal(data.get('interest_earned', '0')),
            request_id=data.get('request_id')
        )

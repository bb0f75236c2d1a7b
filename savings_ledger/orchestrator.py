"""
Transaction Orchestrator Module

Runs deposits and withdrawals as single all-or-nothing units:

    account lock -> storage unit of work -> read balance -> (withdrawal) accrue
    interest since the anchor deposit -> write balance -> append transaction
    -> commit -> release lock

A failure anywhere inside the unit of work rolls back both the balance
write and the log append before the account lock is released. Nothing is
retried automatically.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, TypeVar, Union
import uuid

from .accounts import Account, AccountStore
from .config import SavingsLedgerConfig
from .errors import (
    DuplicateRequest, InsufficientBalance, InvalidAmount, LockTimeout,
    PersistenceFailure, SavingsLedgerError
)
from .interest import InterestCalculation, calculate_withdrawal_interest
from .locking import AccountLockCoordinator
from .logging_config import get_logger, log_action
from .money import ZERO, Number, ensure_utc, format_amount, quantize_amount, to_decimal
from .storage import StorageInterface, create_storage
from .transactions import (
    DepositResult, Transaction, TransactionKind, TransactionLog,
    TransactionResult, WithdrawalResult, withdrawal_summary
)


T = TypeVar("T")


class TransactionOrchestrator:
    """
    Composes account store, transaction log, lock coordinator and interest
    calculator into the deposit and withdrawal operations.

    The logger is passed in once at construction; the orchestrator keeps no
    other shared state besides its collaborators.
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        transactions: TransactionLog,
        locks: AccountLockCoordinator,
        logger: Optional[logging.Logger] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.transactions = transactions
        self.locks = locks
        self.logger = logger or get_logger("savings_ledger.orchestrator")

    @classmethod
    def from_storage(
        cls,
        storage: StorageInterface,
        lock_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None
    ) -> "TransactionOrchestrator":
        """Wire up the default collaborators around one storage backend"""
        return cls(
            storage,
            AccountStore(storage),
            TransactionLog(storage),
            AccountLockCoordinator(default_timeout=lock_timeout),
            logger
        )

    @classmethod
    def from_config(
        cls,
        config: SavingsLedgerConfig,
        logger: Optional[logging.Logger] = None
    ) -> "TransactionOrchestrator":
        return cls.from_storage(
            create_storage(config.database_url),
            lock_timeout=config.lock_timeout_seconds,
            logger=logger
        )

    def deposit(
        self,
        account_id: str,
        amount: Number,
        transaction_date: Union[date, datetime],
        request_id: Optional[str] = None
    ) -> DepositResult:
        """
        Add ``amount`` to the account balance and record a DEPOSIT

        Raises:
            InvalidAmount: If amount is not a positive number of cents
            NotFound: If the account does not exist
            DuplicateRequest: If request_id was used for a different transaction
            LockTimeout: If the account stayed busy past the lock timeout
            PersistenceFailure: If storage failed; nothing was written
        """
        amount = self._validate_amount(amount)
        transaction_date = ensure_utc(transaction_date)

        def work() -> TransactionResult:
            replayed = self._replay(request_id, account_id, TransactionKind.DEPOSIT, amount)
            if replayed:
                return replayed

            account = self.accounts.lock_account(account_id)
            balance_before = account.balance
            balance_after = balance_before + amount

            self.accounts.save_balance(account, balance_after)
            transaction = self.transactions.append(self._new_transaction(
                account,
                kind=TransactionKind.DEPOSIT,
                amount=amount,
                transaction_date=transaction_date,
                balance_before=balance_before,
                balance_after=balance_after,
                request_id=request_id
            ))
            return DepositResult(transaction)

        result = self._execute("deposit", account_id, work)

        log_action(
            self.logger, "info",
            f"Deposit successful: {format_amount(amount)} to account {account_id}",
            action="deposit", resource=f"account:{account_id}",
            correlation_id=request_id,
            extra={
                "transaction_id": result.transaction.id,
                "amount": format_amount(amount),
                "balance_after": format_amount(result.transaction.balance_after)
            }
        )
        return result

    def withdraw(
        self,
        account_id: str,
        amount: Number,
        transaction_date: Union[date, datetime],
        request_id: Optional[str] = None
    ) -> WithdrawalResult:
        """
        Credit interest accrued since the most recent deposit, then debit ``amount``

        The whole current balance compounds monthly from the anchor deposit's
        date at the account's deposito type rate. Without any deposit no
        interest is credited.

        Raises:
            InvalidAmount: If amount is not a positive number of cents
            NotFound: If the account or its deposito type does not exist
            InsufficientBalance: If amount exceeds the current balance
            DuplicateRequest: If request_id was used for a different transaction
            LockTimeout: If the account stayed busy past the lock timeout
            PersistenceFailure: If storage failed; nothing was written
        """
        amount = self._validate_amount(amount)
        transaction_date = ensure_utc(transaction_date)

        def work() -> TransactionResult:
            replayed = self._replay(request_id, account_id, TransactionKind.WITHDRAWAL, amount)
            if replayed:
                return replayed

            account = self.accounts.lock_account(account_id)
            current_balance = account.balance
            if amount > current_balance:
                raise InsufficientBalance(current_balance, amount)

            calculation = self._accrue_since_anchor(account, transaction_date)
            balance_after = calculation.ending_balance - amount

            self.accounts.save_balance(account, balance_after)
            transaction = self.transactions.append(self._new_transaction(
                account,
                kind=TransactionKind.WITHDRAWAL,
                amount=amount,
                transaction_date=transaction_date,
                balance_before=current_balance,
                balance_after=balance_after,
                months_held=calculation.months_held,
                interest_earned=calculation.interest_earned,
                request_id=request_id
            ))
            return WithdrawalResult(
                transaction=transaction,
                ending_balance=calculation.ending_balance,
                summary=withdrawal_summary(amount, calculation.interest_earned, calculation.months_held)
            )

        result = self._execute("withdrawal", account_id, work)

        log_action(
            self.logger, "info",
            f"Withdrawal successful: {format_amount(amount)} from account {account_id}, "
            f"Interest: {format_amount(result.transaction.interest_earned)}",
            action="withdraw", resource=f"account:{account_id}",
            correlation_id=request_id,
            extra={
                "transaction_id": result.transaction.id,
                "amount": format_amount(amount),
                "months_held": result.transaction.months_held,
                "interest_earned": format_amount(result.transaction.interest_earned),
                "balance_after": format_amount(result.transaction.balance_after)
            }
        )
        return result

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Raises NotFound if the transaction does not exist"""
        return self.transactions.require(transaction_id)

    def list_transactions(self, account_id: Optional[str] = None, limit: Optional[int] = None) -> List[Transaction]:
        """Newest first by transaction date. Takes no lock; may trail an in-flight write."""
        return self.transactions.list_for_account(account_id, limit=limit)

    def get_balance(self, account_id: str):
        return self.accounts.require_account(account_id).balance

    def verify_ledger(self, account_id: str) -> bool:
        """
        Check that the account's transaction history sums to its balance.

        Every record's own before/after invariant is validated when it is
        loaded, so summing the signed deltas from zero is enough.
        """
        account = self.accounts.require_account(account_id)
        history = self.transactions.list_for_account(account_id)
        replayed = sum((t.signed_amount for t in history), ZERO)

        if replayed != account.balance:
            log_action(
                self.logger, "warning",
                f"Ledger mismatch for account {account_id}",
                action="verify_ledger", resource=f"account:{account_id}",
                extra={
                    "balance": format_amount(account.balance),
                    "replayed": format_amount(replayed),
                    "transactions": len(history)
                }
            )
            return False
        return True

    def _execute(self, operation: str, account_id: str, work: Callable[[], T]) -> T:
        """Run ``work`` under the account lock inside one storage unit of work"""
        try:
            return self.locks.with_account_lock(
                account_id, lambda: self._atomically(operation, account_id, work)
            )
        except LockTimeout as exc:
            log_action(
                self.logger, "warning", f"{operation.capitalize()} timed out: {exc}",
                action=operation, resource=f"account:{account_id}",
                extra={"error": exc.code}
            )
            raise

    def _atomically(self, operation: str, account_id: str, work: Callable[[], T]) -> T:
        try:
            with self.storage.atomic():
                return work()
        except SavingsLedgerError as exc:
            log_action(
                self.logger, "warning", f"{operation.capitalize()} rejected: {exc}",
                action=operation, resource=f"account:{account_id}",
                extra={"error": exc.code}
            )
            raise
        except Exception as exc:
            log_action(
                self.logger, "error", f"{operation.capitalize()} failed: {exc}",
                action=operation, resource=f"account:{account_id}",
                extra={"error": PersistenceFailure.code},
                exc_info=True
            )
            raise PersistenceFailure(operation) from exc

    def _accrue_since_anchor(self, account: Account, withdrawal_date: datetime) -> InterestCalculation:
        """Interest on the full balance since the most recent deposit"""
        anchor = self.transactions.latest_deposit(account.id)
        if anchor is None:
            return InterestCalculation(
                months_held=0,
                interest_earned=ZERO,
                ending_balance=account.balance
            )

        deposito_type = self.accounts.require_deposito_type(account.deposito_type_id)
        return calculate_withdrawal_interest(
            account.balance,
            deposito_type.yearly_return,
            anchor.transaction_date,
            withdrawal_date
        )

    def _replay(
        self,
        request_id: Optional[str],
        account_id: str,
        kind: TransactionKind,
        amount
    ) -> Optional[TransactionResult]:
        """Return the original result when ``request_id`` was already processed"""
        if not request_id:
            return None

        existing = self.transactions.find_by_request_id(request_id)
        if existing is None:
            return None

        if (existing.account_id, existing.kind, existing.amount) != (account_id, kind, amount):
            raise DuplicateRequest(request_id)

        log_action(
            self.logger, "info", f"Request {request_id} already processed, returning original result",
            action=kind.value.lower(), resource=f"account:{account_id}",
            correlation_id=request_id,
            extra={"transaction_id": existing.id}
        )
        return self._result_for(existing)

    @staticmethod
    def _result_for(transaction: Transaction) -> TransactionResult:
        if transaction.is_deposit:
            return DepositResult(transaction)
        return WithdrawalResult(
            transaction=transaction,
            ending_balance=transaction.balance_after + transaction.amount,
            summary=withdrawal_summary(
                transaction.amount, transaction.interest_earned, transaction.months_held
            )
        )

    @staticmethod
    def _validate_amount(amount: Number):
        try:
            value = to_decimal(amount)
        except ValueError:
            raise InvalidAmount(amount, "must be a number")

        if value <= 0:
            raise InvalidAmount(amount)
        if value != quantize_amount(value):
            raise InvalidAmount(amount, "must have at most 2 decimal places")
        return quantize_amount(value)

    @staticmethod
    def _new_transaction(account: Account, **fields) -> Transaction:
        now = datetime.now(timezone.utc)
        return Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account.id,
            **fields
        )

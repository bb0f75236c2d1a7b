"""
Account Management Module

Stores savings accounts and the deposito types that set their yearly return.
Account balances are only changed by the transaction orchestrator through
``save_balance``; everything else here is registration and lookup.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Dict, List, Optional
import uuid

from .errors import NotFound
from .interest import monthly_rate
from .money import ZERO, Number, quantize_amount, to_decimal
from .storage import StorageInterface, StorageRecord


@dataclass(frozen=True)
class DepositoType(StorageRecord):
    """Savings product with a fixed yearly return percentage"""
    name: str
    yearly_return: Decimal  # Percent per year, e.g. 6.00 for 6%

    def __post_init__(self):
        if self.yearly_return < Decimal('0') or self.yearly_return > Decimal('100'):
            raise ValueError("Yearly return must be between 0 and 100 percent")

    @property
    def monthly_rate(self) -> Decimal:
        return monthly_rate(self.yearly_return)


@dataclass(frozen=True)
class Account(StorageRecord):
    """Savings account; balance is kept in cents and never negative"""
    customer_id: str
    packet: str
    deposito_type_id: str
    balance: Decimal = ZERO

    def __post_init__(self):
        if self.balance < Decimal('0'):
            raise ValueError("Account balance cannot be negative")


class AccountStore:
    """
    Durable record of accounts and deposito types
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.accounts_table = "accounts"
        self.deposito_types_table = "deposito_types"

    def create_deposito_type(self, name: str, yearly_return: Number) -> DepositoType:
        """
        Register a deposito type

        Raises:
            ValueError: If the name is taken or the rate is outside 0-100
        """
        if self.storage.find(self.deposito_types_table, {"name": name}):
            raise ValueError(f"Deposito type '{name}' already exists")

        now = datetime.now(timezone.utc)
        deposito_type = DepositoType(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            yearly_return=quantize_amount(yearly_return)
        )
        self.storage.save(self.deposito_types_table, deposito_type.id, deposito_type.to_dict())
        return deposito_type

    def get_deposito_type(self, deposito_type_id: str) -> Optional[DepositoType]:
        data = self.storage.load(self.deposito_types_table, deposito_type_id)
        if data:
            return self._deposito_type_from_dict(data)
        return None

    def require_deposito_type(self, deposito_type_id: str) -> DepositoType:
        """Get deposito type or raise NotFound"""
        deposito_type = self.get_deposito_type(deposito_type_id)
        if not deposito_type:
            raise NotFound("DepositoType", deposito_type_id)
        return deposito_type

    def list_deposito_types(self) -> List[DepositoType]:
        types = [self._deposito_type_from_dict(d) for d in self.storage.load_all(self.deposito_types_table)]
        return sorted(types, key=lambda t: t.name)

    def create_account(self, customer_id: str, packet: str, deposito_type_id: str) -> Account:
        """
        Open an account with a zero balance

        Raises:
            NotFound: If the deposito type does not exist
        """
        self.require_deposito_type(deposito_type_id)

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            packet=packet,
            deposito_type_id=deposito_type_id
        )
        self._save_account(account)
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.accounts_table, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def require_account(self, account_id: str) -> Account:
        """Get account or raise NotFound"""
        account = self.get_account(account_id)
        if not account:
            raise NotFound("Account", account_id)
        return account

    def lock_account(self, account_id: str) -> Account:
        """
        Load an account for a balance update inside the current unit of work.

        On backends with row locks the row stays locked until commit or rollback.
        """
        data = self.storage.load_for_update(self.accounts_table, account_id)
        if not data:
            raise NotFound("Account", account_id)
        return self._account_from_dict(data)

    def list_accounts(self, customer_id: Optional[str] = None) -> List[Account]:
        if customer_id:
            records = self.storage.find(self.accounts_table, {"customer_id": customer_id})
        else:
            records = self.storage.load_all(self.accounts_table)
        accounts = [self._account_from_dict(data) for data in records]
        return sorted(accounts, key=lambda a: a.created_at)

    def save_balance(self, account: Account, new_balance: Decimal) -> Account:
        """Write a new balance as a full replacement record"""
        updated = replace(
            account,
            balance=quantize_amount(new_balance),
            updated_at=datetime.now(timezone.utc)
        )
        self._save_account(updated)
        return updated

    def _save_account(self, account: Account) -> None:
        self.storage.save(self.accounts_table, account.id, account.to_dict())

    def _account_from_dict(self, data: Dict) -> Account:
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            packet=data['packet'],
            deposito_type_id=data['deposito_type_id'],
            balance=to_decimal(data['balance'])
        )

    def _deposito_type_from_dict(self, data: Dict) -> DepositoType:
        return DepositoType(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            yearly_return=to_decimal(data['yearly_return'])
        )

"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID
from pydantic import BaseModel, Field

from .accounts import Account, DepositoType
from .money import format_amount


class CreateDepositoTypeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    yearly_return: Decimal = Field(..., ge=0, le=100, decimal_places=2, description="Yearly return in percent, e.g. 6.00")


class CreateAccountRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    packet: str = Field(..., min_length=1, max_length=100, description="Product label shown to the customer")
    deposito_type_id: str


class TransactionRequest(BaseModel):
    account_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    transaction_date: datetime = Field(..., description="ISO 8601 timestamp")
    request_id: Optional[str] = Field(
        None, min_length=1, max_length=100,
        description="Client-chosen id; repeating it returns the original result"
    )


class DepositRequest(TransactionRequest):
    pass


class WithdrawRequest(TransactionRequest):
    pass


def success(data: Any, message: str = "Operation successful") -> Dict[str, Any]:
    """Success envelope shared by every endpoint"""
    return {"success": True, "data": data, "message": message}


def error_body(code: str, message: str) -> Dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


def deposito_type_to_response(deposito_type: DepositoType) -> Dict[str, Any]:
    return {
        "id": deposito_type.id,
        "name": deposito_type.name,
        "yearly_return": format_amount(deposito_type.yearly_return),
        "created_at": deposito_type.created_at.isoformat(),
    }


def account_to_response(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "customer_id": account.customer_id,
        "packet": account.packet,
        "deposito_type_id": account.deposito_type_id,
        "balance": format_amount(account.balance),
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat(),
    }

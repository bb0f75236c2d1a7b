"""
Savings Ledger API

FastAPI surface over the transaction orchestrator. Request shapes are
validated here; the orchestrator receives already-typed values.
"""

from http import HTTPStatus
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import SavingsLedgerConfig, get_config
from .errors import (
    DuplicateRequest, InsufficientBalance, InvalidAmount, LockTimeout,
    NotFound, PersistenceFailure, SavingsLedgerError
)
from .logging_config import setup_logging
from .orchestrator import TransactionOrchestrator
from .schemas import (
    CreateAccountRequest, CreateDepositoTypeRequest, DepositRequest, WithdrawRequest,
    account_to_response, deposito_type_to_response, error_body, success
)


STATUS_BY_ERROR_CODE = {
    NotFound.code: status.HTTP_404_NOT_FOUND,
    InsufficientBalance.code: status.HTTP_400_BAD_REQUEST,
    InvalidAmount.code: status.HTTP_400_BAD_REQUEST,
    DuplicateRequest.code: status.HTTP_409_CONFLICT,
    LockTimeout.code: status.HTTP_503_SERVICE_UNAVAILABLE,
    PersistenceFailure.code: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_orchestrator(request: Request) -> TransactionOrchestrator:
    return request.app.state.orchestrator


deposito_types_router = APIRouter()
accounts_router = APIRouter()
transactions_router = APIRouter()


@deposito_types_router.post("", status_code=status.HTTP_201_CREATED)
def create_deposito_type(
    request: CreateDepositoTypeRequest,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Register a deposito type"""
    try:
        deposito_type = orchestrator.accounts.create_deposito_type(request.name, request.yearly_return)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return success(deposito_type_to_response(deposito_type), "Deposito type created successfully")


@deposito_types_router.get("")
def list_deposito_types(orchestrator: TransactionOrchestrator = Depends(get_orchestrator)):
    types = orchestrator.accounts.list_deposito_types()
    return success([deposito_type_to_response(t) for t in types])


@deposito_types_router.get("/{deposito_type_id}")
def get_deposito_type(
    deposito_type_id: str,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    deposito_type = orchestrator.accounts.require_deposito_type(deposito_type_id)
    return success(deposito_type_to_response(deposito_type))


@accounts_router.post("", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Open an account with a zero balance"""
    account = orchestrator.accounts.create_account(
        customer_id=request.customer_id,
        packet=request.packet,
        deposito_type_id=request.deposito_type_id
    )
    return success(account_to_response(account), "Account created successfully")


@accounts_router.get("/{account_id}")
def get_account(
    account_id: str,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    account = orchestrator.accounts.require_account(account_id)
    return success(account_to_response(account))


@accounts_router.get("/{account_id}/ledger-check")
def check_ledger(
    account_id: str,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Replay the transaction history and compare it with the stored balance"""
    consistent = orchestrator.verify_ledger(account_id)
    return success({"account_id": account_id, "consistent": consistent})


@transactions_router.post("/deposit", status_code=status.HTTP_201_CREATED)
def deposit(
    request: DepositRequest,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Deposit money to an account"""
    result = orchestrator.deposit(
        account_id=str(request.account_id),
        amount=request.amount,
        transaction_date=request.transaction_date,
        request_id=request.request_id
    )
    return success(result.to_dict(), "Deposit processed successfully")


@transactions_router.post("/withdraw", status_code=status.HTTP_201_CREATED)
def withdraw(
    request: WithdrawRequest,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Withdraw money; interest since the last deposit is credited first"""
    result = orchestrator.withdraw(
        account_id=str(request.account_id),
        amount=request.amount,
        transaction_date=request.transaction_date,
        request_id=request.request_id
    )
    return success(result.to_dict(), result.summary)


@transactions_router.get("")
def list_transactions(
    account_id: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    """Transactions ordered by date, newest first"""
    transactions = orchestrator.list_transactions(account_id=account_id, limit=limit)
    return success([t.to_response() for t in transactions])


@transactions_router.get("/{transaction_id}")
def get_transaction(
    transaction_id: str,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator)
):
    transaction = orchestrator.get_transaction(transaction_id)
    return success(transaction.to_response())


async def ledger_error_handler(request: Request, exc: SavingsLedgerError) -> JSONResponse:
    status_code = STATUS_BY_ERROR_CODE.get(exc.code, status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status_code, content=error_body(exc.code, str(exc)))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    try:
        code = HTTPStatus(exc.status_code).name
    except ValueError:
        code = "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None)
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body or query failed schema validation"""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=422,
        content=error_body("VALIDATION_ERROR", "; ".join(problems) or "Invalid request")
    )


def create_app(
    orchestrator: Optional[TransactionOrchestrator] = None,
    config: Optional[SavingsLedgerConfig] = None
) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = config or get_config()
    if orchestrator is None:
        logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
        orchestrator = TransactionOrchestrator.from_config(config, logger=logger)

    app = FastAPI(
        title="Savings Ledger API",
        description="Savings accounts with deposits, withdrawals and compound interest",
        version=__version__,
        docs_url=f"{config.api_prefix}/docs",
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SavingsLedgerError, ledger_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    prefix = config.api_prefix
    app.include_router(deposito_types_router, prefix=f"{prefix}/deposito-types", tags=["Deposito Types"])
    app.include_router(accounts_router, prefix=f"{prefix}/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix=f"{prefix}/transactions", tags=["Transactions"])

    @app.get(f"{prefix}/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "savings_ledger_api",
            "version": __version__
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "savings_ledger.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )

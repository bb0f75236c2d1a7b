"""
Domain errors raised by the savings ledger.

Every error carries a stable ``code`` so the HTTP layer can map it to a
status without inspecting messages.
"""

from decimal import Decimal


class SavingsLedgerError(Exception):
    """Base class for all ledger errors."""
    code = "LEDGER_ERROR"


class NotFound(SavingsLedgerError):
    """An account, deposito type or transaction does not exist."""
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with ID {entity_id} not found")


class InsufficientBalance(SavingsLedgerError):
    """A withdrawal asks for more than the current balance."""
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, available: Decimal, requested: Decimal):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient balance. Available: {available:.2f}, Requested: {requested:.2f}"
        )


class InvalidAmount(SavingsLedgerError, ValueError):
    """Amount is zero, negative or not a number."""
    code = "INVALID_AMOUNT"

    def __init__(self, amount, reason: str = "must be greater than 0"):
        self.amount = amount
        super().__init__(f"Amount {reason}, got {amount}")


class PersistenceFailure(SavingsLedgerError):
    """
    Storage failed inside a unit of work and everything was rolled back.

    The message stays generic; the storage exception is chained as
    ``__cause__`` and logged by the orchestrator.
    """
    code = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation.capitalize()} transaction failed")


class LockTimeout(SavingsLedgerError):
    """Waited too long for another operation on the same account."""
    code = "LOCK_TIMEOUT"

    def __init__(self, account_id: str, timeout: float):
        self.account_id = account_id
        self.timeout = timeout
        super().__init__(
            f"Account {account_id} is busy, gave up after {timeout:g}s"
        )


class DuplicateRequest(SavingsLedgerError):
    """A request id was reused for a different operation."""
    code = "DUPLICATE_REQUEST"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Request {request_id} was already used for a different transaction"
        )

class LedgerError(Exception):
    """Base class for balance-layer errors."""


class AccountError(LedgerError):
    """Recoverable error raised by an account operation."""

    def __init__(self, client_id: int, message: str):
        super().__init__(message)
        self.client_id = client_id


class InsufficientFunds(AccountError):
    """Raised when the requested amount exceeds the relevant balance pool."""

    def __init__(self, client_id: int, requested, pool: str, balance):
        super().__init__(
            client_id,
            f"Insufficient {pool} funds for client {client_id}: requested {requested}, have {balance}"
        )
        self.requested = requested
        self.pool = pool
        self.balance = balance


class LockedAccount(AccountError):
    """Raised when an operation targets an account frozen by a chargeback."""

    def __init__(self, client_id: int):
        super().__init__(client_id, f"Account {client_id} is locked")


class BalanceInvariantError(LedgerError):
    """Raised when a proposed balance change would break the account invariant."""


class InputFormatError(ValueError):
    """Raised when the input header lacks the columns instructions are read from."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum
from typing import Literal, Optional
from datetime import datetime
from decimal import Context, Decimal, ROUND_HALF_UP, localcontext

from errors import BalanceInvariantError, InsufficientFunds, LockedAccount


MAX_CLIENT_ID = 2 ** 16 - 1
MAX_TX_ID = 2 ** 32 - 1
DEFAULT_PRECISION = 4

ZERO = Decimal("0")

# Largest single deposit or withdrawal accepted from input
MAX_AMOUNT = Decimal("1000000000000000")
MAX_AMOUNT_DIGITS = 28

# Bounded amounts summed over every u32 id stay exact at this precision
LEDGER_CONTEXT = Context(prec=64)


class InstructionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"

    @property
    def moves_funds(self) -> bool:
        """Deposits and withdrawals carry their own id and an amount."""
        return self in (InstructionType.deposit, InstructionType.withdrawal)


class Instruction(BaseModel):
    """A single typed payment instruction.

    Deposits and withdrawals are identified by ``tx_id``. Disputes, resolves
    and chargebacks point at an earlier deposit/withdrawal through
    ``target_id``. On the wire both arrive in the same ``tx`` column.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: InstructionType = Field(..., description="Instruction kind")
    client_id: int = Field(
        ...,
        alias="client",
        ge=0,
        le=MAX_CLIENT_ID,
        description="Client the instruction is submitted by"
    )
    tx_id: Optional[int] = Field(
        None,
        ge=0,
        le=MAX_TX_ID,
        description="Own identifier of a deposit or withdrawal"
    )
    target_id: Optional[int] = Field(
        None,
        ge=0,
        le=MAX_TX_ID,
        description="Deposit/withdrawal referenced by a dispute, resolve or chargeback"
    )
    amount: Optional[Decimal] = Field(
        None,
        ge=0,
        le=MAX_AMOUNT,
        max_digits=MAX_AMOUNT_DIGITS,
        description="Amount moved by a deposit or withdrawal"
    )

    @model_validator(mode="before")
    @classmethod
    def split_wire_tx(cls, data):
        if not isinstance(data, dict):
            return data

        data = dict(data)
        raw_type = data.get("type", "")
        if isinstance(raw_type, InstructionType):
            kind = raw_type.value
        else:
            kind = str(raw_type).strip().lower()
        funds_moving = kind in (InstructionType.deposit.value, InstructionType.withdrawal.value)

        if "tx" in data:
            tx = data.pop("tx")
            data.setdefault("tx_id" if funds_moving else "target_id", tx)

        # Amount is meaningless for dispute-lifecycle instructions
        if not funds_moving:
            data.pop("amount", None)
        return data

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def blank_amount_is_absent(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_references(self):
        if self.type.moves_funds:
            if self.tx_id is None:
                raise ValueError(f"{self.type.value} requires a transaction id")
            if self.target_id is not None:
                raise ValueError(f"{self.type.value} cannot reference another transaction")
            if self.amount is None:
                raise ValueError(f"{self.type.value} requires an amount")
        else:
            if self.target_id is None:
                raise ValueError(f"{self.type.value} requires a referenced transaction id")
            if self.tx_id is not None:
                raise ValueError(f"{self.type.value} cannot carry its own transaction id")
        return self

    @property
    def reference_id(self) -> int:
        """The id on the wire: own id or referenced id, depending on the kind."""
        return self.tx_id if self.type.moves_funds else self.target_id

    @classmethod
    def deposit(cls, tx_id: int, client_id: int, amount) -> "Instruction":
        return cls(type=InstructionType.deposit, client_id=client_id, tx_id=tx_id, amount=amount)

    @classmethod
    def withdrawal(cls, tx_id: int, client_id: int, amount) -> "Instruction":
        return cls(type=InstructionType.withdrawal, client_id=client_id, tx_id=tx_id, amount=amount)

    @classmethod
    def dispute(cls, target_id: int, client_id: int) -> "Instruction":
        return cls(type=InstructionType.dispute, client_id=client_id, target_id=target_id)

    @classmethod
    def resolve(cls, target_id: int, client_id: int) -> "Instruction":
        return cls(type=InstructionType.resolve, client_id=client_id, target_id=target_id)

    @classmethod
    def chargeback(cls, target_id: int, client_id: int) -> "Instruction":
        return cls(type=InstructionType.chargeback, client_id=client_id, target_id=target_id)


class RecordedInstruction(BaseModel):
    """A deposit or withdrawal kept in the instruction history."""

    tx_id: int
    client_id: int
    type: InstructionType
    amount: Decimal
    disputed: bool = False

    @classmethod
    def from_instruction(cls, instruction: Instruction) -> "RecordedInstruction":
        return cls(
            tx_id=instruction.tx_id,
            client_id=instruction.client_id,
            type=instruction.type,
            amount=instruction.amount
        )


class AccountSnapshot(BaseModel):
    client: int = Field(..., description="Client identifier")
    available: Decimal = Field(..., description="Funds available for withdrawal or dispute")
    held: Decimal = Field(..., description="Funds frozen under dispute")
    total: Decimal = Field(..., description="available + held")
    locked: bool = Field(..., description="Whether a chargeback froze the account")


def _as_decimal(amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def round_half_up(value: Decimal, precision: int = DEFAULT_PRECISION) -> Decimal:
    with localcontext(LEDGER_CONTEXT):
        return value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)


class Account(BaseModel):
    """Balances of one client.

    Every mutation is routed through ``_commit`` which verifies
    ``total == available + held`` with non-negative pools before anything is
    assigned, so a failed operation never leaves a partial update behind.
    Once ``locked`` is set by a chargeback every operation raises
    ``LockedAccount``.
    """

    client_id: int = Field(..., ge=0, le=MAX_CLIENT_ID)
    available: Decimal = ZERO
    held: Decimal = ZERO
    total: Decimal = ZERO
    locked: bool = False

    def deposit(self, amount) -> None:
        amount = _as_decimal(amount)
        self._ensure_unlocked()
        with localcontext(LEDGER_CONTEXT):
            self._commit(available=self.available + amount, total=self.total + amount)

    def withdrawal(self, amount) -> None:
        amount = _as_decimal(amount)
        self._ensure_unlocked()
        self._ensure_available(amount)
        with localcontext(LEDGER_CONTEXT):
            self._commit(available=self.available - amount, total=self.total - amount)

    def dispute(self, amount) -> None:
        amount = _as_decimal(amount)
        self._ensure_unlocked()
        self._ensure_available(amount)
        with localcontext(LEDGER_CONTEXT):
            self._commit(available=self.available - amount, held=self.held + amount)

    def resolve(self, amount) -> None:
        amount = _as_decimal(amount)
        self._ensure_unlocked()
        self._ensure_held(amount)
        with localcontext(LEDGER_CONTEXT):
            self._commit(held=self.held - amount, available=self.available + amount)

    def chargeback(self, amount) -> None:
        amount = _as_decimal(amount)
        self._ensure_unlocked()
        self._ensure_held(amount)
        with localcontext(LEDGER_CONTEXT):
            self._commit(held=self.held - amount, total=self.total - amount, locked=True)

    def check_invariants(self) -> None:
        """Raise BalanceInvariantError if the current balances are inconsistent."""
        with localcontext(LEDGER_CONTEXT):
            self._verify(self.available, self.held, self.total)

    def snapshot(self, precision: int = DEFAULT_PRECISION) -> AccountSnapshot:
        return AccountSnapshot(
            client=self.client_id,
            available=round_half_up(self.available, precision),
            held=round_half_up(self.held, precision),
            total=round_half_up(self.total, precision),
            locked=self.locked
        )

    def _ensure_unlocked(self) -> None:
        if self.locked:
            raise LockedAccount(self.client_id)

    def _ensure_available(self, amount: Decimal) -> None:
        if amount > self.available:
            raise InsufficientFunds(self.client_id, amount, "available", self.available)

    def _ensure_held(self, amount: Decimal) -> None:
        if amount > self.held:
            raise InsufficientFunds(self.client_id, amount, "held", self.held)

    def _verify(self, available: Decimal, held: Decimal, total: Decimal) -> None:
        if available < 0:
            raise BalanceInvariantError(f"Account {self.client_id}: available would be negative ({available})")
        if held < 0:
            raise BalanceInvariantError(f"Account {self.client_id}: held would be negative ({held})")
        if total != available + held:
            raise BalanceInvariantError(
                f"Account {self.client_id}: total {total} != available {available} + held {held}"
            )

    def _commit(
        self,
        available: Optional[Decimal] = None,
        held: Optional[Decimal] = None,
        total: Optional[Decimal] = None,
        locked: Optional[bool] = None
    ) -> None:
        new_available = self.available if available is None else available
        new_held = self.held if held is None else held
        new_total = self.total if total is None else total

        self._verify(new_available, new_held, new_total)

        self.available = new_available
        self.held = new_held
        self.total = new_total
        if locked is not None:
            self.locked = locked


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: Literal["healthy"] = Field(..., description="Service health status")
    version: str = Field(..., description="Application version")
    timestamp: datetime = Field(default_factory=datetime.now)

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
import structlog

from errors import AccountError
from models import Account, Instruction, InstructionType, RecordedInstruction
from repositories import AccountRepository, InstructionHistory

# Configure structured logging
logger = structlog.get_logger()


class Outcome(str, Enum):
    applied = "applied"
    skipped = "skipped"
    rejected = "rejected"


@dataclass
class ReplaySummary:
    applied: int = 0
    skipped: int = 0
    rejected: int = 0

    @property
    def processed(self) -> int:
        return self.applied + self.skipped + self.rejected

    def count(self, outcome: Outcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)


class PaymentEngine:
    """Applies payment instructions, in order, to the owned account collection."""

    def __init__(self, account_repo: AccountRepository, history: InstructionHistory):
        self.account_repo = account_repo
        self.history = history
        self._handlers = {
            InstructionType.deposit: self._process_deposit,
            InstructionType.withdrawal: self._process_withdrawal,
            InstructionType.dispute: self._process_dispute,
            InstructionType.resolve: self._process_resolve,
            InstructionType.chargeback: self._process_chargeback,
        }

    def process(self, instructions: Iterable[Instruction]) -> ReplaySummary:
        """Fold every instruction into the accounts. Never aborts on a bad one."""
        summary = ReplaySummary()
        for instruction in instructions:
            summary.count(self.apply(instruction))

        logger.info(
            "Replay finished",
            processed=summary.processed,
            applied=summary.applied,
            skipped=summary.skipped,
            rejected=summary.rejected,
            accounts=len(self.account_repo)
        )
        return summary

    def apply(self, instruction: Instruction) -> Outcome:
        account = self.account_repo.get_or_create(instruction.client_id)
        handler = self._handlers[instruction.type]

        try:
            outcome = handler(account, instruction)
        except AccountError as e:
            logger.warning(
                "Instruction rejected by account",
                type=instruction.type.value,
                client_id=instruction.client_id,
                tx=instruction.reference_id,
                error=type(e).__name__,
                detail=str(e)
            )
            outcome = Outcome.rejected

        # Always attempt to record; first write wins
        self.history.record(instruction)
        return outcome

    def _process_deposit(self, account: Account, instruction: Instruction) -> Outcome:
        if self._is_duplicate(instruction):
            return Outcome.skipped
        account.deposit(instruction.amount)
        logger.debug(
            "Deposit applied",
            client_id=account.client_id,
            tx_id=instruction.tx_id,
            amount=str(instruction.amount),
            available=str(account.available)
        )
        return Outcome.applied

    def _process_withdrawal(self, account: Account, instruction: Instruction) -> Outcome:
        if self._is_duplicate(instruction):
            return Outcome.skipped
        account.withdrawal(instruction.amount)
        logger.debug(
            "Withdrawal applied",
            client_id=account.client_id,
            tx_id=instruction.tx_id,
            amount=str(instruction.amount),
            available=str(account.available)
        )
        return Outcome.applied

    def _process_dispute(self, account: Account, instruction: Instruction) -> Outcome:
        target = self._eligible_target(account, instruction, expect_disputed=False)
        if target is None:
            return Outcome.skipped

        account.dispute(target.amount)
        self.history.mark_disputed(target.tx_id)
        logger.debug(
            "Dispute opened",
            client_id=account.client_id,
            target_id=target.tx_id,
            held=str(account.held)
        )
        return Outcome.applied

    def _process_resolve(self, account: Account, instruction: Instruction) -> Outcome:
        target = self._eligible_target(account, instruction, expect_disputed=True)
        if target is None:
            return Outcome.skipped

        account.resolve(target.amount)
        self.history.clear_disputed(target.tx_id)
        logger.debug(
            "Dispute resolved",
            client_id=account.client_id,
            target_id=target.tx_id,
            available=str(account.available)
        )
        return Outcome.applied

    def _process_chargeback(self, account: Account, instruction: Instruction) -> Outcome:
        target = self._eligible_target(account, instruction, expect_disputed=True)
        if target is None:
            return Outcome.skipped

        account.chargeback(target.amount)
        logger.info(
            "Chargeback applied, account locked",
            client_id=account.client_id,
            target_id=target.tx_id,
            total=str(account.total)
        )
        return Outcome.applied

    def _is_duplicate(self, instruction: Instruction) -> bool:
        if self.history.lookup(instruction.tx_id) is None:
            return False
        logger.debug(
            "Duplicate transaction ignored",
            type=instruction.type.value,
            client_id=instruction.client_id,
            tx_id=instruction.tx_id
        )
        return True

    def _eligible_target(
        self,
        account: Account,
        instruction: Instruction,
        expect_disputed: bool
    ) -> Optional[RecordedInstruction]:
        """Referenced record, or None when the instruction must be ignored."""
        target = self.history.lookup(instruction.target_id)

        if target is None:
            reason = "unknown transaction"
        elif target.client_id != account.client_id:
            reason = "client mismatch"
        elif target.disputed != expect_disputed:
            reason = "already disputed" if target.disputed else "not disputed"
        else:
            return target

        logger.debug(
            "Instruction ignored",
            type=instruction.type.value,
            client_id=instruction.client_id,
            target_id=instruction.target_id,
            reason=reason
        )
        return None


# Factory function for dependency injection
def get_payment_engine(
    account_repo: AccountRepository,
    history: InstructionHistory
) -> PaymentEngine:
    return PaymentEngine(account_repo, history)

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import structlog

from models import Account, AccountSnapshot, Instruction, RecordedInstruction, DEFAULT_PRECISION

logger = structlog.get_logger()


class AccountRepository(ABC):
    @abstractmethod
    def get_or_create(self, client_id: int) -> Account:
        """Return the client's account, opening an empty one on first reference."""
        pass

    @abstractmethod
    def get(self, client_id: int) -> Optional[Account]:
        """Get account. Returns None if the client was never referenced."""
        pass

    @abstractmethod
    def snapshots(self, precision: int = DEFAULT_PRECISION) -> List[AccountSnapshot]:
        """Rounded view of every account, ascending by client id."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class InstructionHistory(ABC):
    @abstractmethod
    def record(self, instruction: Instruction) -> bool:
        """Store a deposit/withdrawal unless its id is already known."""
        pass

    @abstractmethod
    def lookup(self, tx_id: int) -> Optional[RecordedInstruction]:
        """Get the first instruction recorded under tx_id."""
        pass

    @abstractmethod
    def mark_disputed(self, tx_id: int) -> bool:
        """Flag a recorded instruction as disputed. False if tx_id is unknown."""
        pass

    @abstractmethod
    def clear_disputed(self, tx_id: int) -> bool:
        """Clear the disputed flag. False if tx_id is unknown."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass

    def __contains__(self, tx_id: int) -> bool:
        return self.lookup(tx_id) is not None


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self.accounts: Dict[int, Account] = {}

    def get_or_create(self, client_id: int) -> Account:
        account = self.accounts.get(client_id)
        if account is None:
            account = Account(client_id=client_id)
            self.accounts[client_id] = account
            logger.debug("Account opened", client_id=client_id)
        return account

    def get(self, client_id: int) -> Optional[Account]:
        return self.accounts.get(client_id)

    def snapshots(self, precision: int = DEFAULT_PRECISION) -> List[AccountSnapshot]:
        return [
            self.accounts[client_id].snapshot(precision)
            for client_id in sorted(self.accounts)
        ]

    def __len__(self) -> int:
        return len(self.accounts)


class InMemoryInstructionHistory(InstructionHistory):
    def __init__(self):
        self.store: Dict[int, RecordedInstruction] = {}

    def record(self, instruction: Instruction) -> bool:
        # Dispute-lifecycle instructions only reference existing records
        if not instruction.type.moves_funds:
            return False
        if instruction.tx_id in self.store:
            return False
        self.store[instruction.tx_id] = RecordedInstruction.from_instruction(instruction)
        return True

    def lookup(self, tx_id: int) -> Optional[RecordedInstruction]:
        return self.store.get(tx_id)

    def mark_disputed(self, tx_id: int) -> bool:
        return self._set_disputed(tx_id, True)

    def clear_disputed(self, tx_id: int) -> bool:
        return self._set_disputed(tx_id, False)

    def __len__(self) -> int:
        return len(self.store)

    def _set_disputed(self, tx_id: int, disputed: bool) -> bool:
        recorded = self.store.get(tx_id)
        if recorded is None:
            logger.error("Cannot change dispute state of unknown transaction", tx_id=tx_id, disputed=disputed)
            return False
        recorded.disputed = disputed
        return True


def get_account_repository() -> AccountRepository:
    return InMemoryAccountRepository()


def get_instruction_history() -> InstructionHistory:
    return InMemoryInstructionHistory()

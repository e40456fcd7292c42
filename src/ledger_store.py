import threading
from typing import Dict, List, Optional

from errors import DuplicateTransactionError
from models import AccountSnapshot, ClientAccount, TransactionRecord


class LedgerStore:
    """
    Stores client accounts and the deposit/withdrawal history needed for disputes.
    Holds no business rules; the engine decides what gets stored.
    """

    def __init__(self):
        self._accounts: Dict[int, ClientAccount] = {}
        self._transactions: Dict[int, TransactionRecord] = {}

        # Accounts are only ever inserted, never removed, so lookups can skip the lock.
        # The lock only serializes creation so two threads never build two accounts
        # (and two account locks) for the same client.
        self._accounts_lock = threading.Lock()
        self._transactions_lock = threading.Lock()

    def get_or_create_account(self, client_id: int) -> ClientAccount:
        """Get existing account or create new one."""
        account = self._accounts.get(client_id)
        if account is not None:
            return account
        with self._accounts_lock:
            if client_id not in self._accounts:
                self._accounts[client_id] = ClientAccount(client_id=client_id)
            return self._accounts[client_id]

    def get_client_lock(self, client_id: int) -> threading.Lock:
        """
        Get the lock guarding a client's account.
        Consumers acquire this before applying any event for that client.
        """
        return self.get_or_create_account(client_id).lock

    def record_transaction(self, record: TransactionRecord) -> None:
        """Store an accepted deposit or withdrawal for future dispute lookups."""
        with self._transactions_lock:
            if record.tx_id in self._transactions:
                raise DuplicateTransactionError(record.tx_id)
            self._transactions[record.tx_id] = record

    def find_transaction(self, tx_id: int) -> Optional[TransactionRecord]:
        return self._transactions.get(tx_id)

    def get_all_accounts(self) -> Dict[int, ClientAccount]:
        """Return all accounts (for final output)."""
        return dict(self._accounts)

    def snapshot(self) -> List[AccountSnapshot]:
        """End-of-run view of every account, ordered by client id."""
        return [self._accounts[client_id].snapshot() for client_id in sorted(self._accounts)]

    def __len__(self) -> int:
        return len(self._accounts)

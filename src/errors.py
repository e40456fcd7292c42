class LedgerInvariantError(Exception):
    """
    Raised when a mutation would break a ledger invariant
    (negative balance, dispute state regression).
    Signals a bug, never a business outcome.
    """


class AccountHaltedError(LedgerInvariantError):
    """Raised for events targeting an account halted by an earlier invariant violation."""

    def __init__(self, client_id: int):
        super().__init__(f"Account {client_id} is halted after an invariant violation")
        self.client_id = client_id


class DuplicateTransactionError(Exception):
    """Raised by the ledger store when a transaction id is already recorded."""

    def __init__(self, transaction_id: int):
        super().__init__(f"Duplicate transaction #{transaction_id}")
        self.transaction_id = transaction_id

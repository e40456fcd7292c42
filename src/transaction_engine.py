import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Set, Union

from errors import AccountHaltedError, DuplicateTransactionError, LedgerInvariantError
from ledger_store import LedgerStore
from models import (
    AccountSnapshot,
    Chargeback,
    ClientAccount,
    Deposit,
    Dispute,
    DisputeState,
    Event,
    Funds,
    Outcome,
    OutcomeReason,
    OutcomeStatus,
    ProcessingStats,
    Resolve,
    TransactionRecord,
    Withdrawal,
)

logger = logging.getLogger(__name__)


def log_outcome(event: Event, outcome: Outcome) -> None:
    if outcome.status == OutcomeStatus.REJECTED:
        logger.warning(f"{event}: rejected ({outcome.reason.value})")
    elif outcome.status == OutcomeStatus.IGNORED:
        logger.info(f"{event}: ignored ({outcome.reason.value})")
    else:
        logger.debug(f"{event}: applied")


class TransactionEngine:
    """
    Applies ledger events against a LedgerStore and owns every business rule:
    the account state machine, the dispute lifecycle and the accept/ignore/reject policy.

    Events must be applied in stream order per client. When used from several
    threads, the caller holds the client's account lock around apply().
    """

    def __init__(self, store: Optional[LedgerStore] = None):
        self._store = store if store is not None else LedgerStore()
        self._stats = ProcessingStats()
        self._halted_clients: Set[int] = set()

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def stats(self) -> ProcessingStats:
        return self._stats

    @property
    def halted_clients(self) -> Set[int]:
        return set(self._halted_clients)

    def apply(self, event: Event) -> Outcome:
        """
        Apply a single event.

        Returns:
            Applied: state was mutated
            Ignored: well-formed event that cannot apply (e.g. frozen account, unknown transaction)
            Rejected: malformed event (negative amount, duplicate transaction id)

        Raises:
            LedgerInvariantError: a mutation would have broken a ledger invariant.
                The client is halted and every later event for it raises AccountHaltedError.
        """
        if event.client_id in self._halted_clients:
            raise AccountHaltedError(event.client_id)

        account = self._store.get_or_create_account(event.client_id)

        if account.is_frozen:
            return Outcome.ignored(OutcomeReason.ACCOUNT_FROZEN)

        try:
            match event:
                case Deposit():
                    outcome = self._handle_deposit(account, event)
                case Withdrawal():
                    outcome = self._handle_withdrawal(account, event)
                case Dispute():
                    outcome = self._handle_dispute(account, event)
                case Resolve():
                    outcome = self._handle_resolve(account, event)
                case Chargeback():
                    outcome = self._handle_chargeback(account, event)
                case _:
                    raise TypeError(f"Unsupported event type: {type(event).__name__}")

            if outcome.is_applied:
                self._verify_balances(account)
        except LedgerInvariantError:
            self._halted_clients.add(event.client_id)
            raise

        return outcome

    def process_event(self, event: Event) -> Optional[Outcome]:
        """
        Apply an event, record stats and log the outcome.
        Returns None when the event could not be applied because its account is halted.
        """
        try:
            outcome = self.apply(event)
        except AccountHaltedError as e:
            logger.warning(f"{event}: skipped, {e}")
            self._stats.record_halted()
            return None
        except LedgerInvariantError as e:
            logger.error(f"{event}: ledger invariant violated, halting client {event.client_id}: {e}")
            self._stats.record_halted()
            return None

        self._stats.record(outcome)
        log_outcome(event, outcome)
        return outcome

    def process(self, events: Iterable[Event]) -> List[AccountSnapshot]:
        """Apply every event in stream order and return the final account states."""
        halted_events = []
        for event in events:
            if self.process_event(event) is None:
                halted_events.append(event)

        if halted_events:
            logger.warning(f"{len(halted_events)} events could not be applied to halted accounts")
            for event in halted_events:
                logger.warning(f"  Discarding: {event}")

        return self.snapshot()

    def snapshot(self) -> List[AccountSnapshot]:
        return self._store.snapshot()

    def _handle_deposit(self, account: ClientAccount, deposit: Deposit) -> Outcome:
        outcome = self._check_new_transaction(deposit)
        if outcome is not None:
            return outcome

        previous = account.available
        account.credit(deposit.amount)
        return self._record_or_restore(account, previous, deposit)

    def _handle_withdrawal(self, account: ClientAccount, withdrawal: Withdrawal) -> Outcome:
        outcome = self._check_new_transaction(withdrawal)
        if outcome is not None:
            return outcome

        if account.available < withdrawal.amount:
            return Outcome.ignored(OutcomeReason.INSUFFICIENT_FUNDS)

        previous = account.available
        account.debit(withdrawal.amount)
        return self._record_or_restore(account, previous, withdrawal)

    def _record_or_restore(
        self, account: ClientAccount, previous: Decimal, event: Union[Deposit, Withdrawal]
    ) -> Outcome:
        # The balance moves first; a transaction is only recorded once its amount is on the account.
        try:
            self._store.record_transaction(TransactionRecord.from_event(event))
        except DuplicateTransactionError:
            account.available = Funds(previous)
            return Outcome.rejected(OutcomeReason.DUPLICATE_TRANSACTION)
        return Outcome.applied()

    def _handle_dispute(self, account: ClientAccount, dispute: Dispute) -> Outcome:
        original = self._store.find_transaction(dispute.tx_id)
        outcome = self._check_disputed_transaction(original, dispute, expected=DisputeState.NONE)
        if outcome is not None:
            return outcome

        # Withdrawals are held the same way as deposits: the amount moves from available to held.
        if account.available < original.amount:
            return Outcome.ignored(OutcomeReason.INSUFFICIENT_FUNDS)

        account.hold(original.amount)
        original.transition_to(DisputeState.DISPUTED)
        return Outcome.applied()

    def _handle_resolve(self, account: ClientAccount, resolve: Resolve) -> Outcome:
        original = self._store.find_transaction(resolve.tx_id)
        outcome = self._check_disputed_transaction(original, resolve, expected=DisputeState.DISPUTED)
        if outcome is not None:
            return outcome

        account.release_hold(original.amount)
        original.transition_to(DisputeState.RESOLVED)
        return Outcome.applied()

    def _handle_chargeback(self, account: ClientAccount, chargeback: Chargeback) -> Outcome:
        original = self._store.find_transaction(chargeback.tx_id)
        outcome = self._check_disputed_transaction(original, chargeback, expected=DisputeState.DISPUTED)
        if outcome is not None:
            return outcome

        account.remove_held(original.amount)
        original.transition_to(DisputeState.CHARGED_BACK)
        account.freeze()
        return Outcome.applied()

    def _check_new_transaction(self, event: Union[Deposit, Withdrawal]) -> Optional[Outcome]:
        if event.amount < 0:
            return Outcome.rejected(OutcomeReason.NEGATIVE_AMOUNT)
        if self._store.find_transaction(event.tx_id) is not None:
            return Outcome.rejected(OutcomeReason.DUPLICATE_TRANSACTION)
        return None

    def _check_disputed_transaction(
        self,
        original: Optional[TransactionRecord],
        event: Union[Dispute, Resolve, Chargeback],
        expected: DisputeState,
    ) -> Optional[Outcome]:
        if original is None:
            return Outcome.ignored(OutcomeReason.UNKNOWN_TRANSACTION)

        if original.client_id != event.client_id:
            return Outcome.ignored(OutcomeReason.CLIENT_MISMATCH)

        if original.dispute_state == expected:
            return None
        if original.dispute_state == DisputeState.DISPUTED:
            return Outcome.ignored(OutcomeReason.ALREADY_DISPUTED)
        if original.dispute_state == DisputeState.NONE:
            return Outcome.ignored(OutcomeReason.NOT_DISPUTED)
        return Outcome.ignored(OutcomeReason.DISPUTE_CLOSED)

    @staticmethod
    def _verify_balances(account: ClientAccount) -> None:
        # Balances assigned outside the ClientAccount mutators bypass the Funds check.
        if account.available < 0 or account.held < 0:
            raise LedgerInvariantError(
                f"Client {account.client_id}: balances out of range "
                f"(available={account.available}, held={account.held})"
            )

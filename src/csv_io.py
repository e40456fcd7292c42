import csv
import logging
from decimal import MAX_EMAX, MIN_EMIN, ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Dict, Iterable, Iterator, List, Optional, TextIO

from models import (
    AccountSnapshot,
    Chargeback,
    Deposit,
    Dispute,
    Event,
    Resolve,
    TransactionType,
    Withdrawal,
)

logger = logging.getLogger(__name__)

DEFAULT_AMOUNT_SCALE = 4
MAX_CLIENT_ID = 2**16 - 1
MAX_TRANSACTION_ID = 2**32 - 1
MAX_AMOUNT_DIGITS = 64

REPORT_HEADER = ["client", "available", "held", "total", "locked"]


class EventParseError(ValueError):
    """Raised when a CSV row cannot be turned into an event."""


def parse_row(row: Dict[str, Optional[str]], amount_scale: int = DEFAULT_AMOUNT_SCALE) -> Event:
    """
    Parse a CSV row into an event.
    Negative amounts are kept as-is; rejecting them is the engine's job.
    """
    normalized = {
        k.strip().lower(): (v or "").strip() for k, v in row.items() if k is not None
    }

    try:
        transaction_type = TransactionType(normalized["type"].lower())
    except KeyError:
        raise EventParseError("missing 'type' column") from None
    except ValueError:
        raise EventParseError(f"unknown transaction type {normalized['type']!r}") from None

    client_id = _parse_id(normalized, "client", MAX_CLIENT_ID)
    transaction_id = _parse_id(normalized, "tx", MAX_TRANSACTION_ID)
    amount_str = normalized.get("amount", "")

    if transaction_type in (TransactionType.DEPOSIT, TransactionType.WITHDRAWAL):
        if not amount_str:
            raise EventParseError(f"{transaction_type.value} requires an amount")
        amount = _parse_amount(amount_str, amount_scale)
        event_class = Deposit if transaction_type == TransactionType.DEPOSIT else Withdrawal
        return event_class(tx_id=transaction_id, client_id=client_id, amount=amount)

    if amount_str:
        raise EventParseError(f"{transaction_type.value} must not carry an amount")

    match transaction_type:
        case TransactionType.DISPUTE:
            return Dispute(tx_id=transaction_id, client_id=client_id)
        case TransactionType.RESOLVE:
            return Resolve(tx_id=transaction_id, client_id=client_id)
        case _:
            return Chargeback(tx_id=transaction_id, client_id=client_id)


def read_events(lines: Iterable[str], amount_scale: int = DEFAULT_AMOUNT_SCALE) -> Iterator[Event]:
    """Lazily read events from CSV lines, skipping rows that cannot be parsed."""
    reader = csv.DictReader(lines, skipinitialspace=True)
    for row in reader:
        try:
            yield parse_row(row, amount_scale)
        except EventParseError as e:
            logger.warning(f"Failed to parse row {reader.line_num} {row}: {e}")


def format_amount(value: Decimal) -> str:
    """Format decimal in plain notation, removing trailing zeros."""
    normalized = value.normalize()
    return f"{normalized:f}"


def write_accounts(stream: TextIO, snapshots: Iterable[AccountSnapshot]) -> None:
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(REPORT_HEADER)
    for snapshot in snapshots:
        writer.writerow(format_snapshot(snapshot))


def format_snapshot(snapshot: AccountSnapshot) -> List[str]:
    return [
        str(snapshot.client_id),
        format_amount(snapshot.available),
        format_amount(snapshot.held),
        format_amount(snapshot.total),
        str(snapshot.frozen).lower(),
    ]


def _parse_id(normalized: Dict[str, str], column: str, upper_bound: int) -> int:
    raw = normalized.get(column, "")
    try:
        value = int(raw)
    except ValueError:
        raise EventParseError(f"invalid {column} id {raw!r}") from None
    if not 0 <= value <= upper_bound:
        raise EventParseError(f"{column} id {value} out of range 0..{upper_bound}")
    return value


def _parse_amount(raw: str, amount_scale: int) -> Decimal:
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise EventParseError(f"invalid amount {raw!r}") from None
    if not amount.is_finite():
        raise EventParseError(f"invalid amount {raw!r}")

    integer_digits = max(amount.adjusted() + 1, 1)
    if integer_digits > MAX_AMOUNT_DIGITS:
        raise EventParseError(f"amount {raw!r} exceeds {MAX_AMOUNT_DIGITS} integer digits")

    # Wide enough to hold every integer digit plus the fraction, so quantize never overflows prec.
    context = Context(
        prec=integer_digits + amount_scale + 1,
        rounding=ROUND_HALF_UP,
        Emax=MAX_EMAX,
        Emin=MIN_EMIN,
    )
    return amount.quantize(Decimal(1).scaleb(-amount_scale), context=context)

"""
Balance Mutator

Pure functions deciding how much a transaction moves a balance.

Sign table (applied to the transaction total):

    kind       customer   safe
    sales         +        n/a
    purchase      -        n/a
    cash_in       -         +
    cash_out      +         -

A customer balance is what the customer owes the business; a safe
balance is cash on hand. Every transaction contributes at most once
per affected entity. Reverting is the same contribution negated.
"""

from decimal import Decimal
from enum import Enum
from typing import Union

from shop_ledger.models.ledger import Balances, Transaction, TransactionKind


class LedgerRole(str, Enum):
    """Which balance map a contribution targets."""
    CUSTOMER = "customer"
    SAFE = "safe"


_SIGNS: dict[tuple[TransactionKind, LedgerRole], int] = {
    (TransactionKind.SALES, LedgerRole.CUSTOMER): 1,
    (TransactionKind.PURCHASE, LedgerRole.CUSTOMER): -1,
    (TransactionKind.CASH_IN, LedgerRole.CUSTOMER): -1,
    (TransactionKind.CASH_IN, LedgerRole.SAFE): 1,
    (TransactionKind.CASH_OUT, LedgerRole.CUSTOMER): 1,
    (TransactionKind.CASH_OUT, LedgerRole.SAFE): -1,
}


def affects(kind: Union[TransactionKind, str], role: Union[LedgerRole, str]) -> bool:
    """Does a transaction of this kind move balances of this role at all?"""
    return (TransactionKind(kind), LedgerRole(role)) in _SIGNS


def contribution(kind: Union[TransactionKind, str], role: Union[LedgerRole, str]) -> int:
    """
    Sign (+1 or -1) a kind applies to a role's balance.

    Raises:
        ValueError: invoice kinds never touch a safe
    """
    key = (TransactionKind(kind), LedgerRole(role))
    try:
        return _SIGNS[key]
    except KeyError:
        raise ValueError(f"{key[0].value} does not affect {key[1].value} balances")


def signed_delta(
    kind: Union[TransactionKind, str],
    total: Decimal,
    role: Union[LedgerRole, str],
    inverse: bool = False,
) -> Decimal:
    """Signed amount to add to the balance for this kind and total."""
    sign = contribution(kind, role)
    if inverse:
        sign = -sign
    return total * sign


def apply_contribution(
    balances: Balances,
    transaction: Transaction,
    role: Union[LedgerRole, str],
    inverse: bool = False,
) -> Balances:
    """
    Return new balances with the transaction's contribution applied
    (or removed when `inverse`).

    The input is never modified.
    """
    delta = signed_delta(transaction.kind, transaction.total, role, inverse=inverse)
    return balances.adjusted(transaction.currency, delta)

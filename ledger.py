"""Balance posting rules.

Every change to ``Account.balance_cents`` goes through :class:`LedgerEngine`.
The direction of a posting is derived from the transaction type and the
account types involved, never from the sign of the amount:

=========  ===========  ==================  ===================
type       source type  source delta        destination delta
=========  ===========  ==================  ===================
income     any          ``+amount``         n/a
expense    normal       ``-amount``         n/a
expense    credit_card  ``+amount`` (debt)  n/a
transfer   any          ``-amount``         ``+amount`` normal,
                                            ``-amount`` credit_card
=========  ===========  ==================  ===================

Reversal applies the same deltas negated, so posting a transaction and then
reversing it leaves every balance it touched unchanged.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from errors import NotFound, ValidationError
from models import (
    LIABILITY_ACCOUNT_TYPES,
    Account,
    AccountType,
    Transaction,
    TransactionType,
)


logger = logging.getLogger(__name__)


def leg_delta(
    txn_type: TransactionType,
    amount_cents: int,
    account_type: AccountType,
    *,
    destination: bool = False,
) -> int:
    """Signed balance delta for one leg of a posting."""
    if amount_cents < 0:
        raise ValidationError("Amount must not be negative")
    is_liability = account_type in LIABILITY_ACCOUNT_TYPES

    if destination:
        if txn_type != TransactionType.transfer:
            raise ValidationError("Only transfers have a destination leg")
        # Paying into a credit card shrinks the debt.
        return -amount_cents if is_liability else amount_cents

    if txn_type == TransactionType.income:
        return amount_cents
    if txn_type == TransactionType.expense:
        return amount_cents if is_liability else -amount_cents
    if txn_type == TransactionType.transfer:
        return -amount_cents
    raise ValidationError(f"Unsupported transaction type: {txn_type}")


def posting_deltas(
    txn_type: TransactionType,
    amount_cents: int,
    source_type: AccountType,
    dest_type: Optional[AccountType] = None,
) -> tuple[int, Optional[int]]:
    source = leg_delta(txn_type, amount_cents, source_type)
    if txn_type != TransactionType.transfer:
        return source, None
    if dest_type is None:
        raise ValidationError("Transfer requires a destination account")
    return source, leg_delta(txn_type, amount_cents, dest_type, destination=True)


class LedgerEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _account(self, account_id: Optional[int]) -> Optional[Account]:
        if account_id is None:
            return None
        return self.session.get(Account, account_id)

    def _apply(
        self, account: Account, delta: int, *, action: str, txn: Transaction
    ) -> None:
        account.balance_cents = account.balance_cents + delta
        logger.debug(
            f"ledger_{action}: type={txn.type.value} account={account.id} "
            f"delta={delta} balance={account.balance_cents}"
        )

    def post(
        self,
        txn: Transaction,
        *,
        source: Optional[Account] = None,
        destination: Optional[Account] = None,
    ) -> None:
        """Apply the balance effect of ``txn``.

        All account lookups happen before the first balance write, so a
        missing account leaves every balance untouched.
        """
        source = source or self._account(txn.account_id)
        if source is None:
            raise NotFound("Account not found")
        if txn.type == TransactionType.transfer:
            destination = destination or self._account(txn.to_account_id)
            if destination is None:
                raise NotFound("Destination account not found")
        else:
            destination = None

        source_delta, dest_delta = posting_deltas(
            txn.type,
            txn.amount_cents,
            source.type,
            destination.type if destination is not None else None,
        )
        self._apply(source, source_delta, action="post", txn=txn)
        if destination is not None and dest_delta is not None:
            self._apply(destination, dest_delta, action="post", txn=txn)

    def reverse(self, txn: Transaction) -> None:
        """Undo the balance effect of ``txn``.

        Legs whose account no longer exists are skipped; reversal never fails
        because of a removed account.
        """
        source = self._account(txn.account_id)
        if source is None:
            logger.warning(
                f"ledger_reverse_skipped: txn={txn.id} "
                f"account={txn.account_id} reason=account_missing"
            )
        else:
            delta = leg_delta(txn.type, txn.amount_cents, source.type)
            self._apply(source, -delta, action="reverse", txn=txn)

        if txn.type != TransactionType.transfer:
            return
        destination = self._account(txn.to_account_id)
        if destination is None:
            logger.warning(
                f"ledger_reverse_skipped: txn={txn.id} "
                f"account={txn.to_account_id} reason=destination_missing"
            )
            return
        delta = leg_delta(
            txn.type, txn.amount_cents, destination.type, destination=True
        )
        self._apply(destination, -delta, action="reverse", txn=txn)

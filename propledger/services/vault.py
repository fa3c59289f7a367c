"""
Vault accounting primitives.

Every function mutates a VaultAccount row that the caller already holds inside
its unit of work; none of them commit or write Transaction rows. The only
invariant they protect is ``0 <= locked_balance <= total_balance``.
"""
import logging

from propledger.errors import (
    ActivePositionExists, FundsProviderError, InsufficientFunds, InvariantViolation, PaymentFailed,
)
from propledger.extensions import db, unit_of_work
from propledger.models import BorrowPosition, Transaction, VaultAccount
from propledger.models.borrow import POSITION_ACTIVE
from propledger.models.transaction import TX_DEPOSIT, TX_WITHDRAWAL, TX_PROCESSING, TX_FAILED
from propledger.utils.money import ZERO, money

logger = logging.getLogger(__name__)

_COUNTERS = {
    "deposited": "total_deposited",
    "withdrawn": "total_withdrawn",
    "earned": "total_earned",
}


def _amount(amount):
    amount = money(amount)
    if amount < ZERO:
        raise InvariantViolation("Vault amounts must not be negative", amount=str(amount))
    return amount


def _bump(account, counter, amount):
    if counter is None:
        return
    attr = _COUNTERS[counter]
    setattr(account, attr, money(getattr(account, attr) or ZERO) + amount)


def credit(account, amount, counter=None):
    amount = _amount(amount)
    account.total_balance = money(account.total_balance or ZERO) + amount
    _bump(account, counter, amount)
    return account


def debit(account, amount, counter=None):
    amount = _amount(amount)
    total = money(account.total_balance or ZERO)
    if amount > total - money(account.locked_balance or ZERO):
        raise InsufficientFunds(
            "Insufficient vault balance",
            available=str(total - money(account.locked_balance or ZERO)),
            required=str(amount),
        )
    account.total_balance = total - amount
    _bump(account, counter, amount)
    return account


def lock(account, amount):
    amount = _amount(amount)
    if amount > account.available_balance:
        raise InsufficientFunds(
            "Cannot lock more than the available balance",
            available=str(money(account.available_balance)),
            required=str(amount),
        )
    account.locked_balance = money(account.locked_balance or ZERO) + amount
    return account


def unlock(account, amount):
    amount = _amount(amount)
    locked = money(account.locked_balance or ZERO)
    if amount > locked:
        logger.error("Unlock of %s exceeds locked balance %s on vault %s", amount, locked, account.id)
        raise InvariantViolation(
            "Unlock exceeds locked balance",
            vault_account_id=account.id,
            locked=str(locked),
            requested=str(amount),
        )
    account.locked_balance = locked - amount
    return account


def escrow_collateral(account, value):
    """Bring pledged token value into the vault as a locked, non-spendable amount."""
    credit(account, value)
    lock(account, value)


def release_collateral(account, value):
    unlock(account, value)
    debit(account, value)


def get_vault(user_id, for_update=False):
    query = VaultAccount.query.filter_by(user_id=user_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_or_create_vault(user_id, for_update=False):
    """Explicit lazy constructor; the caller's unit of work persists the new row."""
    account = get_vault(user_id, for_update=for_update)
    if account is None:
        account = VaultAccount(
            user_id=user_id,
            total_balance=ZERO,
            locked_balance=ZERO,
            total_deposited=ZERO,
            total_withdrawn=ZERO,
            total_earned=ZERO,
        )
        db.session.add(account)
        db.session.flush()
        logger.info("Created vault account %s for user %s", account.id, user_id)
    return account


def reset_vault(user_id):
    """Zero every balance and counter. Demo/test utility only.

    Refused while the user has an active borrow position, whose escrowed
    collateral must stay locked until the loan is repaid.
    """
    with unit_of_work():
        position = BorrowPosition.query.filter_by(user_id=user_id, status=POSITION_ACTIVE).first()
        if position is not None:
            raise ActivePositionExists(
                "Cannot reset a vault with an active borrow position. Repay it first.",
                existing_position_id=position.id,
            )
        account = get_or_create_vault(user_id, for_update=True)
        account.total_balance = ZERO
        account.locked_balance = ZERO
        account.total_deposited = ZERO
        account.total_withdrawn = ZERO
        account.total_earned = ZERO
    logger.warning("Vault for user %s reset to zero", user_id)
    return account


class VaultService:
    """Deposits and withdrawals through the external funds provider."""

    def __init__(self, funds_provider):
        self.funds = funds_provider

    def deposit(self, user, amount, source):
        amount = _amount(amount)
        # collect first: nothing is credited unless the money actually moved
        try:
            reference = self.funds.charge(
                source, amount, customer_id=user.funds_customer_id,
                metadata={"user_id": str(user.id), "type": "vault_deposit"},
            )
        except FundsProviderError as e:
            raise PaymentFailed("Deposit could not be collected", reason=str(e)) from e
        with unit_of_work():
            account = get_or_create_vault(user.id, for_update=True)
            credit(account, amount, counter="deposited")
            tx = Transaction(
                user_id=user.id,
                type=TX_DEPOSIT,
                amount=amount,
                description=f"Vault deposit of ${amount}",
                details={"source": source},
            )
            tx.mark_completed(reference=reference)
            db.session.add(tx)
        logger.info("Deposited %s into vault of user %s (ref %s)", amount, user.id, reference)
        return account, tx

    def withdraw(self, user, amount, destination=None):
        amount = _amount(amount)
        destination = destination or user.payout_destination
        with unit_of_work():
            account = get_or_create_vault(user.id, for_update=True)
            debit(account, amount, counter="withdrawn")
            tx = Transaction(
                user_id=user.id,
                type=TX_WITHDRAWAL,
                status=TX_PROCESSING,
                amount=amount,
                description=f"Vault withdrawal of ${amount}",
                details={"destination": destination},
            )
            db.session.add(tx)

        # the payout runs after commit; if it fails the debit is reversed
        try:
            reference = self.funds.payout(destination, amount, metadata={
                "user_id": str(user.id), "transaction_id": str(tx.id), "type": "vault_withdrawal",
            })
        except FundsProviderError as e:
            logger.warning("Payout for withdrawal %s failed; reversing debit: %s", tx.id, e)
            with unit_of_work():
                account = get_or_create_vault(user.id, for_update=True)
                account.total_balance = money(account.total_balance) + amount
                account.total_withdrawn = money(account.total_withdrawn) - amount
                tx.status = TX_FAILED
            raise PaymentFailed("Withdrawal payout failed", reason=str(e)) from e

        with unit_of_work():
            tx.mark_completed(reference=reference)
        return account, tx

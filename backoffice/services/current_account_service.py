"""
Current account service - balance ledger of suppliers and customers.

``CurrentAccount.current_balance`` and the ``balance_before``/``balance_after``
snapshots of each transaction are derived from the ordered transaction log.
Payments reach the ledger only through their PAYMENT transaction, so replay
walks transactions alone.
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
import logging

from backoffice.blueprints.metrics import balance_recalculations_total
from backoffice.database import unit_of_work
from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models import (
    CurrentAccount, CurrentAccountTransaction, TransactionType, Payment, PaymentStatus
)
from backoffice.utils.number_format import to_decimal, ZERO

logger = logging.getLogger(__name__)


def transaction_sort_key(transaction):
    """Replay order: transaction date, then insertion order."""
    return (transaction.transaction_date, transaction.id or 0)


def replay_balances(opening_balance, transactions: Iterable) -> Tuple[List[tuple], Decimal]:
    """
    Fold transaction amounts over an opening balance.

    Pure function: nothing is written. Returns the ``(transaction,
    balance_before, balance_after)`` triples in replay order and the closing
    balance.
    """
    running = Decimal(opening_balance or 0)
    rows = []
    for transaction in sorted(transactions, key=transaction_sort_key):
        before = running
        running = running + Decimal(transaction.amount)
        rows.append((transaction, before, running))
    return rows, running


def _get_account(session, account_id, lock=False) -> CurrentAccount:
    query = session.query(CurrentAccount).filter(CurrentAccount.id == account_id)
    if lock:
        query = query.with_for_update().populate_existing()
    account = query.first()
    if not account:
        raise NotFoundError(f'Cuenta corriente con ID {account_id} no encontrada')
    return account


def _account_transactions(session, account_id):
    return session.query(CurrentAccountTransaction).filter(
        CurrentAccountTransaction.current_account_id == account_id
    ).order_by(
        CurrentAccountTransaction.transaction_date.asc(),
        CurrentAccountTransaction.id.asc()
    ).all()


def _replay_account(session, account, from_date: Optional[datetime] = None) -> int:
    """Rewrite snapshots and cached balance of one account; caller owns the commit."""
    transactions = _account_transactions(session, account.id)

    start = Decimal(account.opening_balance or 0)
    if from_date is not None:
        earlier = [t for t in transactions if t.transaction_date < from_date]
        start += sum((Decimal(t.amount) for t in earlier), ZERO)
        transactions = [t for t in transactions if t.transaction_date >= from_date]

    rows, closing = replay_balances(start, transactions)
    for transaction, before, after in rows:
        transaction.balance_before = before
        transaction.balance_after = after

    account.current_balance = closing
    if rows:
        last_date = rows[-1][0].transaction_date
        if account.last_activity_date is None or last_date > account.last_activity_date:
            account.last_activity_date = last_date

    return len(rows)


def recalculate_account_balances(session, account_id, from_date: Optional[datetime] = None) -> dict:
    """
    Replay one account's ledger, optionally only from ``from_date`` on.

    Earlier transactions are folded into the starting balance without being
    rewritten. Idempotent.
    """
    account = _get_account(session, account_id)

    with unit_of_work(session):
        account = _get_account(session, account_id, lock=True)
        processed = _replay_account(session, account, from_date)

    balance_recalculations_total.labels(scope='account').inc()
    logger.info(f"Account {account.code} replayed: {processed} transactions, balance={account.current_balance}")
    return {
        'account_id': account.id,
        'transactions_processed': processed,
        'current_balance': Decimal(account.current_balance),
    }


def recalculate_all_balances(session) -> dict:
    """
    Replay every current account in one commit.

    Returns:
        dict with ``updated_accounts``, ``total_transactions_processed`` and
        ``total_payments_processed`` (completed payments seen, not replayed)
    """
    updated_accounts = 0
    total_transactions = 0
    total_payments = 0

    with unit_of_work(session):
        accounts = session.query(CurrentAccount).order_by(CurrentAccount.id).with_for_update().all()
        for account in accounts:
            total_transactions += _replay_account(session, account)
            total_payments += session.query(Payment).filter(
                Payment.current_account_id == account.id,
                Payment.status == PaymentStatus.COMPLETED
            ).count()
            updated_accounts += 1

    balance_recalculations_total.labels(scope='all').inc()
    logger.info(
        f"Balances recalculated: {updated_accounts} accounts, "
        f"{total_transactions} transactions, {total_payments} payments"
    )
    return {
        'updated_accounts': updated_accounts,
        'total_transactions_processed': total_transactions,
        'total_payments_processed': total_payments,
    }


def _parse_type(transaction_type) -> TransactionType:
    if isinstance(transaction_type, TransactionType):
        return transaction_type
    try:
        return TransactionType(str(transaction_type).upper())
    except ValueError:
        raise ValidationError(f'Tipo de transacción inválido: {transaction_type}', field='type')


def _append_transaction(session, account, transaction_type, amount, transaction_date,
                        description=None, reference_number=None, invoice_id=None,
                        payment_id=None, user_id=None) -> CurrentAccountTransaction:
    """Append at the tail of the ledger, or replay from a backdated entry."""
    last = session.query(CurrentAccountTransaction).filter(
        CurrentAccountTransaction.current_account_id == account.id
    ).order_by(
        CurrentAccountTransaction.transaction_date.desc(),
        CurrentAccountTransaction.id.desc()
    ).first()

    balance_before = Decimal(account.current_balance or 0)
    transaction = CurrentAccountTransaction(
        current_account_id=account.id,
        transaction_date=transaction_date,
        type=transaction_type,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_before + amount,
        description=description,
        reference_number=reference_number,
        invoice_id=invoice_id,
        payment_id=payment_id,
        user_id=user_id
    )
    session.add(transaction)
    session.flush()

    if last is not None and transaction_date < last.transaction_date:
        logger.info(f"Backdated transaction on account {account.code}, replaying from {transaction_date.isoformat()}")
        _replay_account(session, account, from_date=transaction_date)
    else:
        account.current_balance = balance_before + amount

    if account.last_activity_date is None or transaction_date > account.last_activity_date:
        account.last_activity_date = transaction_date

    return transaction


def post_transaction(session, account_id, transaction_type, amount, transaction_date: Optional[datetime] = None,
                     description=None, reference_number=None, invoice_id=None, user_id=None) -> CurrentAccountTransaction:
    """
    Post a signed transaction to an account.

    The account row is locked; the new entry takes the cached balance as its
    ``balance_before``. A transaction dated before the latest entry replays
    the ledger from its date so later snapshots stay consistent.

    Raises:
        NotFoundError: unknown account
        ValidationError: bad type or amount
    """
    transaction_type = _parse_type(transaction_type)
    amount = to_decimal(amount, 'amount')
    if amount == 0:
        raise ValidationError('El monto debe ser distinto de 0', field='amount')

    _get_account(session, account_id)
    transaction_date = transaction_date or datetime.now()

    with unit_of_work(session):
        account = _get_account(session, account_id, lock=True)
        transaction = _append_transaction(
            session, account, transaction_type, amount, transaction_date,
            description=description, reference_number=reference_number,
            invoice_id=invoice_id, user_id=user_id
        )

    logger.info(
        f"Transaction {transaction_type.value} {amount} posted on account {account.code} "
        f"(balance {transaction.balance_before} -> {transaction.balance_after})"
    )
    return transaction


def record_payment(session, account_id, amount, payment_date: Optional[datetime] = None,
                   method='CASH', notes=None, user_id=None) -> Payment:
    """
    Record a completed payment and its PAYMENT transaction in one commit.

    The payment amount is positive; its ledger mirror subtracts it from the
    balance.
    """
    amount = to_decimal(amount, 'amount', allow_negative=False)
    if amount == 0:
        raise ValidationError('El monto debe ser mayor a 0', field='amount')

    _get_account(session, account_id)
    payment_date = payment_date or datetime.now()

    with unit_of_work(session):
        account = _get_account(session, account_id, lock=True)
        payment = Payment(
            current_account_id=account.id,
            amount=amount,
            payment_date=payment_date,
            method=(method or 'CASH').upper(),
            status=PaymentStatus.COMPLETED,
            notes=notes
        )
        session.add(payment)
        session.flush()

        _append_transaction(
            session, account, TransactionType.PAYMENT, -amount, payment_date,
            description=notes or f'Pago #{payment.id}', payment_id=payment.id, user_id=user_id
        )

    logger.info(f"Payment #{payment.id} of {amount} recorded on account {account.code}")
    return payment


def recalculate_for_payment_update(session, payment_id) -> dict:
    """
    Bring a payment's ledger mirror in line with the payment and replay its account.

    A COMPLETED payment has exactly one PAYMENT transaction carrying minus its
    amount at its date; any other status has none.
    """
    payment = session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError(f'Pago con ID {payment_id} no encontrado')
    if payment.current_account_id is None:
        raise ValidationError('El pago no está asociado a una cuenta corriente', field='current_account_id')

    with unit_of_work(session):
        account = _get_account(session, payment.current_account_id, lock=True)
        mirrors = session.query(CurrentAccountTransaction).filter(
            CurrentAccountTransaction.payment_id == payment.id
        ).order_by(CurrentAccountTransaction.id.asc()).all()

        if payment.status == PaymentStatus.COMPLETED:
            if mirrors:
                mirror = mirrors[0]
                for extra in mirrors[1:]:
                    session.delete(extra)
            else:
                mirror = CurrentAccountTransaction(
                    current_account_id=account.id,
                    type=TransactionType.PAYMENT,
                    payment_id=payment.id,
                    description=payment.notes or f'Pago #{payment.id}'
                )
                session.add(mirror)
            mirror.amount = -Decimal(payment.amount)
            mirror.transaction_date = payment.payment_date
        else:
            for mirror in mirrors:
                session.delete(mirror)

        session.flush()
        processed = _replay_account(session, account)

    balance_recalculations_total.labels(scope='payment').inc()
    logger.info(f"Payment #{payment.id} ({payment.status.value}) synced; account {account.code} replayed")
    return {
        'account_id': account.id,
        'transactions_processed': processed,
        'current_balance': Decimal(account.current_balance),
    }


def list_transactions(session, account_id) -> List[CurrentAccountTransaction]:
    """Ledger of an account in replay order."""
    _get_account(session, account_id)
    return _account_transactions(session, account_id)

"""Current accounts blueprint - account ledger and balance maintenance."""
from flask import Blueprint, jsonify

from backoffice.database import get_session
from backoffice.services import current_account_service
from backoffice.utils.request_args import json_body, user_id_from, int_arg, datetime_arg
from backoffice.utils.serializers import transaction_to_dict, payment_to_dict, plain

current_accounts_bp = Blueprint('current_accounts', __name__, url_prefix='/api/current-accounts')


@current_accounts_bp.route('/<int:account_id>/transactions', methods=['GET'])
def list_transactions(account_id):
    transactions = current_account_service.list_transactions(get_session(), account_id)
    return jsonify({'success': True, 'data': [transaction_to_dict(t) for t in transactions]})


@current_accounts_bp.route('/<int:account_id>/transactions', methods=['POST'])
def create_transaction(account_id):
    data = json_body()
    transaction = current_account_service.post_transaction(
        get_session(), account_id,
        transaction_type=data.get('type'),
        amount=data.get('amount'),
        transaction_date=datetime_arg(data, 'transaction_date'),
        description=data.get('description'),
        reference_number=data.get('reference_number'),
        invoice_id=int_arg(data, 'invoice_id'),
        user_id=user_id_from(data)
    )
    return jsonify({'success': True, 'data': transaction_to_dict(transaction)}), 201


@current_accounts_bp.route('/<int:account_id>/payments', methods=['POST'])
def create_payment(account_id):
    data = json_body()
    payment = current_account_service.record_payment(
        get_session(), account_id,
        amount=data.get('amount'),
        payment_date=datetime_arg(data, 'payment_date'),
        method=data.get('method'),
        notes=data.get('notes'),
        user_id=user_id_from(data)
    )
    return jsonify({'success': True, 'data': payment_to_dict(payment)}), 201


@current_accounts_bp.route('/recalculate-balances', methods=['POST'])
def recalculate_balances():
    """Replay every account, or only ``account_id`` (optionally ``from_date``) when given."""
    data = json_body()
    session = get_session()
    account_id = int_arg(data, 'account_id')
    if account_id:
        result = current_account_service.recalculate_account_balances(
            session, account_id, from_date=datetime_arg(data, 'from_date')
        )
    else:
        result = current_account_service.recalculate_all_balances(session)
    return jsonify({'success': True, 'data': plain(result)})

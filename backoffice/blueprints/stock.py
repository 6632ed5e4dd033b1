"""Stock blueprint - ledger postings and maintenance."""
from flask import Blueprint, jsonify, request

from backoffice.database import get_session
from backoffice.services import stock_movement_service
from backoffice.utils.request_args import json_body, user_id_from, int_arg, datetime_arg
from backoffice.utils.serializers import stock_movement_to_dict, plain

stock_bp = Blueprint('stock', __name__, url_prefix='/api/stock')


@stock_bp.route('/movements', methods=['POST'])
def create_movement():
    data = json_body()
    movement = stock_movement_service.record_movement(
        get_session(),
        material_id=int_arg(data, 'material_id', required=True),
        warehouse_id=int_arg(data, 'warehouse_id', required=True),
        movement_type=data.get('type'),
        quantity=data.get('quantity'),
        user_id=user_id_from(data),
        unit_id=int_arg(data, 'unit_id'),
        unit_cost=data.get('unit_cost'),
        reason=data.get('reason'),
        date=datetime_arg(data, 'date')
    )
    return jsonify({'success': True, 'data': stock_movement_to_dict(movement)}), 201


@stock_bp.route('/consistency', methods=['GET'])
def check_consistency():
    """Report MaterialStock rows against their replayed ledger (?material_id=)."""
    report = stock_movement_service.check_stock_consistency(
        get_session(), material_id=request.args.get('material_id', type=int)
    )
    inconsistent = [plain(row) for row in report if not row['is_consistent']]
    return jsonify({
        'success': True,
        'total_checked': len(report),
        'total_inconsistent': len(inconsistent),
        'data': inconsistent
    })


@stock_bp.route('/consistency', methods=['POST'])
def fix_consistency():
    data = json_body()
    result = stock_movement_service.fix_stock_inconsistencies(
        get_session(), material_id=int_arg(data, 'material_id')
    )
    return jsonify({'success': True, 'data': result})


@stock_bp.route('/recalculate-costs', methods=['POST'])
def recalculate_costs():
    results = stock_movement_service.recalculate_average_costs(get_session())
    return jsonify({
        'success': True,
        'updated': sum(1 for row in results if row['updated']),
        'data': [plain(row) for row in results]
    })

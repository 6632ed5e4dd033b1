"""Stock counts blueprint - JSON API over the stock count lifecycle."""
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from backoffice.database import get_session
from backoffice.services import stock_count_service
from backoffice.services.historical_stock_service import calculate_stock_at_datetime, resolve_count_cutoff
from backoffice.utils.request_args import json_body, user_id_from, int_arg
from backoffice.utils.serializers import stock_count_to_dict, stock_count_item_to_dict, plain

stock_counts_bp = Blueprint('stock_counts', __name__, url_prefix='/api/stock-counts')


@stock_counts_bp.route('', methods=['GET'])
def list_counts():
    """List counts, filtered by ?warehouse_id= and ?status=."""
    session = get_session()
    counts = stock_count_service.list_stock_counts(
        session,
        warehouse_id=request.args.get('warehouse_id', type=int),
        status=request.args.get('status') or None
    )
    return jsonify({'success': True, 'data': [stock_count_to_dict(c) for c in counts]})


@stock_counts_bp.route('', methods=['POST'])
def create_count():
    data = json_body()
    session = get_session()
    stock_count = stock_count_service.create_stock_count(
        session,
        warehouse_id=int_arg(data, 'warehouse_id', required=True),
        counted_by=user_id_from(data, 'counted_by'),
        count_date=data.get('count_date'),
        count_time=data.get('count_time'),
        notes=data.get('notes')
    )
    return jsonify({
        'success': True,
        'message': f'Conteo {stock_count.count_number} creado',
        'data': stock_count_to_dict(stock_count, include_items=True)
    }), 201


@stock_counts_bp.route('/<int:stock_count_id>', methods=['GET'])
def get_count(stock_count_id):
    stock_count = stock_count_service.get_stock_count(get_session(), stock_count_id)
    return jsonify({'success': True, 'data': stock_count_to_dict(stock_count, include_items=True)})


@stock_counts_bp.route('/<int:stock_count_id>', methods=['DELETE'])
def delete_count(stock_count_id):
    stock_count_service.delete_stock_count(get_session(), stock_count_id)
    return jsonify({'success': True, 'message': 'Conteo eliminado'})


@stock_counts_bp.route('/<int:stock_count_id>/add-material', methods=['POST'])
def add_material(stock_count_id):
    data = json_body()
    item = stock_count_service.add_material(
        get_session(), stock_count_id, int_arg(data, 'material_id', required=True)
    )
    return jsonify({'success': True, 'data': stock_count_item_to_dict(item)}), 201


@stock_counts_bp.route('/items/<int:item_id>', methods=['PUT', 'PATCH'])
def update_item(item_id):
    data = json_body()
    item = stock_count_service.update_count_item(
        get_session(), item_id,
        counted_stock=data.get('counted_stock'),
        reason=data.get('reason')
    )
    return jsonify({
        'success': True,
        'data': stock_count_item_to_dict(item),
        'count_status': item.stock_count.status.value
    })


@stock_counts_bp.route('/<int:stock_count_id>/start', methods=['POST'])
def start_count(stock_count_id):
    stock_count = stock_count_service.start_count(get_session(), stock_count_id)
    return jsonify({'success': True, 'data': stock_count_to_dict(stock_count)})


@stock_counts_bp.route('/<int:stock_count_id>/submit', methods=['POST'])
def submit_count(stock_count_id):
    stock_count = stock_count_service.submit_for_approval(get_session(), stock_count_id)
    return jsonify({'success': True, 'data': stock_count_to_dict(stock_count)})


@stock_counts_bp.route('/<int:stock_count_id>/recalculate', methods=['POST'])
def recalculate_count(stock_count_id):
    data = json_body()
    result = stock_count_service.recalculate_stock_count(
        get_session(), stock_count_id,
        count_date=data.get('count_date'),
        count_time=data.get('count_time')
    )
    return jsonify({'success': True, 'data': plain(result)})


@stock_counts_bp.route('/<int:stock_count_id>/approve', methods=['POST'])
def approve_count(stock_count_id):
    data = json_body()
    result = stock_count_service.approve_stock_count(
        get_session(), stock_count_id, user_id_from(data, 'approved_by')
    )
    return jsonify({
        'success': True,
        'message': f"Conteo aprobado con {result['adjustments_count']} ajustes",
        'data': stock_count_to_dict(result['stock_count']),
        'adjustments_count': result['adjustments_count']
    })


@stock_counts_bp.route('/calculate-historical', methods=['POST'])
def calculate_historical():
    """Preview the stock of a warehouse at a date/time without creating a count."""
    data = json_body()
    now = datetime.now()
    _, cutoff = resolve_count_cutoff(
        data.get('count_date'), data.get('count_time'), now,
        current_app.config.get('DEFAULT_COUNT_TIME', '23:59')
    )
    materials = calculate_stock_at_datetime(
        get_session(), int_arg(data, 'warehouse_id', required=True), cutoff, now=now
    )
    return jsonify({
        'success': True,
        'cutoff_datetime': cutoff.isoformat(),
        'total_materials': len(materials),
        'data': [entry.to_dict() for entry in materials]
    })

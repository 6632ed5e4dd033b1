"""Materials blueprint - material lookups used while counting."""
from flask import Blueprint, jsonify, request

from backoffice.database import get_session
from backoffice.exceptions import ValidationError
from backoffice.services.historical_stock_service import search_materials_for_count
from backoffice.utils.request_args import int_list_arg

materials_bp = Blueprint('materials', __name__, url_prefix='/api/materials')


@materials_bp.route('/search-for-count', methods=['GET'])
def search_for_count():
    """
    Search active materials to add to a count.

    Query args: warehouse_id (required), q, category_ids, sub_category_ids,
    exclude_count_id, limit.
    """
    warehouse_id = request.args.get('warehouse_id', type=int)
    if not warehouse_id:
        raise ValidationError('El depósito es requerido', field='warehouse_id')

    results = search_materials_for_count(
        get_session(),
        warehouse_id,
        query=request.args.get('q', ''),
        category_ids=int_list_arg(request.args, 'category_ids'),
        sub_category_ids=int_list_arg(request.args, 'sub_category_ids'),
        exclude_count_id=request.args.get('exclude_count_id', type=int),
        limit=request.args.get('limit', type=int)
    )
    for row in results:
        row['current_stock'] = str(row['current_stock'])

    return jsonify({'success': True, 'total': len(results), 'data': results})

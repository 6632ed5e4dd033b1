"""Units blueprint."""
from flask import Blueprint, jsonify

from backoffice.database import get_session
from backoffice.services.unit_service import convert_quantity, get_conversion_factor
from backoffice.utils.request_args import json_body, int_arg

units_bp = Blueprint('units', __name__, url_prefix='/api/units')


@units_bp.route('/convert', methods=['POST'])
def convert():
    data = json_body()
    session = get_session()
    from_unit_id = int_arg(data, 'from_unit_id', required=True)
    to_unit_id = int_arg(data, 'to_unit_id', required=True)

    converted = convert_quantity(session, data.get('quantity'), from_unit_id, to_unit_id)
    factor = get_conversion_factor(session, from_unit_id, to_unit_id)
    return jsonify({
        'success': True,
        'data': {
            'quantity': str(data.get('quantity')),
            'converted_quantity': str(converted),
            'conversion_factor': str(factor),
        }
    })

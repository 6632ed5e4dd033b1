"""Main blueprint with the health check endpoint."""
import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from backoffice.database import get_session

logger = logging.getLogger(__name__)

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates database connection.

    Returns:
        200: Healthy (DB connected)
        503: Unhealthy (DB error)
    """
    try:
        row = get_session().execute(text("SELECT 1 AS health_check")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'message': 'Failed to connect to database'
        }), 503

    if row and row[0] == 1:
        return jsonify({'status': 'healthy', 'database': 'connected'}), 200

    return jsonify({
        'status': 'unhealthy',
        'database': 'error',
        'message': 'Unexpected query result'
    }), 503

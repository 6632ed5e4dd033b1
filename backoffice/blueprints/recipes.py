"""Recipes blueprint."""
from flask import Blueprint, jsonify

from backoffice.database import get_session
from backoffice.services.recipe_cost_service import update_all_recipe_costs

recipes_bp = Blueprint('recipes', __name__, url_prefix='/api/recipes')


@recipes_bp.route('/recalculate-all-costs', methods=['POST'])
def recalculate_all_costs():
    updated = update_all_recipe_costs(get_session())
    return jsonify({'success': True, 'updated_recipes': updated})

"""
Unit tests for recipe cost propagation.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from backoffice.exceptions import NotFoundError
from backoffice.models import Recipe, RecipeIngredient
from backoffice.services import recipe_cost_service
from backoffice.services.stock_movement_service import recalculate_average_costs


class TestRecipeCosts:
    """Tests for recipe cost computation."""

    def test_cost_with_unit_conversion(self, session, recipe):
        """Test that 500 g of a 2.5/kg material costs 1.25 and 0.3125 per serving of 4."""
        updated = recipe_cost_service.update_all_recipe_costs(session)

        assert updated == 1
        recipe = session.get(Recipe, recipe.id)
        assert recipe.total_cost == Decimal('1.25')
        assert recipe.cost_per_serving == Decimal('0.3125')
        assert recipe.ingredients[0].cost == Decimal('1.25')

    def test_zero_serving_size_counts_as_one(self, session, recipe):
        recipe.serving_size = Decimal('0')
        session.commit()

        recipe_cost_service.update_recipe_costs_for_recipes(session, [recipe.id])

        assert session.get(Recipe, recipe.id).cost_per_serving == Decimal('1.25')

    def test_recipes_using_materials(self, session, recipe, material, make_material):
        other = make_material('Levadura')

        assert [r.id for r in recipe_cost_service.get_recipes_using_materials(session, [material.id])] == [recipe.id]
        assert recipe_cost_service.get_recipes_using_materials(session, [other.id]) == []

    def test_update_for_material(self, session, recipe, material):
        material.average_cost = Decimal('4')
        session.commit()

        assert recipe_cost_service.update_recipe_costs_for_material(session, material.id) == 1
        assert session.get(Recipe, recipe.id).total_cost == Decimal('2')

    def test_unknown_recipe(self, session):
        with pytest.raises(NotFoundError):
            recipe_cost_service.update_recipe_costs_for_recipes(session, [999])

    def test_average_cost_change_propagates(self, session, recipe, material, post):
        """Test that recalculating average costs refreshes the recipes using the material."""
        post(material, 'IN', 10, datetime(2024, 1, 1), unit_cost='6')

        recalculate_average_costs(session)

        recipe = session.get(Recipe, recipe.id)
        assert recipe.total_cost == Decimal('3')
        assert recipe.cost_per_serving == Decimal('0.75')

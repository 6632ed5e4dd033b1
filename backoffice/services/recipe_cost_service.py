"""Recipe cost service - keeps recipe costs in step with material average costs."""
from decimal import Decimal
from typing import Iterable, List
import logging

from backoffice.database import unit_of_work
from backoffice.exceptions import NotFoundError
from backoffice.models import Recipe, RecipeIngredient
from backoffice.services.unit_service import convert_quantity
from backoffice.utils.number_format import ZERO

logger = logging.getLogger(__name__)

COST_PLACES = Decimal('0.0001')


def _ingredient_cost(session, ingredient) -> Decimal:
    """average_cost x quantity, with the quantity in the material's consumption unit."""
    material = ingredient.material
    quantity = Decimal(ingredient.quantity)
    if ingredient.unit_id and material.consumption_unit_id and ingredient.unit_id != material.consumption_unit_id:
        quantity = convert_quantity(session, quantity, ingredient.unit_id, material.consumption_unit_id)
    return (Decimal(material.average_cost or 0) * quantity).quantize(COST_PLACES)


def _recompute_recipe(session, recipe) -> Decimal:
    total = ZERO
    for ingredient in recipe.ingredients:
        ingredient.cost = _ingredient_cost(session, ingredient)
        total += ingredient.cost

    serving_size = Decimal(recipe.serving_size or 0) or Decimal('1')
    recipe.total_cost = total
    recipe.cost_per_serving = (total / serving_size).quantize(COST_PLACES)
    return total


def get_recipes_using_materials(session, material_ids: Iterable[int]) -> List[Recipe]:
    """Active recipes with at least one ingredient among ``material_ids``."""
    material_ids = list(material_ids)
    if not material_ids:
        return []
    return session.query(Recipe).join(RecipeIngredient).filter(
        RecipeIngredient.material_id.in_(material_ids),
        Recipe.active.is_(True)
    ).distinct().order_by(Recipe.id).all()


def propagate_material_costs(session, material_ids: Iterable[int]) -> int:
    """Recompute the recipes using the given materials; caller owns the commit."""
    recipes = get_recipes_using_materials(session, material_ids)
    for recipe in recipes:
        _recompute_recipe(session, recipe)
    session.flush()
    return len(recipes)


def update_recipe_costs_for_material(session, material_id) -> int:
    """Refresh every recipe that uses one material. Returns the number of recipes updated."""
    with unit_of_work(session):
        updated = propagate_material_costs(session, [material_id])
    logger.info(f"Recipe costs refreshed for material {material_id}: {updated} recipes")
    return updated


def update_recipe_costs_for_recipes(session, recipe_ids: Iterable[int]) -> int:
    recipe_ids = list(recipe_ids)
    recipes = session.query(Recipe).filter(Recipe.id.in_(recipe_ids)).all() if recipe_ids else []
    missing = set(recipe_ids) - {recipe.id for recipe in recipes}
    if missing:
        raise NotFoundError(f'Recetas no encontradas: {sorted(missing)}')

    with unit_of_work(session):
        for recipe in recipes:
            _recompute_recipe(session, recipe)

    logger.info(f"Recipe costs refreshed for {len(recipes)} recipes")
    return len(recipes)


def update_all_recipe_costs(session) -> int:
    """Recompute every active recipe in one commit."""
    with unit_of_work(session):
        recipes = session.query(Recipe).filter(Recipe.active.is_(True)).order_by(Recipe.id).all()
        for recipe in recipes:
            _recompute_recipe(session, recipe)

    logger.info(f"All recipe costs recalculated: {len(recipes)} recipes")
    return len(recipes)

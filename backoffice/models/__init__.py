"""Models package - exports all SQLAlchemy models."""
# Reference data
from backoffice.models.app_user import AppUser
from backoffice.models.warehouse import Warehouse
from backoffice.models.category import Category
from backoffice.models.unit import Unit
from backoffice.models.supplier import Supplier

# Inventory
from backoffice.models.material import Material
from backoffice.models.material_stock import MaterialStock
from backoffice.models.stock_movement import StockMovement, StockMovementType
from backoffice.models.stock_count import StockCount, StockCountStatus, EDITABLE_STATUSES
from backoffice.models.stock_count_item import StockCountItem
from backoffice.models.stock_adjustment import StockAdjustment, AdjustmentType

# Current accounts
from backoffice.models.payment import Payment, PaymentStatus
from backoffice.models.current_account import CurrentAccount
from backoffice.models.current_account_transaction import CurrentAccountTransaction, TransactionType

# Recipes
from backoffice.models.recipe import Recipe
from backoffice.models.recipe_ingredient import RecipeIngredient

__all__ = [
    'AppUser', 'Warehouse', 'Category', 'Unit', 'Supplier',
    'Material', 'MaterialStock', 'StockMovement', 'StockMovementType',
    'StockCount', 'StockCountStatus', 'EDITABLE_STATUSES', 'StockCountItem',
    'StockAdjustment', 'AdjustmentType',
    'Payment', 'PaymentStatus', 'CurrentAccount', 'CurrentAccountTransaction', 'TransactionType',
    'Recipe', 'RecipeIngredient',
]

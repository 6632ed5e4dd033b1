"""Recipe Ingredient model."""
from sqlalchemy import Column, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from backoffice.database import Base, IdType


class RecipeIngredient(Base):
    """Material used by a recipe, with its cached cost."""

    __tablename__ = 'recipe_ingredient'

    id = Column(IdType, primary_key=True, autoincrement=True)
    recipe_id = Column(IdType, ForeignKey('recipe.id'), nullable=False)
    material_id = Column(IdType, ForeignKey('material.id'), nullable=False)
    # Null means the material's consumption unit
    unit_id = Column(IdType, ForeignKey('unit.id'), nullable=True)
    quantity = Column(Numeric(14, 4), nullable=False)
    cost = Column(Numeric(14, 4), nullable=False, default=0)

    # Relationships
    recipe = relationship('Recipe', back_populates='ingredients')
    material = relationship('Material')
    unit = relationship('Unit')

    def __repr__(self):
        return f"<RecipeIngredient(id={self.id}, material_id={self.material_id}, quantity={self.quantity})>"

"""Recipe model."""
from sqlalchemy import Column, String, Boolean, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class Recipe(Base):
    """Recipe (receta) whose cost derives from its ingredients."""

    __tablename__ = 'recipe'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    serving_size = Column(Numeric(10, 2), nullable=False, default=1)
    total_cost = Column(Numeric(14, 4), nullable=False, default=0)
    cost_per_serving = Column(Numeric(14, 4), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    ingredients = relationship('RecipeIngredient', back_populates='recipe', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Recipe(id={self.id}, name='{self.name}', total_cost={self.total_cost})>"

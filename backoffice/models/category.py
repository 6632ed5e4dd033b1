"""Category model."""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class Category(Base):
    """Material category; a category with a parent is a sub-category."""

    __tablename__ = 'category'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    parent_id = Column(IdType, ForeignKey('category.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    parent = relationship('Category', remote_side=[id])

    @property
    def main_category(self):
        """Top-level category (itself when it has no parent)."""
        return self.parent or self

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"

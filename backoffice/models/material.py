"""Material model."""
from sqlalchemy import Column, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class Material(Base):
    """Trackable inventory good (materia prima)."""

    __tablename__ = 'material'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    code = Column(String(50), nullable=True)
    category_id = Column(IdType, ForeignKey('category.id'), nullable=True)
    consumption_unit_id = Column(IdType, ForeignKey('unit.id'), nullable=False)
    purchase_unit_id = Column(IdType, ForeignKey('unit.id'), nullable=True)
    default_warehouse_id = Column(IdType, ForeignKey('warehouse.id'), nullable=True)
    min_stock_level = Column(Numeric(14, 3), nullable=False, default=0)
    max_stock_level = Column(Numeric(14, 3), nullable=True)
    # Cost per consumption unit
    average_cost = Column(Numeric(14, 4), nullable=False, default=0)
    last_purchase_price = Column(Numeric(14, 4), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    category = relationship('Category')
    consumption_unit = relationship('Unit', foreign_keys=[consumption_unit_id])
    purchase_unit = relationship('Unit', foreign_keys=[purchase_unit_id])
    default_warehouse = relationship('Warehouse')
    stocks = relationship('MaterialStock', back_populates='material')

    def __repr__(self):
        return f"<Material(id={self.id}, name='{self.name}')>"

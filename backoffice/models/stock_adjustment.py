"""Stock Adjustment model."""
from sqlalchemy import Column, Numeric, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType
import enum


class AdjustmentType(enum.Enum):
    """Stock adjustment direction enum."""
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"


class StockAdjustment(Base):
    """Audit record of a correction posted when a stock count is approved."""

    __tablename__ = 'stock_adjustment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    stock_count_id = Column(IdType, ForeignKey('stock_count.id'), nullable=False)
    material_id = Column(IdType, ForeignKey('material.id'), nullable=False)
    warehouse_id = Column(IdType, ForeignKey('warehouse.id'), nullable=False)
    adjustment_type = Column(Enum(AdjustmentType, name='adjustment_type'), nullable=False)
    # Absolute value of the count difference
    quantity = Column(Numeric(14, 3), nullable=False)
    reason = Column(Text, nullable=True)
    adjusted_by = Column(IdType, ForeignKey('app_user.id'), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    stock_count = relationship('StockCount', back_populates='adjustments')
    material = relationship('Material')
    user = relationship('AppUser')

    def __repr__(self):
        return (
            f"<StockAdjustment(id={self.id}, type={self.adjustment_type.value}, "
            f"quantity={self.quantity})>"
        )

"""Stock Movement model."""
from sqlalchemy import Column, Numeric, DateTime, Text, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType
import enum


class StockMovementType(enum.Enum):
    """Stock movement type enum."""
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    WASTE = "WASTE"
    TRANSFER = "TRANSFER"


class StockMovement(Base):
    """
    Immutable stock ledger entry (movimiento de stock).

    ``quantity`` is signed: negative entries reduce stock. For one
    (material, warehouse) pair ordered by ``date``, ``stock_after`` equals
    ``stock_before + quantity``.
    """

    __tablename__ = 'stock_movement'
    __table_args__ = (
        Index('ix_stock_movement_warehouse_date', 'warehouse_id', 'date'),
        Index('ix_stock_movement_material_warehouse', 'material_id', 'warehouse_id'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    material_id = Column(IdType, ForeignKey('material.id'), nullable=False)
    warehouse_id = Column(IdType, ForeignKey('warehouse.id'), nullable=False)
    unit_id = Column(IdType, ForeignKey('unit.id'), nullable=True)
    user_id = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    type = Column(Enum(StockMovementType, name='stock_movement_type'), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=True)
    total_cost = Column(Numeric(14, 2), nullable=True)
    stock_before = Column(Numeric(14, 3), nullable=False, default=0)
    stock_after = Column(Numeric(14, 3), nullable=False, default=0)
    # Effective ledger timestamp; may differ from created_at
    date = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    material = relationship('Material')
    warehouse = relationship('Warehouse')
    unit = relationship('Unit')
    user = relationship('AppUser')

    def __repr__(self):
        return f"<StockMovement(id={self.id}, type={self.type.value}, quantity={self.quantity})>"

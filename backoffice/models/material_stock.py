"""Material Stock model."""
from sqlalchemy import Column, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class MaterialStock(Base):
    """
    Current quantity on hand for a (material, warehouse) pair.

    This is a cache of the stock movement ledger: ``current_stock`` must equal
    the sum of every StockMovement quantity for the same pair.
    """

    __tablename__ = 'material_stock'
    __table_args__ = (
        UniqueConstraint('material_id', 'warehouse_id', name='uq_material_stock_material_warehouse'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    material_id = Column(IdType, ForeignKey('material.id'), nullable=False)
    warehouse_id = Column(IdType, ForeignKey('warehouse.id'), nullable=False)
    current_stock = Column(Numeric(14, 3), nullable=False, default=0)
    available_stock = Column(Numeric(14, 3), nullable=False, default=0)
    reserved_stock = Column(Numeric(14, 3), nullable=False, default=0)
    average_cost = Column(Numeric(14, 4), nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    material = relationship('Material', back_populates='stocks')
    warehouse = relationship('Warehouse')

    def __repr__(self):
        return (
            f"<MaterialStock(material_id={self.material_id}, warehouse_id={self.warehouse_id}, "
            f"current_stock={self.current_stock})>"
        )

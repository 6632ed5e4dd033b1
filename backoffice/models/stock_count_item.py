"""Stock Count Item model."""
from sqlalchemy import Column, Numeric, Boolean, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class StockCountItem(Base):
    """
    Expected vs counted quantity of one material inside a stock count.

    ``system_stock`` is the historical stock at the count's cutoff, never the
    live MaterialStock value. ``difference = counted_stock - system_stock``.
    """

    __tablename__ = 'stock_count_item'
    __table_args__ = (
        UniqueConstraint('stock_count_id', 'material_id', name='uq_stock_count_item_count_material'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    stock_count_id = Column(IdType, ForeignKey('stock_count.id'), nullable=False)
    material_id = Column(IdType, ForeignKey('material.id'), nullable=False)
    system_stock = Column(Numeric(14, 3), nullable=False, default=0)
    counted_stock = Column(Numeric(14, 3), nullable=False, default=0)
    difference = Column(Numeric(14, 3), nullable=False, default=0)
    reason = Column(Text, nullable=True)
    counted_at = Column(DateTime, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    is_manually_added = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    stock_count = relationship('StockCount', back_populates='items')
    material = relationship('Material')

    def __repr__(self):
        return (
            f"<StockCountItem(id={self.id}, material_id={self.material_id}, "
            f"system={self.system_stock}, counted={self.counted_stock})>"
        )

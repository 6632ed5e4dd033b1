"""Stock Count model."""
from sqlalchemy import Column, String, Date, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType
import enum


class StockCountStatus(enum.Enum):
    """Stock count lifecycle status enum."""
    PLANNING = "PLANNING"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    COMPLETED = "COMPLETED"


# Statuses in which count items may still be added or edited
EDITABLE_STATUSES = (StockCountStatus.PLANNING, StockCountStatus.IN_PROGRESS)


class StockCount(Base):
    """Stock taking exercise for one warehouse (conteo de inventario)."""

    __tablename__ = 'stock_count'

    id = Column(IdType, primary_key=True, autoincrement=True)
    count_number = Column(String(20), nullable=False, unique=True)
    warehouse_id = Column(IdType, ForeignKey('warehouse.id'), nullable=False)
    status = Column(
        Enum(StockCountStatus, name='stock_count_status'),
        nullable=False,
        default=StockCountStatus.PLANNING
    )
    count_date = Column(Date, nullable=False)
    count_time = Column(String(5), nullable=False)
    cutoff_datetime = Column(DateTime, nullable=False)
    counted_by = Column(IdType, ForeignKey('app_user.id'), nullable=False)
    approved_by = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    warehouse = relationship('Warehouse')
    counted_user = relationship('AppUser', foreign_keys=[counted_by])
    approved_user = relationship('AppUser', foreign_keys=[approved_by])
    items = relationship(
        'StockCountItem',
        back_populates='stock_count',
        cascade='all, delete-orphan',
        order_by='StockCountItem.id'
    )
    adjustments = relationship('StockAdjustment', back_populates='stock_count')

    @property
    def is_editable(self):
        return self.status in EDITABLE_STATUSES

    def __repr__(self):
        return f"<StockCount(id={self.id}, count_number='{self.count_number}', status={self.status.value})>"

"""Unit of Measure model."""
from sqlalchemy import Column, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class Unit(Base):
    """
    Unit of Measure.

    Derived units point at their base unit; ``conversion_factor`` is how many
    base units one of this unit is worth (1 g = 0.001 kg).
    """

    __tablename__ = 'unit'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    abbreviation = Column(String(20), nullable=False)
    is_base_unit = Column(Boolean, nullable=False, default=False)
    base_unit_id = Column(IdType, ForeignKey('unit.id'), nullable=True)
    conversion_factor = Column(Numeric(18, 6), nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    base_unit = relationship('Unit', remote_side=[id])

    def __repr__(self):
        return f"<Unit(id={self.id}, abbreviation='{self.abbreviation}', factor={self.conversion_factor})>"

"""Warehouse model."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class Warehouse(Base):
    """Warehouse (depósito) holding material stock."""

    __tablename__ = 'warehouse'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    location = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Warehouse(id={self.id}, name='{self.name}')>"

"""Current Account model."""
from sqlalchemy import Column, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class CurrentAccount(Base):
    """
    Running balance ledger for a supplier or customer (cuenta corriente).

    ``current_balance`` is a cache: opening balance plus the sum of every
    transaction amount.
    """

    __tablename__ = 'current_account'

    id = Column(IdType, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    supplier_id = Column(IdType, ForeignKey('supplier.id'), nullable=True)
    opening_balance = Column(Numeric(14, 2), nullable=False, default=0)
    current_balance = Column(Numeric(14, 2), nullable=False, default=0)
    last_activity_date = Column(DateTime, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    supplier = relationship('Supplier')
    transactions = relationship('CurrentAccountTransaction', back_populates='current_account')
    payments = relationship('Payment', back_populates='current_account')

    def __repr__(self):
        return f"<CurrentAccount(id={self.id}, code='{self.code}', balance={self.current_balance})>"

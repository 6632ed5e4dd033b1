"""Payment model."""
from sqlalchemy import Column, String, Numeric, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType
import enum


class PaymentStatus(enum.Enum):
    """Payment status enum."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Payment(Base):
    """
    Payment to or from a current account.

    Payments never hold balance snapshots; a completed payment reaches the
    account ledger only through its PAYMENT transaction.
    """

    __tablename__ = 'payment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    current_account_id = Column(IdType, ForeignKey('current_account.id'), nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    payment_date = Column(DateTime, nullable=False)
    method = Column(String(20), nullable=False, default='CASH', server_default='CASH')
    status = Column(Enum(PaymentStatus, name='payment_status'), nullable=False, default=PaymentStatus.PENDING)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    current_account = relationship('CurrentAccount', back_populates='payments')

    def __repr__(self):
        return f"<Payment(id={self.id}, amount={self.amount}, status={self.status.value})>"

"""Current Account Transaction model."""
from sqlalchemy import Column, String, Numeric, DateTime, Text, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backoffice.database import Base, IdType
import enum


class TransactionType(enum.Enum):
    """Current account transaction type enum."""
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"


class CurrentAccountTransaction(Base):
    """Signed ledger entry of a current account with its balance snapshots."""

    __tablename__ = 'current_account_transaction'
    __table_args__ = (
        Index('ix_current_account_transaction_account_date', 'current_account_id', 'transaction_date'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    current_account_id = Column(IdType, ForeignKey('current_account.id'), nullable=False)
    transaction_date = Column(DateTime, nullable=False)
    type = Column(Enum(TransactionType, name='current_account_transaction_type'), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    balance_before = Column(Numeric(14, 2), nullable=False, default=0)
    balance_after = Column(Numeric(14, 2), nullable=False, default=0)
    description = Column(Text, nullable=True)
    reference_number = Column(String(100), nullable=True)
    invoice_id = Column(IdType, nullable=True)
    payment_id = Column(IdType, ForeignKey('payment.id'), nullable=True)
    user_id = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    current_account = relationship('CurrentAccount', back_populates='transactions')
    payment = relationship('Payment')
    user = relationship('AppUser')

    def __repr__(self):
        return f"<CurrentAccountTransaction(id={self.id}, type={self.type.value}, amount={self.amount})>"

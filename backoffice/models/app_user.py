"""Application user model."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from backoffice.database import Base, IdType


class AppUser(Base):
    """Back-office user; referenced by counts, approvals and ledger entries."""

    __tablename__ = 'app_user'

    id = Column(IdType, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}')>"

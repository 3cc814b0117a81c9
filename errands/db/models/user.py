"""
User Model - Customers, Runners and Admins

Accounts are provisioned by the auth service. Any non-admin account can
post errands as a customer and fulfil other people's errands as a runner;
the role an actor plays is carried by the access token.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text

from errands.db.database import Base


class User(Base):
    """Marketplace account"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firstname = Column(String(100), nullable=False)
    lastname = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    # Set by the overdue balance sweep
    is_banned = Column(Boolean, default=False, nullable=False)
    banned_at = Column(DateTime, nullable=True)
    ban_reason = Column(Text, nullable=True)

    # One point per errand confirmed by the customer
    points = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()

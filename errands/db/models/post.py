"""
Post Model - Errand Records
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum as SQLEnum, ForeignKey
from sqlalchemy.orm import relationship

from errands.db.database import Base


class PostStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    RUNNER_COMPLETED = "runner_completed"
    COMPLETED = "completed"


class Post(Base):
    """Errand posted by a customer.

    completed_at is set iff status is runner_completed or completed;
    archived is true iff status is completed.
    """

    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    content = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)

    status = Column(
        SQLEnum(PostStatus, values_callable=lambda x: [e.value for e in x]),
        default=PostStatus.PENDING,
        nullable=False,
        index=True,
    )
    # Customer who posted the errand
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    runner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    payment_verified = Column(Boolean, default=False, nullable=False)
    payment_verified_at = Column(DateTime, nullable=True)

    accepted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    archived = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("User", foreign_keys=[user_id])
    runner = relationship("User", foreign_keys=[runner_id])

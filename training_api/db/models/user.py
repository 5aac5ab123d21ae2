"""User database model."""
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from training_api.db.base import Base


class UserRole(str, enum.Enum):
    PROFESSOR = "professor"
    STUDENT = "student"


class User(Base):
    """A professor or student account.

    Accounts are managed elsewhere; the notification subsystem only needs the
    identity for ownership and authentication.
    """

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255))
    role = Column(String(20), nullable=False, default=UserRole.STUDENT.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    is_active = Column(Boolean, default=True)

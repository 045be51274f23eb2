"""User model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from officehours.database import Base

ROLE_STUDENT = 'student'
ROLE_INSTRUCTOR = 'instructor'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_STUDENT, ROLE_INSTRUCTOR, ROLE_ADMIN)


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False, default='')
    last_name = Column(String, nullable=False, default='')
    role = Column(String, nullable=False, default=ROLE_STUDENT)  # student/instructor/admin
    department = Column(String)
    reminder_24h = Column(Boolean, nullable=False, default=True)
    reminder_1h = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def full_name(self) -> str:
        name = f'{self.first_name or ""} {self.last_name or ""}'.strip()
        return name or self.email

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey

from ..db import Base

ROLE_ADMIN = "admin"
ROLE_INTERN = "intern"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)  # stored lowercase
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, default=ROLE_INTERN)  # admin, intern
    phone = Column(String, nullable=True, index=True)  # digits only: country code + number

    # Intern-specific fields
    intern_id = Column(String, nullable=True, unique=True)
    college = Column(String, nullable=True)
    department = Column(String, nullable=True)
    internship_role = Column(String, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default="active")  # active, inactive, completed
    supervisor_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)

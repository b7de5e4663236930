"""
Models package
"""
from .user import User, ROLE_ADMIN, ROLE_INTERN

__all__ = ["User", "ROLE_ADMIN", "ROLE_INTERN"]

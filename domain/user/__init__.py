"""User domain exports."""
from .entity import User, UserRole
from .repository import UserRepository

__all__ = ["User", "UserRole", "UserRepository"]

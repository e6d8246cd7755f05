"""Utility functions and classes."""

from .auth import UserManager
from .logging import setup_logging

__all__ = ["UserManager", "setup_logging"]

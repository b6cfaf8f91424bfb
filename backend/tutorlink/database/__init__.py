"""
Declarative base, engine, and session helpers shared across the application.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()

from .sessions import (  # noqa: E402
    SessionLocal,
    get_engine,
)

__all__ = [
    "Base",
    "SessionLocal",
    "get_engine",
]

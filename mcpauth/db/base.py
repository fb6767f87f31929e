"""Declarative base for mcpauth SQLAlchemy models."""

from sqlalchemy.orm import DeclarativeBase


class BaseEntity(DeclarativeBase):
    """Base class for all mcpauth database entities."""

"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and audit/soft-delete mixins
- connection: async engine and session management
- repository: generic per-entity repository
- models: SQLAlchemy ORM models for all entities
"""

__all__ = []

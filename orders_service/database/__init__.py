"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and mixins
- connection: async engine and session management
- models: SQLAlchemy ORM models for orders, items and receipts
"""

# Import submodules explicitly when needed to avoid circular dependencies

__all__ = []

"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and mixins
- connection: async engine and session management
- models: ORM models for orders, catalog variants, users and returns
"""

__all__ = []

"""
Database package for the PostgreSQL storage backend.

Submodules are imported explicitly where needed so the in-memory and Redis
backends never pull in the SQL driver.
"""

__all__ = []

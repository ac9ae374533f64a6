"""Database connection management for Strongbox."""

from strongbox.db.connection import close_pool, get_connection, get_pool

__all__ = ["close_pool", "get_connection", "get_pool"]

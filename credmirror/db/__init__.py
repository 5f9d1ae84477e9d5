"""Database connection management for credmirror."""

from credmirror.db.connection import BlockingConnectionPool, close_pool, get_connection, get_pool

__all__ = ["BlockingConnectionPool", "close_pool", "get_connection", "get_pool"]

"""Database exception hierarchy."""

class DatabaseError(Exception):
    """Base exception for database errors."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when the schema cannot be loaded or migrated."""
    pass

__all__ = ['DatabaseError', 'DatabaseSchemaError']

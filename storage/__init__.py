"""Storage layer for PipaPal.

Two interchangeable backends implement :class:`Storage`:
- ``MemStorage`` keeps everything in process memory (development, tests)
- ``DatabaseStorage`` persists to PostgreSQL through the shared asyncpg pool
"""

import logging
from typing import Any, Dict

from .base import DEFAULT_ECO_TIPS, Storage, StorageError
from .memory import MemStorage
from .postgres import DatabaseStorage

logger = logging.getLogger(__name__)


def create_storage(settings: Dict[str, Any]) -> Storage:
    """Build the backend named by the ``storage_backend`` setting."""
    backend = settings.get('storage_backend', 'memory')
    if backend == 'memory':
        logger.info("Using in-memory storage")
        return MemStorage()
    if backend == 'postgres':
        logger.info("Using PostgreSQL storage")
        return DatabaseStorage()
    raise StorageError(f"Unknown storage backend: {backend}")


__all__ = [
    'Storage', 'StorageError', 'MemStorage', 'DatabaseStorage',
    'DEFAULT_ECO_TIPS', 'create_storage'
]

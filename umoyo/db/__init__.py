"""
Umoyo Database Module

Database components:
- PostgreSQL with pgvector integration
- SQLAlchemy models
- Connection management
"""

from umoyo.db.models import (
    CORPUS_METADATA_ID,
    EMBEDDING_DIMENSION,
    Base,
    CorpusMetadataRecord,
    VectorChunkRecord,
)
from umoyo.db.postgres import (
    MAX_OVERFLOW,
    POOL_RECYCLE,
    POOL_SIZE,
    check_database_health,
    check_pgvector_extension,
    close_db,
    create_db_engine,
    create_session_factory,
    get_database_url,
    init_db,
)

__all__ = [
    # Base
    "Base",
    # Models
    "VectorChunkRecord",
    "CorpusMetadataRecord",
    # Constants
    "CORPUS_METADATA_ID",
    "EMBEDDING_DIMENSION",
    "POOL_SIZE",
    "MAX_OVERFLOW",
    "POOL_RECYCLE",
    # Functions
    "get_database_url",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "close_db",
    "check_database_health",
    "check_pgvector_extension",
]

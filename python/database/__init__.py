"""
Database Package for the Partner MDM service

This package provides:
- SQLAlchemy ORM models for partners, change requests and audits
- FastAPI Dependency Injection for database sessions
- Repository pattern for data access
"""

from database.models import (
    Base,
    Partner,
    PartnerChangeRequest,
    PartnerAuditJob,
    PartnerAuditLog,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    # FastAPI dependencies
    get_db,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    PartnerRepository,
    ChangeRequestRepository,
    AuditRepository,
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
)

__all__ = [
    # Base
    'Base',
    # Models
    'Partner',
    'PartnerChangeRequest',
    'PartnerAuditJob',
    'PartnerAuditLog',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    # FastAPI dependencies
    'get_db',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Repositories
    'PartnerRepository',
    'ChangeRequestRepository',
    'AuditRepository',
    'RepositoryError',
    'EntityNotFoundError',
    'DuplicateEntityError',
]

"""
Repository Pattern for Partner MDM Database Operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns.
"""

import logging
from typing import List, Optional, Dict, Any, Tuple, Union
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    Partner,
    PartnerChangeRequest,
    PartnerAuditJob,
    PartnerAuditLog,
    ChangeRequestStatus,
    ChangeRequestType,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


def coerce_uuid(value: Union[str, UUID, None]) -> Optional[UUID]:
    """Parse a UUID, returning None for empty or malformed input."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except (ValueError, AttributeError):
        return None


# ============================================
# PARTNER REPOSITORY
# ============================================

class PartnerRepository:
    """Repository for partner master records."""

    EXTERNAL_ID_FIELDS = ('mdm_partner_id', 'sap_business_partner_id')

    def __init__(self, session: Session):
        self.session = session

    def next_mdm_partner_id(self) -> int:
        current = self.session.execute(select(func.max(Partner.mdm_partner_id))).scalar()
        return (current or 0) + 1

    def create(self, partner_data: Dict[str, Any]) -> Partner:
        """
        Create a new partner with the next sequential MDM id.

        Args:
            partner_data: Dictionary containing partner fields

        Returns:
            Created Partner instance

        Raises:
            DuplicateEntityError: If the document or MDM id already exists
        """
        data = dict(partner_data)
        data.setdefault('mdm_partner_id', self.next_mdm_partner_id())
        try:
            partner = Partner(**data)
            self.session.add(partner)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Partner already exists: {e.orig}")

        logger.debug(f"Created partner: {partner.id} (mdm id {partner.mdm_partner_id})")
        return partner

    def get_by_id(self, partner_id: Union[str, UUID]) -> Optional[Partner]:
        key = coerce_uuid(partner_id)
        if key is None:
            return None
        return self.session.get(Partner, key)

    def load(self, partner_id: Union[str, UUID]) -> Partner:
        """
        Get partner by ID.

        Raises:
            EntityNotFoundError: If no partner has this id
        """
        partner = self.get_by_id(partner_id)
        if partner is None:
            raise EntityNotFoundError(f"Partner {partner_id} not found")
        return partner

    def list_by_ids(self, partner_ids: List[Union[str, UUID]]) -> List[Partner]:
        """Return the partners that exist, in the order of ``partner_ids``."""
        keys = [key for key in (coerce_uuid(pid) for pid in partner_ids) if key is not None]
        if not keys:
            return []
        rows = self.session.execute(select(Partner).where(Partner.id.in_(keys))).scalars().all()
        by_id = {row.id: row for row in rows}
        return [by_id[key] for key in keys if key in by_id]

    def find_by_document(self, document: str) -> Optional[Partner]:
        if not document:
            return None
        query = select(Partner).where(Partner.document == document)
        return self.session.execute(query).scalar_one_or_none()

    def find_by_external_id(self, field: str, value: Any) -> Optional[Partner]:
        """
        Find a partner by one of its external identifiers.

        Args:
            field: 'mdm_partner_id' or 'sap_business_partner_id'
            value: Identifier value

        Raises:
            ValueError: If field is not an external identifier
        """
        if field not in self.EXTERNAL_ID_FIELDS:
            raise ValueError(f"Unsupported external id field: {field}")
        if value is None or value == '':
            return None
        query = select(Partner).where(getattr(Partner, field) == value)
        return self.session.execute(query).scalars().first()

    def list(
        self,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Partner], int]:
        query = select(Partner)
        count_query = select(func.count(Partner.id))
        if status:
            query = query.where(Partner.status == status)
            count_query = count_query.where(Partner.status == status)
        total = self.session.execute(count_query).scalar() or 0
        query = query.order_by(Partner.mdm_partner_id).limit(limit).offset(offset)
        return list(self.session.execute(query).scalars().all()), total

    def save(self, partner: Partner) -> Partner:
        self.session.add(partner)
        self.session.flush()
        return partner

    def update_segments(self, partner: Partner, segments: List[Dict[str, Any]]) -> Partner:
        """Replace the stored SAP segment states."""
        partner.sap_segments = [dict(segment) for segment in segments]
        return self.save(partner)


# ============================================
# CHANGE REQUEST REPOSITORY
# ============================================

class ChangeRequestRepository:
    """Repository for partner change requests."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, request_data: Dict[str, Any]) -> PartnerChangeRequest:
        request = PartnerChangeRequest(**request_data)
        self.session.add(request)
        self.session.flush()
        logger.debug(f"Created change request {request.id} for partner {request.partner_id}")
        return request

    def most_recent_for_partner(
        self,
        partner_id: Union[str, UUID],
        limit: int = 5
    ) -> List[PartnerChangeRequest]:
        """Most recent change requests of a partner, newest first."""
        key = coerce_uuid(partner_id)
        if key is None:
            return []
        query = (
            select(PartnerChangeRequest)
            .where(PartnerChangeRequest.partner_id == key)
            .order_by(PartnerChangeRequest.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(query).scalars().all())

    def list(
        self,
        partner_id: Union[str, UUID],
        status: Optional[ChangeRequestStatus] = None,
        request_type: Optional[ChangeRequestType] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[PartnerChangeRequest], int]:
        key = coerce_uuid(partner_id)
        if key is None:
            return [], 0
        filters = [PartnerChangeRequest.partner_id == key]
        if status:
            filters.append(PartnerChangeRequest.status == status)
        if request_type:
            filters.append(PartnerChangeRequest.request_type == request_type)

        total = self.session.execute(
            select(func.count(PartnerChangeRequest.id)).where(*filters)
        ).scalar() or 0
        query = (
            select(PartnerChangeRequest)
            .where(*filters)
            .order_by(PartnerChangeRequest.created_at.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        return list(self.session.execute(query).scalars().all()), total


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for audit jobs and their per-partner log entries."""

    def __init__(self, session: Session):
        self.session = session

    def create_job(self, job_data: Dict[str, Any]) -> PartnerAuditJob:
        job = PartnerAuditJob(**job_data)
        self.session.add(job)
        self.session.flush()
        logger.debug(f"Created audit job {job.id} ({job.scope.value}, {len(job.partner_ids)} partners)")
        return job

    def get_job(self, job_id: Union[str, UUID]) -> Optional[PartnerAuditJob]:
        key = coerce_uuid(job_id)
        if key is None:
            return None
        return self.session.get(PartnerAuditJob, key)

    def update_job(self, job_id: Union[str, UUID], **fields: Any) -> PartnerAuditJob:
        """
        Update job fields.

        Raises:
            EntityNotFoundError: If the job does not exist
        """
        job = self.get_job(job_id)
        if job is None:
            raise EntityNotFoundError(f"Audit job {job_id} not found")
        for name, value in fields.items():
            setattr(job, name, value)
        self.session.flush()
        return job

    def append_log(self, log_data: Dict[str, Any]) -> PartnerAuditLog:
        entry = PartnerAuditLog(**log_data)
        self.session.add(entry)
        self.session.flush()
        return entry

    def logs_for_job(self, job_id: Union[str, UUID]) -> List[PartnerAuditLog]:
        key = coerce_uuid(job_id)
        if key is None:
            return []
        query = (
            select(PartnerAuditLog)
            .where(PartnerAuditLog.job_id == key)
            .order_by(PartnerAuditLog.created_at)
        )
        return list(self.session.execute(query).scalars().all())

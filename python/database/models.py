"""
SQLAlchemy ORM Models for the Partner MDM service

This module defines the persistence schema for business partner master data:
- UUID primary keys for distributed systems compatibility
- JSON columns (JSONB on PostgreSQL) for nested profile documents
- Timestamps for all records (created_at, updated_at)
- Append-only audit ledger

Tables:
1. partners - Partner master record, approval state and SAP segment states
2. partner_change_requests - Requested field changes awaiting review
3. partner_audit_jobs - Audit runs (on demand, SAP reverse sync, external requests)
4. partner_audit_logs - One audit outcome per (job, partner)

JSON attributes are replaced, never mutated in place, so that the ORM
detects the change.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, DateTime, Text, ForeignKey, Index, Enum, JSON, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

JsonType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class PersonType(str, PyEnum):
    """Legal entity (CNPJ) or natural person (CPF)"""
    PJ = "PJ"
    PF = "PF"


class PartnerNature(str, PyEnum):
    """Commercial relationship with the partner"""
    CUSTOMER = "cliente"
    SUPPLIER = "fornecedor"
    BOTH = "ambos"


class PartnerStatus(str, PyEnum):
    """Lifecycle status of a partner record"""
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    INTEGRATED = "integrated"


class ApprovalStage(str, PyEnum):
    """Ordered review stages; FINALIZED is terminal"""
    FISCAL = "fiscal"
    PURCHASING = "purchasing"
    MASTER_DATA = "master_data"
    FINALIZED = "finalized"


class ApprovalAction(str, PyEnum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChangeRequestType(str, PyEnum):
    INDIVIDUAL = "individual"
    BATCH = "batch"
    AUDIT = "audit"


class ChangeRequestStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChangeRequestOrigin(str, PyEnum):
    INTERNAL = "internal"
    EXTERNAL = "external"


class AuditScope(str, PyEnum):
    INDIVIDUAL = "individual"
    BATCH = "batch"


class AuditJobStatus(str, PyEnum):
    """Audit job lifecycle; REGISTERED marks jobs created for external change requests"""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    REGISTERED = "registered"


class AuditResult(str, PyEnum):
    OK = "ok"
    INCONSISTENT = "inconsistent"
    ERROR = "error"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )


# ============================================
# PARTNER MODELS
# ============================================

class Partner(Base, TimestampMixin):
    """
    Business partner master record.

    Holds the registration data, the approval workflow position and the
    per-segment SAP integration state. Nested profile documents keep the
    field names of the partner data contract (``cep``, ``logradouro``,
    ``email``...).
    """
    __tablename__ = "partners"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Sequential business identifier, assigned once on creation
    mdm_partner_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    # Assigned by a successful primary record integration
    sap_business_partner_id: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, index=True
    )

    person_type: Mapped[PersonType] = mapped_column(Enum(PersonType), nullable=False)
    nature: Mapped[PartnerNature] = mapped_column(Enum(PartnerNature), nullable=False)
    status: Mapped[PartnerStatus] = mapped_column(
        Enum(PartnerStatus), nullable=False, default=PartnerStatus.DRAFT, index=True
    )
    approval_stage: Mapped[ApprovalStage] = mapped_column(
        Enum(ApprovalStage), nullable=False, default=ApprovalStage.FISCAL
    )
    approval_history: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)

    legal_name: Mapped[str] = mapped_column(String(255), nullable=False)
    trade_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Digits only, globally unique
    document: Mapped[str] = mapped_column(String(14), nullable=False, unique=True)

    state_registration: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    municipal_registration: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    suframa: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    tax_regime: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    primary_contact: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    communication: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    addresses: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    banks: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    supplier_info: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    sales_info: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    fiscal_info: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    credit_info: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    carriers: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)

    # One state document per SAP segment
    sap_segments: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)

    change_requests: Mapped[List["PartnerChangeRequest"]] = relationship(
        "PartnerChangeRequest",
        back_populates="partner",
        cascade="all, delete-orphan",
        lazy="select"
    )

    def __repr__(self) -> str:
        return f"<Partner(id={self.id}, mdm_id={self.mdm_partner_id}, status={self.status})>"


class PartnerChangeRequest(Base, TimestampMixin):
    """
    Requested changes to one partner.

    ``payload`` keeps the batch envelope:
    ``{tipo, motivo, origin, batchId, metadata, partners: [{partnerId,
    partnerName, document, changes: [{field, label, previousValue,
    newValue}]}]}``.
    """
    __tablename__ = "partner_change_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    partner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    request_type: Mapped[ChangeRequestType] = mapped_column(Enum(ChangeRequestType), nullable=False)
    status: Mapped[ChangeRequestStatus] = mapped_column(
        Enum(ChangeRequestStatus), nullable=False, default=ChangeRequestStatus.PENDING
    )
    origin: Mapped[ChangeRequestOrigin] = mapped_column(
        Enum(ChangeRequestOrigin), nullable=False, default=ChangeRequestOrigin.INTERNAL
    )
    motivo: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    requested_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    requested_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    partner: Mapped["Partner"] = relationship("Partner", back_populates="change_requests")

    __table_args__ = (
        Index('ix_change_request_partner_created', 'partner_id', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<PartnerChangeRequest(id={self.id}, partner_id={self.partner_id}, status={self.status})>"


class PartnerAuditJob(Base, TimestampMixin):
    """Audit run over an ordered, de-duplicated set of partners."""
    __tablename__ = "partner_audit_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scope: Mapped[AuditScope] = mapped_column(Enum(AuditScope), nullable=False)
    partner_ids: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    status: Mapped[AuditJobStatus] = mapped_column(
        Enum(AuditJobStatus), nullable=False, default=AuditJobStatus.QUEUED, index=True
    )
    requested_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    logs: Mapped[List["PartnerAuditLog"]] = relationship(
        "PartnerAuditLog",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="PartnerAuditLog.created_at"
    )

    def __repr__(self) -> str:
        return f"<PartnerAuditJob(id={self.id}, scope={self.scope}, status={self.status})>"


class PartnerAuditLog(Base):
    """
    Audit outcome for one partner within one job.

    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "partner_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("partner_audit_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Kept as text so logs survive for partner ids that no longer resolve
    partner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    result: Mapped[AuditResult] = mapped_column(Enum(AuditResult), nullable=False)
    differences: Mapped[Optional[list]] = mapped_column(JsonType, nullable=True)
    external_data: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )

    job: Mapped["PartnerAuditJob"] = relationship("PartnerAuditJob", back_populates="logs")

    def __repr__(self) -> str:
        return f"<PartnerAuditLog(job_id={self.job_id}, partner_id={self.partner_id}, result={self.result})>"

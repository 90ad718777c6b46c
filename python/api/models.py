"""
Pydantic request/response schemas for the Partner MDM API

Response models read straight from the ORM rows (``from_attributes``).
Request fields use the camelCase names of the partner data contract
where the frontend sends them.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from database.models import (
    ApprovalStage,
    AuditJobStatus,
    AuditResult,
    AuditScope,
    ChangeRequestOrigin,
    ChangeRequestStatus,
    ChangeRequestType,
    PartnerNature,
    PartnerStatus,
    PersonType,
)


# ============================================
# REQUESTS
# ============================================

class PartnerCreateRequest(BaseModel):
    """Request schema for registering a new partner as a draft."""
    person_type: PersonType = Field(..., description="PJ (CNPJ) or PF (CPF)")
    nature: PartnerNature = Field(..., description="cliente, fornecedor or ambos")
    legal_name: str = Field(..., min_length=1, max_length=255, description="Legal name")
    trade_name: Optional[str] = Field(default=None, max_length=255)
    document: str = Field(
        ...,
        min_length=11,
        max_length=18,
        description="CNPJ or CPF, with or without punctuation"
    )
    state_registration: Optional[str] = Field(default=None, max_length=30)
    municipal_registration: Optional[str] = Field(default=None, max_length=30)
    suframa: Optional[str] = Field(default=None, max_length=20)
    tax_regime: Optional[str] = Field(default=None, max_length=100)
    primary_contact: Dict[str, Any] = Field(default_factory=dict)
    communication: Dict[str, Any] = Field(default_factory=dict)
    addresses: List[Dict[str, Any]] = Field(default_factory=list)
    banks: List[Dict[str, Any]] = Field(default_factory=list)
    supplier_info: Dict[str, Any] = Field(default_factory=dict)
    sales_info: Dict[str, Any] = Field(default_factory=dict)
    fiscal_info: Dict[str, Any] = Field(default_factory=dict)
    credit_info: Dict[str, Any] = Field(default_factory=dict)
    carriers: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator('legal_name')
    @classmethod
    def strip_legal_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Legal name is required")
        return v.strip()


class RejectStageRequest(BaseModel):
    """Optional reason recorded in the approval history."""
    reason: Optional[str] = Field(default=None, max_length=1000)


class FieldChangeInput(BaseModel):
    """One requested field change."""
    field: str = Field(..., description="Field id from the change request catalog")
    new_value: Any = Field(default=None, alias="newValue")
    label: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    def to_service(self) -> Dict[str, Any]:
        item = {'field': self.field, 'newValue': self.new_value}
        if self.label:
            item['label'] = self.label
        return item


class ChangeRequestCreate(BaseModel):
    """Request schema for a change request on one partner."""
    fields: List[FieldChangeInput] = Field(..., min_length=1)
    motivo: Optional[str] = Field(default=None, description="Reason for the request")
    origin: ChangeRequestOrigin = ChangeRequestOrigin.INTERNAL
    metadata: Optional[Dict[str, Any]] = None


class BulkChangeRequestCreate(ChangeRequestCreate):
    """Same changes requested for several partners."""
    partner_ids: List[str] = Field(default_factory=list, alias="partnerIds")

    model_config = ConfigDict(populate_by_name=True)


class AuditCreateRequest(BaseModel):
    """Request schema for an on-demand audit."""
    partner_ids: List[str] = Field(default_factory=list, alias="partnerIds")

    model_config = ConfigDict(populate_by_name=True)


# ============================================
# RESPONSES
# ============================================

class PartnerResponse(BaseModel):
    """Partner master record."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    mdm_partner_id: int
    sap_business_partner_id: Optional[str] = None
    person_type: PersonType
    nature: PartnerNature
    status: PartnerStatus
    approval_stage: ApprovalStage
    approval_history: List[Dict[str, Any]] = Field(default_factory=list)
    legal_name: str
    trade_name: Optional[str] = None
    document: str
    state_registration: Optional[str] = None
    municipal_registration: Optional[str] = None
    suframa: Optional[str] = None
    tax_regime: Optional[str] = None
    primary_contact: Dict[str, Any] = Field(default_factory=dict)
    communication: Dict[str, Any] = Field(default_factory=dict)
    addresses: List[Dict[str, Any]] = Field(default_factory=list)
    banks: List[Dict[str, Any]] = Field(default_factory=list)
    supplier_info: Dict[str, Any] = Field(default_factory=dict)
    sales_info: Dict[str, Any] = Field(default_factory=dict)
    fiscal_info: Dict[str, Any] = Field(default_factory=dict)
    credit_info: Dict[str, Any] = Field(default_factory=dict)
    carriers: List[Dict[str, Any]] = Field(default_factory=list)
    sap_segments: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PartnerListResponse(BaseModel):
    items: List[PartnerResponse]
    total: int = Field(..., ge=0)
    limit: int
    offset: int


class ChangeRequestResponse(BaseModel):
    """Stored change request."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    partner_id: UUID
    request_type: ChangeRequestType
    status: ChangeRequestStatus
    origin: ChangeRequestOrigin
    motivo: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    batch_id: Optional[str] = None
    requested_by: Optional[str] = None
    requested_by_name: Optional[str] = None
    created_at: Optional[datetime] = None


class BulkChangeRequestResponse(BaseModel):
    batch_id: str
    total: int = Field(..., ge=0)
    requests: List[ChangeRequestResponse]


class ChangeRequestListResponse(BaseModel):
    items: List[ChangeRequestResponse]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=1)


class AuditLogResponse(BaseModel):
    """Audit outcome for one partner."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID
    partner_id: str
    result: AuditResult
    differences: Optional[List[Dict[str, Any]]] = None
    external_data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    created_at: Optional[datetime] = None


class AuditJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    scope: AuditScope
    partner_ids: List[str] = Field(default_factory=list)
    status: AuditJobStatus
    requested_by: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class AuditJobDetailResponse(BaseModel):
    """Audit job with its logs."""
    job: AuditJobResponse
    logs: List[AuditLogResponse] = Field(default_factory=list)


class ProgressStep(BaseModel):
    id: str
    label: str
    status: str = Field(..., description="pending, in_progress, complete or blocked")
    completed_items: int = Field(..., ge=0)
    total_items: int = Field(..., ge=0)
    missing: List[str] = Field(default_factory=list)


class RegistrationProgressResponse(BaseModel):
    steps: List[ProgressStep]
    completed_steps: int = Field(..., ge=0)
    total_steps: int = Field(..., ge=0)
    completion_percentage: int = Field(..., ge=0, le=100)
    overall_status: str


class PartnerDetailsResponse(BaseModel):
    """Partner with recent change requests, audit logs and registration progress."""
    partner: PartnerResponse
    change_requests: List[ChangeRequestResponse] = Field(default_factory=list)
    audit_logs: List[AuditLogResponse] = Field(default_factory=list)
    registration_progress: RegistrationProgressResponse


class SyncSummaryResponse(BaseModel):
    """Counters of one SAP reverse sync run."""
    fetched: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: bool = Field(..., description="Database reachable")
    sap_sync_enabled: bool
    sap_configured: bool
    scheduler_running: bool = False
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail

"""
Partner master data services

- Approval workflow and segmented SAP integration
- Audits against the CNPJ registry and change requests
- SAP reverse sync
"""

from partners.errors import (
    PartnerError,
    ValidationError,
    PermissionDeniedError,
    NotFoundError,
    ExternalServiceError,
)
from partners.segments import SapSegment, SegmentStatus, SegmentState
from partners.integration import SegmentIntegrationEngine, IntegrationResult
from partners.workflow import ApprovalWorkflow, Actor
from partners.audit import AuditComparisonEngine, AuditService
from partners.change_requests import ChangeRequestService
from partners.reverse_sync import SapSyncService, SyncSummary, map_sap_partner_payload
from partners.service import PartnerService

__all__ = [
    'PartnerError',
    'ValidationError',
    'PermissionDeniedError',
    'NotFoundError',
    'ExternalServiceError',
    'SapSegment',
    'SegmentStatus',
    'SegmentState',
    'SegmentIntegrationEngine',
    'IntegrationResult',
    'ApprovalWorkflow',
    'Actor',
    'AuditComparisonEngine',
    'AuditService',
    'ChangeRequestService',
    'SapSyncService',
    'SyncSummary',
    'map_sap_partner_payload',
    'PartnerService',
]

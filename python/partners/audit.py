"""
Partner audits.

An audit compares a partner with a reference snapshot. Legal entities are
checked against the public CNPJ registry; when that yields no differences
the most recent change requests are used as the reference instead. Each
audited partner produces one log entry in the audit job.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy.orm import Session

from config_manager import AuditConfig
from database.models import (
    AuditJobStatus,
    AuditResult,
    AuditScope,
    Partner,
    PartnerAuditJob,
    PartnerAuditLog,
    PartnerChangeRequest,
    PersonType,
)
from database.repositories import AuditRepository, ChangeRequestRepository, PartnerRepository
from document_validators import only_digits
from partners.diffing import values_equal
from partners.errors import NotFoundError, PartnerError, ValidationError
from partners.fields import AUDIT_FIELD_MAPPINGS
from partners.registry_client import CnpjRegistryClient, normalize_registry_payload

logger = logging.getLogger(__name__)

NO_DIFFERENCES_MESSAGE = "No differences found."
DIFFERENCES_MESSAGE = "Differences found between the record and the reference source."
NO_REFERENCE_MESSAGE = "No comparison source available for this partner."
PARTNER_NOT_FOUND_MESSAGE = "Partner not found"
UNKNOWN_FAILURE_MESSAGE = "Unknown failure"


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReferenceComparison:
    """Differences against one reference source plus its snapshot"""
    differences: List[Dict[str, Any]]
    external_data: Optional[Dict[str, Any]] = None


@dataclass
class AuditComparison:
    result: AuditResult
    message: str
    differences: List[Dict[str, Any]] = field(default_factory=list)
    external_data: Optional[Dict[str, Any]] = None


def change_request_differences(request: PartnerChangeRequest, partner_id: str) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """
    Differences recorded in a change request for one partner.

    Uses the payload entry of ``partner_id``, falling back to the first
    entry.
    """
    payload = request.payload or {}
    entries = payload.get('partners') if isinstance(payload.get('partners'), list) else []
    entry = next((item for item in entries if isinstance(item, dict) and item.get('partnerId') == partner_id), None)
    if entry is None and entries:
        entry = entries[0]
    changes = entry.get('changes') if isinstance(entry, dict) and isinstance(entry.get('changes'), list) else []

    request_type = getattr(request.request_type, 'value', request.request_type)
    status = getattr(request.status, 'value', request.status)
    created_at = _iso(request.created_at)

    differences = [
        {
            'field': change.get('field') or 'unknown',
            'label': change.get('label') or change.get('field') or 'unknown',
            'before': change.get('previousValue'),
            'after': change.get('newValue'),
            'source': 'change_request',
            'metadata': {
                'changeRequestId': str(request.id),
                'requestType': request_type,
                'status': status,
                'requestedBy': request.requested_by,
                'createdAt': created_at,
                'payloadMetadata': payload.get('metadata'),
                'partnerEntryMetadata': entry.get('metadata') if isinstance(entry, dict) else None,
            },
        }
        for change in changes if isinstance(change, dict)
    ]
    external_data = {
        'source': 'change_request',
        'changeRequestId': str(request.id),
        'requestType': request_type,
        'status': status,
        'requestedBy': request.requested_by,
        'createdAt': created_at,
        'payload': payload,
    }
    return differences, external_data


class AuditComparisonEngine:
    """Builds the audit outcome of a single partner"""

    def __init__(
        self,
        change_requests: ChangeRequestRepository,
        registry: CnpjRegistryClient,
        lookback: int = 5
    ):
        self.change_requests = change_requests
        self.registry = registry
        self.lookback = lookback

    def compare_with_registry(self, partner: Partner) -> Optional[ReferenceComparison]:
        """
        Compare a legal entity with its CNPJ registry record.

        Returns None for natural persons and partners without a document.

        Raises:
            ExternalServiceError: When the registry cannot be queried
        """
        if partner.person_type != PersonType.PJ:
            return None
        document = only_digits(partner.document)
        if not document:
            return None

        normalized = normalize_registry_payload(self.registry.lookup_by_document(document))
        raw = normalized.pop('raw', None)

        differences = []
        for mapping in AUDIT_FIELD_MAPPINGS:
            partner_value = mapping.partner_value(partner)
            external_value = mapping.external_value(normalized)
            if values_equal(partner_value, external_value):
                continue
            differences.append({
                'field': mapping.field,
                'label': mapping.label,
                'before': partner_value,
                'after': external_value,
                'source': 'external',
                'metadata': {
                    'partnerPath': mapping.partner_path,
                    'externalPath': mapping.external_path,
                },
            })

        external_data = {
            'source': 'cnpja',
            'document': document,
            'fetchedAt': _utcnow().isoformat(),
            'raw': raw,
            'normalized': normalized,
        }
        return ReferenceComparison(differences, external_data)

    def compare_with_change_requests(self, partner: Partner) -> Optional[ReferenceComparison]:
        """First recent change request with a non-empty change list, newest first"""
        partner_id = str(partner.id)
        for request in self.change_requests.most_recent_for_partner(partner.id, self.lookback):
            differences, external_data = change_request_differences(request, partner_id)
            if differences:
                return ReferenceComparison(differences, external_data)
        return None

    def compare(self, partner: Partner) -> AuditComparison:
        differences: List[Dict[str, Any]] = []
        sources: List[Dict[str, Any]] = []
        warnings: List[str] = []
        has_reference = False

        try:
            external = self.compare_with_registry(partner)
        except PartnerError as e:
            warnings.append(e.message)
            external = None

        if external is not None:
            has_reference = True
            differences.extend(external.differences)
            if external.external_data:
                sources.append(external.external_data)

        if not differences:
            fallback = self.compare_with_change_requests(partner)
            if fallback is not None:
                has_reference = True
                differences.extend(fallback.differences)
                if fallback.external_data:
                    sources.append(fallback.external_data)

        if not sources:
            external_data = None
        elif len(sources) == 1:
            external_data = sources[0]
        else:
            external_data = {'sources': sources}

        if differences:
            message = DIFFERENCES_MESSAGE
            if warnings:
                message += f" Notes: {'; '.join(warnings)}."
            return AuditComparison(AuditResult.INCONSISTENT, message, differences, external_data)

        if not has_reference:
            if warnings:
                message = f"Could not obtain data for comparison: {'; '.join(warnings)}"
            else:
                message = NO_REFERENCE_MESSAGE
            return AuditComparison(AuditResult.ERROR, message, [], external_data)

        message = NO_DIFFERENCES_MESSAGE
        if warnings:
            message = f"Audit finished without differences. Notes: {'; '.join(warnings)}."
        return AuditComparison(AuditResult.OK, message, [], external_data)


class AuditService:
    """Creates and processes audit jobs"""

    def __init__(
        self,
        session: Session,
        registry: CnpjRegistryClient,
        config: Optional[AuditConfig] = None
    ):
        self.session = session
        self.partners = PartnerRepository(session)
        self.audits = AuditRepository(session)
        self.engine = AuditComparisonEngine(
            ChangeRequestRepository(session),
            registry,
            (config or AuditConfig()).change_request_lookback,
        )

    def request_audit(
        self,
        partner_ids: List[str],
        requested_by: Optional[str] = None
    ) -> Tuple[PartnerAuditJob, List[PartnerAuditLog]]:
        """
        Audit one or more partners synchronously.

        Raises:
            ValidationError: If no partner id is given
            NotFoundError: If none of the ids resolve to a partner
        """
        ids = list(dict.fromkeys(str(pid).strip() for pid in partner_ids or [] if pid and str(pid).strip()))
        if not ids:
            raise ValidationError("Provide at least one partner", field="partnerIds")

        if not self.partners.list_by_ids(ids):
            raise NotFoundError("No partner found for audit")

        job = self.audits.create_job({
            'scope': AuditScope.INDIVIDUAL if len(ids) == 1 else AuditScope.BATCH,
            'partner_ids': ids,
            'status': AuditJobStatus.QUEUED,
            'requested_by': requested_by,
        })
        self.session.commit()

        self.process_job(job.id)
        return self.get_audit_job(job.id)

    def get_audit_job(self, job_id: Union[str, UUID]) -> Tuple[PartnerAuditJob, List[PartnerAuditLog]]:
        job = self.audits.get_job(job_id)
        if job is None:
            raise NotFoundError("Audit not found")
        return job, self.audits.logs_for_job(job.id)

    def process_job(self, job_id: Union[str, UUID]) -> None:
        """
        Run a queued job: one log per partner, sequentially.

        A failure while auditing one partner is recorded on that partner's
        log and does not stop the job.
        """
        job = self.audits.get_job(job_id)
        if job is None:
            return

        self.audits.update_job(job.id, status=AuditJobStatus.RUNNING, started_at=_utcnow())
        self.session.commit()

        try:
            for partner_id in list(job.partner_ids or []):
                self._audit_partner(job.id, partner_id)
                self.session.commit()

            self.audits.update_job(job.id, status=AuditJobStatus.COMPLETED, finished_at=_utcnow())
            self.session.commit()
        except Exception as e:
            logger.exception(f"Audit job {job.id} failed")
            self.session.rollback()
            self.audits.update_job(
                job.id,
                status=AuditJobStatus.ERROR,
                finished_at=_utcnow(),
                error_message=str(e) or UNKNOWN_FAILURE_MESSAGE,
            )
            self.session.commit()

    def _audit_partner(self, job_id: UUID, partner_id: str) -> None:
        try:
            partner = self.partners.get_by_id(partner_id)
            if partner is None:
                self.audits.append_log({
                    'job_id': job_id,
                    'partner_id': partner_id,
                    'result': AuditResult.ERROR,
                    'message': PARTNER_NOT_FOUND_MESSAGE,
                })
                return

            comparison = self.engine.compare(partner)
            self.audits.append_log({
                'job_id': job_id,
                'partner_id': partner_id,
                'result': comparison.result,
                'message': comparison.message,
                'differences': comparison.differences or None,
                'external_data': comparison.external_data,
            })
        except Exception as e:
            logger.error(f"Audit of partner {partner_id} in job {job_id} failed: {e}")
            self.audits.append_log({
                'job_id': job_id,
                'partner_id': partner_id,
                'result': AuditResult.ERROR,
                'message': str(e) or UNKNOWN_FAILURE_MESSAGE,
            })

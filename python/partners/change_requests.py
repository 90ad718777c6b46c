"""
Change requests.

A change request records the field changes someone asked for on one or
more partners, with the previous values captured at request time. Requests
originating outside the company are also registered in the audit ledger.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from database.models import (
    AuditJobStatus,
    AuditResult,
    AuditScope,
    ChangeRequestOrigin,
    ChangeRequestStatus,
    ChangeRequestType,
    Partner,
    PartnerChangeRequest,
)
from database.repositories import AuditRepository, ChangeRequestRepository, PartnerRepository
from partners.diffing import clone_value
from partners.errors import NotFoundError, ValidationError
from partners.fields import CHANGE_REQUEST_FIELD_MAP

logger = logging.getLogger(__name__)


def _value(member: Any) -> Any:
    return getattr(member, 'value', member)


def _parse_origin(origin: Any) -> ChangeRequestOrigin:
    if origin is None or origin == '':
        return ChangeRequestOrigin.INTERNAL
    try:
        return ChangeRequestOrigin(_value(origin))
    except ValueError:
        raise ValidationError(f"Unknown change request origin: {origin}", field="origin")


def _require_reason(motivo: Optional[str]) -> str:
    reason = (motivo or '').strip()
    if not reason:
        raise ValidationError("Provide the reason for the request", field="motivo")
    return reason


def _require_fields(fields: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    if not fields:
        raise ValidationError("Provide at least one field", field="fields")
    return fields


class ChangeRequestService:
    """Creates and lists partner change requests"""

    def __init__(self, session: Session):
        self.session = session
        self.partners = PartnerRepository(session)
        self.requests = ChangeRequestRepository(session)
        self.audits = AuditRepository(session)

    def _map_field_changes(self, partner: Partner, fields: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        changes = []
        for item in fields or []:
            field_id = item.get('field')
            definition = CHANGE_REQUEST_FIELD_MAP.get(field_id)
            if definition is None:
                raise ValidationError(
                    f'Field "{field_id}" is not supported for change requests.', field="fields"
                )
            changes.append({
                'field': field_id,
                'label': item.get('label') or definition.label,
                'previousValue': clone_value(definition.current_value(partner)),
                'newValue': item.get('newValue'),
            })
        return changes

    def _build_payload(
        self,
        partner: Partner,
        fields: List[Dict[str, Any]],
        request_type: ChangeRequestType,
        motivo: str,
        origin: ChangeRequestOrigin,
        metadata: Optional[Dict[str, Any]] = None,
        batch_id: Optional[str] = None
    ) -> Dict[str, Any]:
        return {
            'tipo': request_type.value,
            'motivo': motivo,
            'origin': origin.value,
            'batchId': batch_id,
            'metadata': metadata,
            'partners': [{
                'partnerId': str(partner.id),
                'partnerName': partner.legal_name,
                'document': partner.document,
                'changes': self._map_field_changes(partner, fields),
            }],
        }

    def _save_request(
        self,
        partner: Partner,
        request_type: ChangeRequestType,
        payload: Dict[str, Any],
        motivo: str,
        origin: ChangeRequestOrigin,
        requested_by: Optional[str],
        batch_id: Optional[str] = None
    ) -> PartnerChangeRequest:
        request = self.requests.create({
            'partner_id': partner.id,
            'request_type': request_type,
            'status': ChangeRequestStatus.PENDING,
            'origin': origin,
            'motivo': motivo,
            'payload': payload,
            'batch_id': batch_id,
            'requested_by': requested_by,
        })
        if origin == ChangeRequestOrigin.EXTERNAL:
            self.register_external_audit(partner, request)
        return request

    def create_change_request(
        self,
        partner_id: Union[str, UUID],
        fields: List[Dict[str, Any]],
        motivo: Optional[str],
        origin: Any = None,
        requested_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> PartnerChangeRequest:
        """
        Record requested changes for one partner.

        Args:
            partner_id: Partner id
            fields: ``[{field, newValue, label?}]`` with field ids from the catalog
            motivo: Reason for the request (required)
            origin: 'internal' (default) or 'external'
            requested_by: Requester id
            metadata: Free-form metadata kept in the payload

        Raises:
            ValidationError: Missing reason, no fields or unsupported field
            NotFoundError: Unknown partner
        """
        reason = _require_reason(motivo)
        fields = _require_fields(fields)
        partner = self.partners.get_by_id(partner_id)
        if partner is None:
            raise NotFoundError("Partner not found")
        request_origin = _parse_origin(origin)

        payload = self._build_payload(
            partner, fields, ChangeRequestType.INDIVIDUAL, reason, request_origin, metadata
        )
        request = self._save_request(
            partner, ChangeRequestType.INDIVIDUAL, payload, reason, request_origin, requested_by
        )
        self.session.commit()
        logger.info(f"Change request {request.id} created for partner {partner.id} ({request_origin.value})")
        return request

    def create_bulk_change_requests(
        self,
        partner_ids: List[str],
        fields: List[Dict[str, Any]],
        motivo: Optional[str],
        origin: Any = None,
        requested_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Record the same requested changes for several partners under one batch id.

        Raises:
            ValidationError: Missing reason, no fields, no partner ids or unsupported field
            NotFoundError: When any partner id does not resolve
        """
        reason = _require_reason(motivo)
        fields = _require_fields(fields)
        ids = list(dict.fromkeys(str(pid).strip() for pid in partner_ids or [] if pid and str(pid).strip()))
        if not ids:
            raise ValidationError("Provide at least one partner", field="partnerIds")

        partners = self.partners.list_by_ids(ids)
        if not partners:
            raise NotFoundError("No partner found")
        found = {str(partner.id): partner for partner in partners}
        missing = [pid for pid in ids if pid not in found]
        if missing:
            raise NotFoundError(f"Partners not found: {', '.join(missing)}")

        request_origin = _parse_origin(origin)
        batch_id = str(uuid.uuid4())
        created = []
        for partner in partners:
            payload = self._build_payload(
                partner, fields, ChangeRequestType.BATCH, reason, request_origin, metadata, batch_id
            )
            created.append(self._save_request(
                partner, ChangeRequestType.BATCH, payload, reason, request_origin, requested_by, batch_id
            ))
        self.session.commit()
        logger.info(f"Batch {batch_id}: {len(created)} change requests created")
        return {'batch_id': batch_id, 'total': len(created), 'requests': created}

    def list_change_requests(
        self,
        partner_id: Union[str, UUID],
        status: Optional[str] = None,
        request_type: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Dict[str, Any]:
        if self.partners.get_by_id(partner_id) is None:
            raise NotFoundError("Partner not found")
        try:
            status_filter = ChangeRequestStatus(status) if status else None
            type_filter = ChangeRequestType(request_type) if request_type else None
        except ValueError as e:
            raise ValidationError(str(e))

        page = max(1, page)
        page_size = max(1, page_size)
        items, total = self.requests.list(partner_id, status_filter, type_filter, page, page_size)
        return {
            'items': items,
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': max(1, -(-total // page_size)),
        }

    def register_external_audit(self, partner: Partner, request: PartnerChangeRequest) -> None:
        """Record an externally originated change request as an inconsistent audit"""
        job = self.audits.create_job({
            'scope': AuditScope.INDIVIDUAL,
            'partner_ids': [str(partner.id)],
            'status': AuditJobStatus.REGISTERED,
            'requested_by': request.requested_by or 'external',
        })

        payload = request.payload or {}
        differences = []
        for entry in payload.get('partners') or []:
            for change in entry.get('changes') or []:
                differences.append({
                    'field': change.get('field') or 'unknown',
                    'label': change.get('label') or change.get('field') or 'unknown',
                    'before': change.get('previousValue'),
                    'after': change.get('newValue'),
                    'source': 'change_request',
                })

        self.audits.append_log({
            'job_id': job.id,
            'partner_id': str(partner.id),
            'result': AuditResult.INCONSISTENT,
            'differences': differences,
            'external_data': {
                'source': 'change_request',
                'changeRequestId': str(request.id),
                'requestType': _value(request.request_type),
                'status': _value(request.status),
                'origin': payload.get('origin'),
                'motivo': request.motivo,
                'requestedBy': request.requested_by,
                'createdAt': request.created_at.isoformat() if request.created_at else None,
                'payload': payload,
            },
            'message': f"External change request {request.id}",
        })

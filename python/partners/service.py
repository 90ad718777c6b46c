"""Partner registration, read models and document lookups."""

import logging
from typing import Any, Dict, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from database.models import (
    ApprovalStage,
    Partner,
    PartnerAuditLog,
    PartnerNature,
    PartnerStatus,
    PersonType,
)
from database.repositories import (
    ChangeRequestRepository,
    DuplicateEntityError,
    PartnerRepository,
)
from document_validators import only_digits, validate_cnpj, validate_cpf, validate_document
from partners.errors import ExternalServiceError, NotFoundError, ValidationError
from partners.progress import calculate_registration_progress
from partners.registry_client import CnpjRegistryClient, normalize_registry_payload

logger = logging.getLogger(__name__)

PROFILE_DEFAULTS = {
    'primary_contact': dict,
    'communication': dict,
    'addresses': list,
    'banks': list,
    'supplier_info': dict,
    'sales_info': dict,
    'fiscal_info': dict,
    'credit_info': dict,
    'carriers': list,
}


def _parse_enum(enum_cls, value: Any, field: str):
    try:
        return enum_cls(getattr(value, 'value', value))
    except ValueError:
        raise ValidationError(f"Invalid value for {field}: {value}", field=field)


class PartnerService:
    """Creates partners and serves lookups"""

    def __init__(self, session: Session, registry: Optional[CnpjRegistryClient] = None):
        self.session = session
        self.partners = PartnerRepository(session)
        self.registry = registry

    def create_partner(self, data: Dict[str, Any]) -> Partner:
        """
        Register a new partner as a draft.

        Args:
            data: Partner attributes (person_type, nature, legal_name, document, ...)

        Returns:
            The created partner

        Raises:
            ValidationError: Invalid or already registered document, bad enum values
        """
        person_type = _parse_enum(PersonType, data.get('person_type'), 'person_type')
        nature = _parse_enum(PartnerNature, data.get('nature'), 'nature')

        legal_name = (data.get('legal_name') or '').strip()
        if not legal_name:
            raise ValidationError("Legal name is required", field="legal_name")

        document = only_digits(data.get('document'))
        if not validate_document(person_type, document):
            raise ValidationError(f"Invalid {'CNPJ' if person_type == PersonType.PJ else 'CPF'}", field="document")
        if self.partners.find_by_document(document) is not None:
            raise ValidationError("Document already registered", field="document", code="DUPLICATE_DOCUMENT")

        attributes = {key: value for key, value in data.items() if key in Partner.__table__.columns.keys()}
        for key in ('id', 'mdm_partner_id', 'status', 'approval_stage', 'approval_history', 'sap_segments',
                    'created_at', 'updated_at'):
            attributes.pop(key, None)
        for key, factory in PROFILE_DEFAULTS.items():
            if attributes.get(key) is None:
                attributes[key] = factory()

        attributes.update({
            'person_type': person_type,
            'nature': nature,
            'legal_name': legal_name,
            'document': document,
            'status': PartnerStatus.DRAFT,
            'approval_stage': ApprovalStage.FISCAL,
            'approval_history': [],
            'sap_segments': [],
        })

        try:
            partner = self.partners.create(attributes)
        except DuplicateEntityError:
            raise ValidationError("Document already registered", field="document", code="DUPLICATE_DOCUMENT")
        self.session.commit()
        logger.info(f"Partner {partner.id} created (mdm id {partner.mdm_partner_id})")
        return partner

    def get_partner(self, partner_id: Union[str, UUID]) -> Partner:
        partner = self.partners.get_by_id(partner_id)
        if partner is None:
            raise NotFoundError("Partner not found")
        return partner

    def get_details(self, partner_id: Union[str, UUID]) -> Dict[str, Any]:
        """Partner with recent change requests, audit logs and registration progress"""
        partner = self.get_partner(partner_id)
        change_requests = ChangeRequestRepository(self.session).most_recent_for_partner(partner.id, 20)
        audit_logs = self.session.execute(
            select(PartnerAuditLog)
            .where(PartnerAuditLog.partner_id == str(partner.id))
            .order_by(PartnerAuditLog.created_at.desc())
            .limit(20)
        ).scalars().all()
        return {
            'partner': partner,
            'change_requests': change_requests,
            'audit_logs': list(audit_logs),
            'registration_progress': calculate_registration_progress(partner),
        }

    def lookup_cnpj(self, raw_cnpj: str) -> Dict[str, Any]:
        """
        Registry data for a CNPJ not yet registered.

        Raises:
            ValidationError: Invalid or already registered CNPJ
            ExternalServiceError: Registry unavailable
        """
        cnpj = only_digits(raw_cnpj)
        if not validate_cnpj(cnpj):
            raise ValidationError("Invalid CNPJ", field="cnpj")
        if self.partners.find_by_document(cnpj) is not None:
            raise ValidationError("CNPJ already registered", field="cnpj", code="DUPLICATE_DOCUMENT")
        if self.registry is None:
            raise ExternalServiceError("CNPJ registry client is not configured")

        try:
            payload = self.registry.lookup_by_document(cnpj)
        except ExternalServiceError as e:
            logger.warning(f"CNPJ lookup failed for {cnpj}: {e.message}")
            raise ExternalServiceError(
                "Could not fetch data for the given CNPJ", status_code=e.status_code, timed_out=e.timed_out
            )
        return normalize_registry_payload(payload)

    def lookup_cpf(self, raw_cpf: str) -> Dict[str, Any]:
        """
        Validate a CPF not yet registered.

        Raises:
            ValidationError: Invalid or already registered CPF
        """
        cpf = only_digits(raw_cpf)
        if not validate_cpf(cpf):
            raise ValidationError("Invalid CPF", field="cpf")
        if self.partners.find_by_document(cpf) is not None:
            raise ValidationError("CPF already registered", field="cpf", code="DUPLICATE_DOCUMENT")
        return {'raw': {'cpf': cpf}, 'documento': cpf}

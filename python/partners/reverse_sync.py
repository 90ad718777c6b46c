"""
SAP reverse sync.

Pages through SAP's partner listing, maps each record onto partner
attributes, and persists the ones that differ from what is stored. Every
update is written to a single audit job per run, created on the first
update.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from config_manager import SapConfig
from database.models import (
    AuditJobStatus,
    AuditResult,
    AuditScope,
    Partner,
    PartnerAuditJob,
    PartnerNature,
    PartnerStatus,
    PersonType,
)
from database.repositories import AuditRepository, PartnerRepository, coerce_uuid
from document_validators import only_digits
from partners.diffing import clone_value, values_equal
from partners.fields import sync_field_label
from partners.sap_client import SapClient
from partners.segments import SapSegment, SegmentStatus

logger = logging.getLogger(__name__)

SYNC_REQUESTER = "sap-sync"
UPDATED_FROM_SAP_MESSAGE = "Record updated from SAP"

# SAP still reports the primary record under its legacy name
SEGMENT_ALIASES = {'businessPartner': SapSegment.PRIMARY_RECORD.value}

_ENUM_FIELDS = {'person_type': PersonType, 'nature': PartnerNature, 'status': PartnerStatus}


@dataclass
class SyncSummary:
    fetched: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _coerce_string(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _coerce_choice(value: Any, allowed) -> Optional[str]:
    text = _coerce_string(value)
    return text if text in allowed else None


def _first(entry: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if entry.get(key) is not None:
            return entry[key]
    return None


def _sanitize_contact(payload: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return None
    contact = {}
    name = _coerce_string(payload.get('name'))
    email = _coerce_string(payload.get('email'))
    phone = _coerce_string(payload.get('phone'))
    if name:
        contact['nome'] = name
    if email:
        contact['email'] = email
    if phone:
        contact['fone'] = phone
    return contact or None


def _sanitize_communication(payload: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return None
    communication = {}
    phone = _coerce_string(payload.get('phone'))
    mobile = _coerce_string(payload.get('mobile'))
    if phone:
        communication['telefone'] = phone
    if mobile:
        communication['celular'] = mobile

    emails = []
    for item in payload.get('emails') or []:
        if not isinstance(item, dict):
            continue
        address = _coerce_string(item.get('address'))
        if address:
            emails.append({'endereco': address, 'padrao': bool(item.get('default') or False)})
    if emails:
        communication['emails'] = emails
    return communication or None


def _sanitize_segments(payload: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    raw = None
    integration = payload.get('sapIntegration')
    for candidate in (
        payload.get('sapSegments'),
        payload.get('segments'),
        payload.get('sap_segments'),
        integration.get('segments') if isinstance(integration, dict) else None,
    ):
        if isinstance(candidate, list):
            raw = candidate
            break
    if raw is None:
        return None

    allowed_statuses = {status.value for status in SegmentStatus}
    by_segment: Dict[str, Dict[str, Any]] = {}
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        name = _coerce_string(_first(entry, 'segment', 'code', 'name'))
        name = SEGMENT_ALIASES.get(name, name)
        if SapSegment.parse(name) is None:
            continue

        record: Dict[str, Any] = {
            'segment': name,
            'status': _coerce_choice(entry.get('status'), allowed_statuses) or SegmentStatus.PENDING.value,
        }
        last_attempt = _first(entry, 'lastAttemptAt', 'last_attempt_at', 'lastAttempt')
        last_success = _first(entry, 'lastSuccessAt', 'last_success_at', 'lastSuccess')
        error_message = _first(entry, 'errorMessage', 'error_message')
        external_id = _coerce_string(_first(entry, 'sapId', 'sap_id', 'id'))
        if last_attempt:
            record['last_attempt_at'] = str(last_attempt)
        if last_success:
            record['last_success_at'] = str(last_success)
        if entry.get('message'):
            record['message'] = str(entry['message'])
        if error_message:
            record['error_message'] = str(error_message)
        if external_id:
            record['external_id'] = external_id
        by_segment.setdefault(name, record)

    if not by_segment:
        return None
    return [by_segment[name] for name in sorted(by_segment)]


def map_sap_partner_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map an SAP partner record onto Partner attribute updates.

    Only attributes present and valid in the payload are returned.
    Enumerated fields outside their allow-list are dropped.
    """
    if not isinstance(payload, dict):
        return {}
    updates: Dict[str, Any] = {}

    sap_id = (
        _coerce_string(payload.get('sapBusinessPartnerId'))
        or _coerce_string(payload.get('sapId'))
        or _coerce_string(payload.get('businessPartnerId'))
    )
    if sap_id:
        updates['sap_business_partner_id'] = sap_id

    legal_name = _coerce_string(payload.get('legalName'))
    if legal_name:
        updates['legal_name'] = legal_name
    trade_name = _coerce_string(payload.get('tradeName'))
    if trade_name:
        updates['trade_name'] = trade_name

    document = only_digits(_coerce_string(payload.get('document')))
    if document:
        updates['document'] = document

    for attribute, key in (('person_type', 'personType'), ('nature', 'nature'), ('status', 'status')):
        choice = _coerce_choice(payload.get(key), {member.value for member in _ENUM_FIELDS[attribute]})
        if choice:
            updates[attribute] = choice

    contact = _sanitize_contact(payload.get('contact'))
    if contact:
        updates['primary_contact'] = contact
    communication = _sanitize_communication(payload.get('communication'))
    if communication:
        updates['communication'] = communication

    if isinstance(payload.get('addresses'), list):
        updates['addresses'] = payload['addresses']
    if isinstance(payload.get('banks'), list):
        updates['banks'] = payload['banks']
    for attribute, key in (
        ('supplier_info', 'vendor'),
        ('sales_info', 'sales'),
        ('fiscal_info', 'fiscal'),
        ('credit_info', 'credit'),
    ):
        if isinstance(payload.get(key), dict):
            updates[attribute] = payload[key]
    if isinstance(payload.get('transporters'), list):
        updates['carriers'] = payload['transporters']

    segments = _sanitize_segments(payload)
    if segments:
        updates['sap_segments'] = segments

    return updates


def extract_items(response: Any) -> List[Dict[str, Any]]:
    """Partner records from a listing page (bare list, ``items`` or ``data``)"""
    if isinstance(response, list):
        return response
    if isinstance(response, dict):
        for key in ('items', 'data'):
            if isinstance(response.get(key), list):
                return response[key]
    return []


def has_next_page(response: Any, item_count: int, page_size: int, current_page: int) -> bool:
    """
    Decide whether another page should be fetched.

    Explicit ``pagination.nextPage`` wins, then ``hasNext``, then
    ``page``/``totalPages``; otherwise a full page implies more data.
    """
    pagination = response.get('pagination') if isinstance(response, dict) else None
    if not isinstance(pagination, dict):
        pagination = {}

    next_page = pagination.get('nextPage')
    if isinstance(next_page, int) and not isinstance(next_page, bool):
        return next_page > current_page
    if isinstance(pagination.get('hasNext'), bool):
        return pagination['hasNext']
    total_pages = pagination.get('totalPages')
    page = pagination.get('page')
    if isinstance(total_pages, int) and isinstance(page, int):
        return page < total_pages
    return item_count == page_size


def calculate_differences(partner: Partner, updates: Dict[str, Any]) -> List[Dict[str, Any]]:
    differences = []
    for attribute, after in updates.items():
        before = getattr(partner, attribute, None)
        if values_equal(before, after):
            continue
        differences.append({
            'field': attribute,
            'label': sync_field_label(attribute),
            'before': clone_value(before),
            'after': clone_value(after),
            'source': 'external',
            'metadata': {'sourceSystem': 'sap', 'field': attribute},
        })
    return differences


class SapSyncService:
    """Pulls partner records back from SAP"""

    def __init__(self, session: Session, config: SapConfig, client: Optional[SapClient] = None):
        self.session = session
        self.config = config
        self.client = client or SapClient(config)
        self.partners = PartnerRepository(session)
        self.audits = AuditRepository(session)
        self._job: Optional[PartnerAuditJob] = None
        self._partner_ids: List[str] = []

    def sync_partners(self) -> SyncSummary:
        """
        Run one reverse sync pass.

        Returns a zero summary when sync is disabled or SAP is not
        configured. A failed page fetch marks the run's job as error and is
        re-raised.
        """
        summary = SyncSummary()
        if not self.config.enabled:
            logger.debug("SAP sync disabled (SAP_SYNC_ENABLED=false)")
            return summary
        if not self.config.is_configured:
            logger.warning("Incomplete SAP configuration. Set SAP_BASE_URL, SAP_USER and SAP_PASSWORD.")
            return summary

        self._job = None
        self._partner_ids = []
        page_size = self.config.page_size
        page = 1

        while True:
            try:
                response = self.client.list_partners(page, page_size, self.config.updated_after)
            except Exception as e:
                summary.errors += 1
                self._fail_job(str(e))
                raise

            items = extract_items(response)
            if not items:
                break

            for payload in items:
                summary.fetched += 1
                try:
                    if self._process_payload(payload):
                        summary.updated += 1
                    else:
                        summary.skipped += 1
                    self.session.commit()
                except Exception as e:
                    self.session.rollback()
                    summary.errors += 1
                    logger.error(f"Failed to process SAP payload: {e}")

            if not has_next_page(response, len(items), page_size, page):
                break
            page += 1

        if self._job is not None:
            self.audits.update_job(
                self._job.id,
                status=AuditJobStatus.COMPLETED,
                finished_at=datetime.now(timezone.utc),
                partner_ids=list(self._partner_ids),
            )
            self.session.commit()

        logger.info(
            f"SAP sync finished. fetched={summary.fetched} updated={summary.updated} "
            f"skipped={summary.skipped} errors={summary.errors}"
        )
        return summary

    def find_partner(self, payload: Dict[str, Any]) -> Optional[Partner]:
        """Locate the stored partner: internal id, MDM id, SAP id, then document"""
        internal_id = coerce_uuid(_coerce_string(payload.get('partnerId') or payload.get('id')))
        if internal_id is not None:
            partner = self.partners.get_by_id(internal_id)
            if partner is not None:
                return partner

        mdm_id = _coerce_string(payload.get('mdmPartnerId'))
        if mdm_id and mdm_id.isdigit():
            partner = self.partners.find_by_external_id('mdm_partner_id', int(mdm_id))
            if partner is not None:
                return partner

        sap_id = _coerce_string(
            payload.get('sapBusinessPartnerId') or payload.get('sapId') or payload.get('businessPartnerId')
        )
        if sap_id:
            partner = self.partners.find_by_external_id('sap_business_partner_id', sap_id)
            if partner is not None:
                return partner

        document = only_digits(_coerce_string(payload.get('document')))
        if document:
            return self.partners.find_by_document(document)
        return None

    def _process_payload(self, payload: Dict[str, Any]) -> bool:
        updates = map_sap_partner_payload(payload)
        if not updates:
            return False

        partner = self.find_partner(payload)
        if partner is None:
            logger.warning(
                f"No partner found for SAP payload (partnerId={payload.get('partnerId') or payload.get('id')}, "
                f"document={payload.get('document')})"
            )
            return False

        differences = calculate_differences(partner, updates)
        if not differences:
            return False

        partner_id = str(partner.id)

        for attribute, value in updates.items():
            if attribute in _ENUM_FIELDS:
                value = _ENUM_FIELDS[attribute](value)
            setattr(partner, attribute, value)
        self.partners.save(partner)
        job = self._ensure_job()

        self.audits.append_log({
            'job_id': job.id,
            'partner_id': partner_id,
            'result': AuditResult.OK,
            'differences': differences,
            'message': UPDATED_FROM_SAP_MESSAGE,
            'external_data': {
                'source': 'sap',
                'fetchedAt': datetime.now(timezone.utc).isoformat(),
                'payload': payload,
            },
        })
        if partner_id not in self._partner_ids:
            self._partner_ids.append(partner_id)
        return True

    def _ensure_job(self) -> PartnerAuditJob:
        """Create the run's audit job on first use, after the first partner update is flushed"""
        if self._job is None:
            self._job = self.audits.create_job({
                'scope': AuditScope.BATCH,
                'status': AuditJobStatus.RUNNING,
                'partner_ids': [],
                'requested_by': SYNC_REQUESTER,
                'started_at': datetime.now(timezone.utc),
            })
            self.session.commit()
        return self._job

    def _fail_job(self, message: str) -> None:
        if self._job is None:
            return
        self.session.rollback()
        self.audits.update_job(
            self._job.id,
            status=AuditJobStatus.ERROR,
            finished_at=datetime.now(timezone.utc),
            error_message=message,
            partner_ids=list(self._partner_ids),
        )
        self.session.commit()

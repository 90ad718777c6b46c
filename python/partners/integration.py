"""
Segmented SAP integration engine.

Pushes one partner to SAP across the fixed segment order
(primary_record, addresses, roles, banks). Runs stop at the first failing
segment; the segments after it keep their previous state. Every state
transition is reported to an optional observer, which is expected to
persist it before the next dispatch.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from config_manager import SapConfig
from database.models import Partner, PartnerNature
from partners.errors import ExternalServiceError
from partners.sap_client import SapClient
from partners.segments import (
    SapSegment,
    SegmentState,
    SegmentStatus,
    dump_states,
    load_states,
    normalize_segments,
    timestamp,
)

logger = logging.getLogger(__name__)

DISABLED_MESSAGE = "SAP integration disabled (SAP_SYNC_ENABLED=false)"
UNCONFIGURED_MESSAGE = "Incomplete SAP configuration. Set SAP_BASE_URL, SAP_USER and SAP_PASSWORD."
UNKNOWN_FAILURE_MESSAGE = "Unknown failure while integrating with SAP"

StateObserver = Callable[[List[Dict[str, Any]]], None]


@dataclass
class IntegrationResult:
    """Outcome of one integration run"""
    segments: List[Dict[str, Any]]
    completed: bool
    updates: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SegmentRoute:
    method: str
    path: str
    success_message: str
    build_payload: Callable[[Partner, Optional[str]], Dict[str, Any]]


def build_roles(partner: Partner) -> List[str]:
    """SAP roles derived from the partner nature and carriers"""
    roles = []
    if partner.nature in (PartnerNature.CUSTOMER, PartnerNature.BOTH):
        roles.append("CUSTOMER")
    if partner.nature in (PartnerNature.SUPPLIER, PartnerNature.BOTH):
        roles.append("VENDOR")
    if partner.carriers:
        roles.append("TRANSPORTER")
    return roles


def _enum_value(value: Any) -> Any:
    return getattr(value, 'value', value)


def _reference(partner: Partner, sap_id: Optional[str]) -> Dict[str, Any]:
    return {
        'businessPartnerId': sap_id,
        'mdmPartnerId': partner.mdm_partner_id,
        'partnerId': str(partner.id),
        'document': partner.document,
    }


def _primary_record_payload(partner: Partner, sap_id: Optional[str]) -> Dict[str, Any]:
    return {
        'mdmPartnerId': partner.mdm_partner_id,
        'partnerId': str(partner.id),
        'document': partner.document,
        'name': partner.legal_name,
        'tradeName': partner.trade_name,
        'type': _enum_value(partner.person_type),
        'nature': _enum_value(partner.nature),
        'contact': partner.primary_contact or {},
        'fiscal': partner.fiscal_info or {},
    }


def _addresses_payload(partner: Partner, sap_id: Optional[str]) -> Dict[str, Any]:
    return {**_reference(partner, sap_id), 'addresses': partner.addresses or []}


def _roles_payload(partner: Partner, sap_id: Optional[str]) -> Dict[str, Any]:
    return {**_reference(partner, sap_id), 'roles': build_roles(partner)}


def _banks_payload(partner: Partner, sap_id: Optional[str]) -> Dict[str, Any]:
    return {**_reference(partner, sap_id), 'banks': partner.banks or []}


SEGMENT_ROUTES: Dict[SapSegment, SegmentRoute] = {
    SapSegment.PRIMARY_RECORD: SegmentRoute(
        "POST", "/business-partners", "Primary partner record synchronized", _primary_record_payload
    ),
    SapSegment.ADDRESSES: SegmentRoute(
        "PUT", "/business-partners/addresses", "Addresses synchronized", _addresses_payload
    ),
    SapSegment.ROLES: SegmentRoute(
        "PUT", "/business-partners/roles", "Roles synchronized", _roles_payload
    ),
    SapSegment.BANKS: SegmentRoute(
        "PUT", "/business-partners/banks", "Banks synchronized", _banks_payload
    ),
}

BUSINESS_PARTNER_ID_KEYS = ('businessPartnerId', 'BusinessPartner', 'bpId', 'id', 'sapId')


def extract_business_partner_id(response: Any) -> Optional[str]:
    """SAP business partner id from a primary record response, if any"""
    if response is None:
        return None
    if isinstance(response, str):
        return response.strip() or None
    if not isinstance(response, dict):
        return None
    for key in BUSINESS_PARTNER_ID_KEYS:
        candidate = response.get(key)
        if candidate is not None:
            value = str(candidate).strip()
            return value or None
    return None


class SegmentIntegrationEngine:
    """
    Sequential, fail-fast push of a partner to SAP.

    The engine never mutates the partner; callers apply
    ``IntegrationResult.segments`` and ``IntegrationResult.updates``.
    """

    def __init__(self, config: SapConfig, client: Optional[SapClient] = None):
        self.config = config
        self.client = client or SapClient(config)

    def integrate(
        self,
        partner: Partner,
        segments: Optional[Iterable[Any]] = None,
        on_transition: Optional[StateObserver] = None
    ) -> IntegrationResult:
        """
        Integrate the requested segments (all four by default).

        Args:
            partner: Partner to push
            segments: Segment names or SapSegment members; executed in canonical order
            on_transition: Called with a snapshot of all segment states after each transition

        Returns:
            IntegrationResult with the new states, completion flag and partner updates
        """
        states = load_states(partner.sap_segments)
        targets = normalize_segments(segments) if segments else SapSegment.ordered()

        if not targets:
            return IntegrationResult(segments=dump_states(states), completed=True)

        if not self.config.enabled:
            now = timestamp()
            for segment in targets:
                state = states[segment]
                state.status = SegmentStatus.SUCCESS
                state.last_attempt_at = now
                state.last_success_at = now
                state.message = DISABLED_MESSAGE
                state.error_message = None
            self._notify(on_transition, states)
            return IntegrationResult(segments=dump_states(states), completed=True)

        if not self.config.is_configured:
            now = timestamp()
            for segment in targets:
                state = states[segment]
                state.status = SegmentStatus.ERROR
                state.last_attempt_at = now
                state.error_message = UNCONFIGURED_MESSAGE
            self._notify(on_transition, states)
            return IntegrationResult(segments=dump_states(states), completed=False)

        completed = True
        updates: Dict[str, Any] = {}
        sap_id = partner.sap_business_partner_id

        for segment in targets:
            route = SEGMENT_ROUTES[segment]
            attempt_at = timestamp()
            states[segment] = SegmentState(
                segment=segment,
                status=SegmentStatus.PROCESSING,
                last_attempt_at=attempt_at,
                last_success_at=states[segment].last_success_at,
                external_id=states[segment].external_id,
            )
            self._notify(on_transition, states)

            try:
                response = self.client.dispatch(route.method, route.path, route.build_payload(partner, sap_id))
            except ExternalServiceError as e:
                completed = False
                message = e.message or UNKNOWN_FAILURE_MESSAGE
                logger.error(f"Failed to integrate partner {partner.id} segment {segment.value}: {message}")
                state = states[segment]
                state.status = SegmentStatus.ERROR
                state.error_message = message
                self._notify(on_transition, states)
                break

            external_id = None
            if segment == SapSegment.PRIMARY_RECORD:
                external_id = extract_business_partner_id(response)
                if external_id:
                    updates['sap_business_partner_id'] = external_id
                    sap_id = external_id

            state = states[segment]
            state.status = SegmentStatus.SUCCESS
            state.last_success_at = timestamp()
            state.message = route.success_message
            state.error_message = None
            if external_id:
                state.external_id = external_id
            self._notify(on_transition, states)

        return IntegrationResult(segments=dump_states(states), completed=completed, updates=updates)

    def retry(
        self,
        partner: Partner,
        segments: Optional[Iterable[Any]] = None,
        on_transition: Optional[StateObserver] = None
    ) -> IntegrationResult:
        """
        Re-run integration.

        Without explicit segments only the segments that are not yet
        successful are targeted. An empty target set is a completed no-op.
        """
        states = load_states(partner.sap_segments)
        if segments:
            targets = normalize_segments(segments)
        else:
            targets = [segment for segment, state in states.items() if state.status != SegmentStatus.SUCCESS]

        if not targets:
            return IntegrationResult(segments=dump_states(states), completed=True)
        return self.integrate(partner, targets, on_transition)

    def mark_as_error(
        self,
        partner: Partner,
        reason: str,
        segments: Optional[Iterable[Any]] = None
    ) -> List[Dict[str, Any]]:
        """Rewrite segment states to error with ``reason``; no SAP calls"""
        states = load_states(partner.sap_segments)
        targets = normalize_segments(segments) if segments else SapSegment.ordered()
        now = timestamp()
        for segment in targets:
            state = states[segment]
            state.status = SegmentStatus.ERROR
            state.last_attempt_at = now
            state.error_message = reason
        return dump_states(states)

    @staticmethod
    def _notify(observer: Optional[StateObserver], states: Dict[SapSegment, SegmentState]) -> None:
        if observer is not None:
            observer(dump_states(states))

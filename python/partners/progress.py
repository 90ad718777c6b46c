"""Registration progress checklist shown on the partner details page."""

from typing import Any, Dict, List, Optional

from database.models import ApprovalStage, Partner, PartnerStatus, PersonType
from partners.segments import SapSegment, SegmentStatus, SegmentState

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETE = "complete"
BLOCKED = "blocked"


def has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (bool, int, float)):
        return True
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    if isinstance(value, dict):
        return any(has_value(item) for item in value.values())
    return False


def _evaluate(fields: List[tuple]) -> Dict[str, Any]:
    """
    Score a list of ``(label, value, required)`` tuples.

    Complete when no required field is missing, in progress when at least
    one item is filled.
    """
    required = [(label, value) for label, value, is_required in fields if is_required]
    optional = [value for _, value, is_required in fields if not is_required]
    missing = [label for label, value in required if not has_value(value)]
    completed = (len(required) - len(missing)) + sum(1 for value in optional if has_value(value))

    status = PENDING
    if fields and not missing:
        status = COMPLETE
    elif completed > 0:
        status = IN_PROGRESS
    return {'missing': missing, 'status': status, 'completed_items': completed, 'total_items': len(fields)}


def _step(step_id: str, label: str, status: str, completed: int, total: int, missing: List[str]) -> Dict[str, Any]:
    return {
        'id': step_id,
        'label': label,
        'status': status,
        'completed_items': completed,
        'total_items': total,
        'missing': missing,
    }


def _address_complete(address: Optional[Dict[str, Any]]) -> bool:
    if not isinstance(address, dict):
        return False
    return (
        has_value(address.get('cep'))
        and has_value(address.get('logradouro'))
        and has_value(address.get('numero'))
        and has_value(address.get('bairro'))
        and (has_value(address.get('municipio')) or has_value(address.get('municipio_ibge')))
        and has_value(address.get('uf'))
    )


def _integration_step(raw_segments: Any) -> Dict[str, Any]:
    stored = {}
    for item in raw_segments or []:
        if isinstance(item, dict):
            state = SegmentState.from_dict(item)
            if state is not None:
                stored[state.segment] = state

    completed = sum(1 for state in stored.values() if state.status == SegmentStatus.SUCCESS)
    has_error = any(state.status == SegmentStatus.ERROR for state in stored.values())
    total = len(SapSegment.ordered())

    if completed == total:
        return _step("integrations", "Integrations", COMPLETE, completed, total, [])
    status = IN_PROGRESS if stored else PENDING
    missing = ["Reprocess SAP integration" if has_error else "SAP integration pending"]
    return _step("integrations", "Integrations", status, completed, total, missing)


def _approval_step(partner: Partner) -> Dict[str, Any]:
    if partner.status == PartnerStatus.REJECTED:
        return _step("approvals", "Approval workflow", BLOCKED, 0, 1, ["Workflow rejected - submit for review again"])
    if partner.approval_stage == ApprovalStage.FINALIZED or partner.status in (
        PartnerStatus.APPROVED, PartnerStatus.INTEGRATED
    ):
        return _step("approvals", "Approval workflow", COMPLETE, 1, 1, [])
    status = IN_PROGRESS if partner.status == PartnerStatus.IN_REVIEW else PENDING
    return _step("approvals", "Approval workflow", status, 0, 1, ["Approval pending"])


def calculate_registration_progress(partner: Partner) -> Dict[str, Any]:
    """
    Registration checklist of a partner.

    Returns:
        Dict with ``steps``, ``completed_steps``, ``total_steps``,
        ``completion_percentage`` and ``overall_status``
    """
    steps = []
    contact = partner.primary_contact or {}
    communication = partner.communication or {}

    basic = _evaluate([
        ("Person type", partner.person_type, True),
        ("Nature", partner.nature, True),
        ("Legal name", partner.legal_name, True),
    ])
    steps.append(_step("basic_data", "Basic data", basic['status'], basic['completed_items'],
                       basic['total_items'], basic['missing']))

    document_label = "CNPJ" if partner.person_type == PersonType.PJ else "CPF"
    documents = _evaluate([
        (document_label, partner.document, True),
        ("State registration", partner.state_registration, False),
        ("Municipal registration", partner.municipal_registration, False),
        ("SUFRAMA", partner.suframa, False),
    ])
    steps.append(_step("documents", "Documents", documents['status'], documents['completed_items'],
                       documents['total_items'], documents['missing']))

    contacts = _evaluate([
        ("Primary contact name", contact.get('nome'), True),
        ("Primary contact email", contact.get('email'), True),
        ("Primary phone", contact.get('fone'), False),
        ("Business phone", communication.get('telefone'), False),
        ("Mobile", communication.get('celular'), False),
        ("Communication emails", communication.get('emails'), False),
    ])
    steps.append(_step("contacts", "Contacts", contacts['status'], contacts['completed_items'],
                       contacts['total_items'], contacts['missing']))

    addresses = partner.addresses or []
    if _address_complete(addresses[0] if addresses else None):
        steps.append(_step("addresses", "Addresses", COMPLETE, 1, 1, []))
    elif addresses:
        steps.append(_step("addresses", "Addresses", IN_PROGRESS, 0, 1, ["Primary address incomplete"]))
    else:
        steps.append(_step("addresses", "Addresses", PENDING, 0, 1, ["Add a primary address"]))

    banks = partner.banks or []
    valid_bank = any(
        isinstance(bank, dict)
        and has_value(bank.get('banco')) and has_value(bank.get('agencia')) and has_value(bank.get('conta'))
        for bank in banks
    )
    if valid_bank:
        steps.append(_step("banks", "Bank details", COMPLETE, 1, 1, []))
    elif banks:
        steps.append(_step("banks", "Bank details", IN_PROGRESS, 0, 1, ["Bank details incomplete"]))
    else:
        steps.append(_step("banks", "Bank details", PENDING, 0, 1, ["Add bank details"]))

    steps.append(_integration_step(partner.sap_segments))
    steps.append(_approval_step(partner))

    completed_steps = sum(1 for step in steps if step['status'] == COMPLETE)
    total_steps = len(steps)

    if any(step['status'] == BLOCKED for step in steps):
        overall = BLOCKED
    elif completed_steps == total_steps:
        overall = COMPLETE
    elif completed_steps > 0 or any(step['status'] == IN_PROGRESS for step in steps):
        overall = IN_PROGRESS
    else:
        overall = PENDING

    return {
        'steps': steps,
        'completed_steps': completed_steps,
        'total_steps': total_steps,
        'completion_percentage': round(completed_steps / total_steps * 100) if total_steps else 0,
        'overall_status': overall,
    }

"""
Field catalogs for change requests, audits and the SAP reverse sync.

Field ids follow the partner data contract (``nome_legal``,
``contato_principal.email``, ``addresses.0.cep``...). Each catalog entry
carries an accessor that reads its value straight from the Partner
columns or from the normalized registry snapshot.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from database.models import Partner

PartnerAccessor = Callable[[Partner], Any]
SnapshotAccessor = Callable[[Dict[str, Any]], Any]


# ============================================
# ACCESSORS
# ============================================

def column(name: str) -> PartnerAccessor:
    """Scalar Partner column; enum members become plain values"""
    def read(partner: Partner) -> Any:
        value = getattr(partner, name)
        return getattr(value, 'value', value)
    return read


def profile_entry(name: str, key: str) -> PartnerAccessor:
    """Key of a JSON sub-profile such as ``primary_contact`` or ``sales_info``"""
    def read(partner: Partner) -> Any:
        profile = getattr(partner, name)
        return profile.get(key) if isinstance(profile, dict) else None
    return read


def first_address(key: str) -> PartnerAccessor:
    def read(partner: Partner) -> Any:
        addresses = partner.addresses or []
        first = addresses[0] if addresses else None
        return first.get(key) if isinstance(first, dict) else None
    return read


def snapshot_entry(key: str, section: Optional[str] = None) -> SnapshotAccessor:
    """Top-level key of the registry snapshot, or a key of one of its sections"""
    def read(snapshot: Dict[str, Any]) -> Any:
        source = snapshot.get(section) if section else snapshot
        return source.get(key) if isinstance(source, dict) else None
    return read


# ============================================
# CHANGE REQUEST FIELDS
# ============================================

class ChangeRequestFieldId(str, Enum):
    LEGAL_NAME = "nome_legal"
    TRADE_NAME = "nome_fantasia"
    CONTACT_NAME = "contato_principal.nome"
    CONTACT_EMAIL = "contato_principal.email"
    CONTACT_PHONE = "contato_principal.fone"
    PHONE = "comunicacao.telefone"
    MOBILE = "comunicacao.celular"
    SUPPLIER_GROUP = "fornecedor_info.grupo"
    SUPPLIER_PAYMENT_TERMS = "fornecedor_info.condicao_pagamento"
    SALESPERSON = "vendas_info.vendedor"
    CUSTOMER_GROUP = "vendas_info.grupo_clientes"
    OPERATION_NATURE = "fiscal_info.natureza_operacao"
    SUFRAMA_BENEFIT = "fiscal_info.tipo_beneficio_suframa"
    DECLARATION_REGIME = "fiscal_info.regime_declaracao"
    CREDIT_PARTNER = "credito_info.parceiro"
    CREDIT_MODALITY = "credito_info.modalidade"
    CREDIT_AMOUNT = "credito_info.montante"
    CREDIT_VALIDITY = "credito_info.validade"


@dataclass(frozen=True)
class ChangeRequestField:
    id: ChangeRequestFieldId
    label: str
    read: PartnerAccessor

    def current_value(self, partner: Partner) -> Any:
        return self.read(partner)


_F = ChangeRequestFieldId

CHANGE_REQUEST_FIELDS: List[ChangeRequestField] = [
    ChangeRequestField(_F.LEGAL_NAME, "Legal name", column('legal_name')),
    ChangeRequestField(_F.TRADE_NAME, "Trade name", column('trade_name')),
    ChangeRequestField(_F.CONTACT_NAME, "Contact - name", profile_entry('primary_contact', 'nome')),
    ChangeRequestField(_F.CONTACT_EMAIL, "Contact - email", profile_entry('primary_contact', 'email')),
    ChangeRequestField(_F.CONTACT_PHONE, "Contact - phone", profile_entry('primary_contact', 'fone')),
    ChangeRequestField(_F.PHONE, "General phone", profile_entry('communication', 'telefone')),
    ChangeRequestField(_F.MOBILE, "General mobile", profile_entry('communication', 'celular')),
    ChangeRequestField(_F.SUPPLIER_GROUP, "Supplier - group", profile_entry('supplier_info', 'grupo')),
    ChangeRequestField(
        _F.SUPPLIER_PAYMENT_TERMS, "Supplier - payment terms", profile_entry('supplier_info', 'condicao_pagamento')
    ),
    ChangeRequestField(_F.SALESPERSON, "Sales - salesperson", profile_entry('sales_info', 'vendedor')),
    ChangeRequestField(_F.CUSTOMER_GROUP, "Sales - customer group", profile_entry('sales_info', 'grupo_clientes')),
    ChangeRequestField(
        _F.OPERATION_NATURE, "Fiscal - operation nature", profile_entry('fiscal_info', 'natureza_operacao')
    ),
    ChangeRequestField(
        _F.SUFRAMA_BENEFIT, "Fiscal - SUFRAMA benefit", profile_entry('fiscal_info', 'tipo_beneficio_suframa')
    ),
    ChangeRequestField(
        _F.DECLARATION_REGIME, "Fiscal - declaration regime", profile_entry('fiscal_info', 'regime_declaracao')
    ),
    ChangeRequestField(_F.CREDIT_PARTNER, "Credit - partner", profile_entry('credit_info', 'parceiro')),
    ChangeRequestField(_F.CREDIT_MODALITY, "Credit - modality", profile_entry('credit_info', 'modalidade')),
    ChangeRequestField(_F.CREDIT_AMOUNT, "Credit - amount", profile_entry('credit_info', 'montante')),
    ChangeRequestField(_F.CREDIT_VALIDITY, "Credit - validity", profile_entry('credit_info', 'validade')),
]

# Keyed by the plain id string received in requests
CHANGE_REQUEST_FIELD_MAP: Dict[str, ChangeRequestField] = {item.id.value: item for item in CHANGE_REQUEST_FIELDS}


# ============================================
# AUDIT FIELD MAPPINGS
# ============================================

def trim_value(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def lower_value(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


def upper_value(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


def digits_value(value: Any) -> Any:
    return re.sub(r'\D+', '', value) if isinstance(value, str) else value


@dataclass(frozen=True)
class AuditFieldMapping:
    """
    Pairs a partner field with the registry snapshot field it is checked against.

    ``partner_path`` and ``external_path`` only name the two sides in the
    difference metadata; values are read through the accessors.
    """
    field: str
    label: str
    partner_path: str
    external_path: str
    read_partner: PartnerAccessor
    read_external: SnapshotAccessor
    transform: Optional[Callable[[Any], Any]] = trim_value

    def partner_value(self, partner: Partner) -> Any:
        raw = self.read_partner(partner)
        return self.transform(raw) if self.transform else raw

    def external_value(self, snapshot: Dict[str, Any]) -> Any:
        raw = self.read_external(snapshot)
        return self.transform(raw) if self.transform else raw


def _address_mapping(key: str, label: str, transform: Callable[[Any], Any] = trim_value) -> AuditFieldMapping:
    return AuditFieldMapping(
        f"addresses.0.{key}", label, f"addresses.0.{key}", f"endereco.{key}",
        first_address(key), snapshot_entry(key, 'endereco'), transform
    )


AUDIT_FIELD_MAPPINGS: List[AuditFieldMapping] = [
    AuditFieldMapping(
        "documento", "Document", "documento", "documento",
        column('document'), snapshot_entry('documento'), digits_value
    ),
    AuditFieldMapping(
        "nome_legal", "Legal name", "nome_legal", "nome_legal",
        column('legal_name'), snapshot_entry('nome_legal')
    ),
    AuditFieldMapping(
        "nome_fantasia", "Trade name", "nome_fantasia", "nome_fantasia",
        column('trade_name'), snapshot_entry('nome_fantasia')
    ),
    AuditFieldMapping(
        "regime_tributario", "Tax regime", "regime_tributario", "regime_tributario",
        column('tax_regime'), snapshot_entry('regime_tributario')
    ),
    AuditFieldMapping(
        "contato_principal.email", "Contact - email", "contato_principal.email", "contato.email",
        profile_entry('primary_contact', 'email'), snapshot_entry('email', 'contato'), lower_value
    ),
    AuditFieldMapping(
        "contato_principal.fone", "Contact - phone", "contato_principal.fone", "contato.telefone",
        profile_entry('primary_contact', 'fone'), snapshot_entry('telefone', 'contato'), digits_value
    ),
    _address_mapping('cep', "Address - postal code", digits_value),
    _address_mapping('logradouro', "Address - street"),
    _address_mapping('numero', "Address - number"),
    _address_mapping('complemento', "Address - complement"),
    _address_mapping('bairro', "Address - district"),
    _address_mapping('municipio', "Address - city"),
    _address_mapping('uf', "Address - state", upper_value),
    AuditFieldMapping(
        "ie", "State registration", "ie", "inscricao_estadual",
        column('state_registration'), snapshot_entry('inscricao_estadual')
    ),
    AuditFieldMapping(
        "suframa", "SUFRAMA", "suframa", "suframa",
        column('suframa'), snapshot_entry('suframa')
    ),
]


# ============================================
# REVERSE SYNC LABELS
# ============================================

SYNC_FIELD_LABELS: Dict[str, str] = {
    'sap_business_partner_id': "SAP Business Partner ID",
    'sap_segments': "SAP segments",
    'addresses': "Addresses",
    'banks': "Banks",
    'primary_contact': "Primary contact",
    'communication': "Communication",
    'supplier_info': "Supplier information",
    'sales_info': "Sales information",
    'fiscal_info': "Fiscal information",
    'carriers': "Carriers",
    'credit_info': "Credit information",
    'legal_name': "Legal name",
    'trade_name': "Trade name",
    'document': "Document",
    'nature': "Nature",
    'person_type': "Person type",
    'status': "Status",
}


def sync_field_label(field: str) -> str:
    return SYNC_FIELD_LABELS.get(field, field)

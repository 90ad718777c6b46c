"""
Client for the public CNPJ registry (CNPJá office endpoint) and the
normalization of its payload into the partner data contract.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from config_manager import RegistryConfig
from document_validators import only_digits
from partners.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class CnpjRegistryClient:
    """Looks up legal entities by CNPJ"""

    def __init__(self, config: RegistryConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def lookup_by_document(self, cnpj: str) -> Dict[str, Any]:
        """
        Fetch the registry record of a CNPJ.

        Args:
            cnpj: Digits-only CNPJ

        Returns:
            Raw registry payload

        Raises:
            ExternalServiceError: On timeout, network failure or non-2xx status
        """
        url = f"{self.config.base_url.rstrip('/')}/office/{cnpj}"
        headers = {'Accept': 'application/json'}
        if self.config.token:
            headers['Authorization'] = f"Bearer {self.config.token}"

        try:
            response = self.session.get(url, headers=headers, timeout=self.config.timeout_seconds)
        except requests.Timeout:
            raise ExternalServiceError("Timed out while querying the CNPJ registry", timed_out=True)
        except requests.RequestException as e:
            raise ExternalServiceError(f"Failed to reach the CNPJ registry: {e}")

        if not response.ok:
            raise ExternalServiceError(
                f"cnpja responded with status {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            raise ExternalServiceError("CNPJ registry returned an invalid JSON body")


def _pick(*sources: Any) -> str:
    """First non-empty value as a trimmed string"""
    for value in sources:
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ''


def _get(source: Any, key: str) -> Any:
    return source.get(key) if isinstance(source, dict) else None


def _principal_establishment(payload: Dict[str, Any]) -> Dict[str, Any]:
    principal = payload.get('establishment_principal')
    if isinstance(principal, dict) and principal:
        return principal
    establishments = payload.get('establishments')
    if isinstance(establishments, list):
        for item in establishments:
            if isinstance(item, dict) and item.get('principal'):
                return item
        if establishments and isinstance(establishments[0], dict):
            return establishments[0]
    return {}


def normalize_registry_payload(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Map a registry payload onto the contract fields used by audits and lookups.

    The raw payload is kept under ``raw``.
    """
    payload = payload if isinstance(payload, dict) else {}
    establishment = _principal_establishment(payload)
    address = establishment.get('endereco') if isinstance(establishment.get('endereco'), dict) else {}
    city = address.get('municipio') if isinstance(address.get('municipio'), dict) else {}

    registrations = establishment.get('inscricoes_estaduais') or payload.get('inscricoes_estaduais') or []
    if not isinstance(registrations, list):
        registrations = []
    first_registration = next(
        (item for item in registrations if isinstance(item, dict) and item.get('numero')), {}
    )

    benefits = establishment.get('beneficios') or establishment.get('beneficios_fiscais') or []
    free_zone_benefits: List[Any] = []
    for benefit in benefits if isinstance(benefits, list) else []:
        described = _get(benefit, 'descricao') or _get(benefit, 'nome') or benefit
        if described:
            free_zone_benefits.append(described)

    simples = payload.get('simples') if isinstance(payload.get('simples'), dict) else {}
    regime = payload.get('regime_tributario')
    suframa = payload.get('suframa')

    return {
        'raw': payload,
        'documento': _pick(payload.get('cnpj'), payload.get('numero_identificacao')),
        'nome_legal': _pick(payload.get('razao_social'), payload.get('nome')),
        'nome_fantasia': _pick(payload.get('nome_fantasia'), establishment.get('nome_fantasia')),
        'regime_tributario': _pick(_get(regime, 'descricao'), regime),
        'simples': {
            'optante': bool(simples.get('optante')),
            'desde': simples.get('data_opcao') or None,
            'ate': simples.get('data_exclusao') or None,
            'situacao': _pick(simples.get('situacao')),
        },
        'inscricao_estadual': _pick(first_registration.get('numero'), establishment.get('inscricao_estadual')),
        'inscricoes_estaduais': [
            {
                'numero': _pick(_get(item, 'numero'), _get(item, 'inscricao')),
                'uf': _pick(_get(item, 'uf'), _get(item, 'estado')).upper(),
            }
            for item in registrations
        ],
        'suframa': _pick(_get(establishment.get('suframa'), 'codigo'), _get(suframa, 'codigo'), suframa),
        'beneficios_zona_franca': free_zone_benefits,
        'contato': {
            'email': _pick(establishment.get('email'), payload.get('email')),
            'telefone': _pick(
                establishment.get('telefone1'),
                establishment.get('telefone2'),
                establishment.get('telefone'),
                payload.get('telefone'),
            ),
        },
        'endereco': {
            'cep': only_digits(_pick(address.get('cep'), address.get('codigo_cep'))),
            'logradouro': _pick(address.get('logradouro'), address.get('tipo_logradouro')),
            'numero': _pick(address.get('numero')),
            'complemento': _pick(address.get('complemento')),
            'bairro': _pick(address.get('bairro')),
            'municipio': _pick(city.get('nome'), address.get('municipio'), address.get('cidade')).upper(),
            'municipio_ibge': _pick(address.get('codigo_municipio_ibge'), city.get('codigo_ibge')),
            'uf': _pick(address.get('uf'), address.get('estado')).upper()[:2],
        },
        'fiscal': {
            'enquadramento': _pick(_get(payload.get('natureza_juridica'), 'descricao')),
            'porte': _pick(_get(payload.get('porte'), 'descricao')),
            'zona_franca': len(free_zone_benefits) > 0,
        },
    }

"""
Shared fixtures for the partner MDM test suite.

Uses an in-memory SQLite database shared across connections (StaticPool),
so tests run without PostgreSQL.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import SapConfig
from database.connection import create_test_provider
from database.models import PartnerNature, PersonType
from partners.service import PartnerService

VALID_CNPJ = "45723174000110"
OTHER_VALID_CNPJ = "11222333000181"
VALID_CPF = "39053344705"
OTHER_VALID_CPF = "52998224725"


def make_partner_data(**overrides) -> Dict[str, Any]:
    """Registration data of a complete legal entity partner."""
    data = {
        'person_type': PersonType.PJ,
        'nature': PartnerNature.BOTH,
        'legal_name': 'Acme Industria e Comercio Ltda',
        'trade_name': 'Acme',
        'document': '45.723.174/0001-10',
        'state_registration': '123456789012',
        'primary_contact': {'nome': 'Maria Souza', 'email': 'maria@acme.com.br', 'fone': '11987654321'},
        'communication': {'telefone': '1133334444'},
        'addresses': [{
            'cep': '01001000',
            'logradouro': 'Praca da Se',
            'numero': '100',
            'bairro': 'Se',
            'municipio': 'SAO PAULO',
            'municipio_ibge': '3550308',
            'uf': 'SP',
        }],
        'banks': [{'banco': '001', 'agencia': '1234', 'conta': '56789-0'}],
        'carriers': [],
    }
    data.update(overrides)
    return data


def make_response(status_code: int = 200, body: Any = None, text: Optional[str] = None) -> requests.Response:
    """Real requests.Response carrying ``body`` as JSON (or ``text`` as is)."""
    response = requests.Response()
    response.status_code = status_code
    if text is not None:
        response._content = text.encode('utf-8')
    elif body is None:
        response._content = b''
    else:
        response._content = json.dumps(body).encode('utf-8')
    response.encoding = 'utf-8'
    return response


class FakeSapClient:
    """Records dispatched segments and replays queued outcomes.

    Each queued outcome is either a response body or an exception to raise.
    Once the queue is empty every call returns ``default``.
    """

    def __init__(self, outcomes: Optional[List[Any]] = None, default: Any = None):
        self.outcomes = list(outcomes or [])
        self.default = default if default is not None else {}
        self.calls: List[Dict[str, Any]] = []
        self.pages: List[Any] = []

    def dispatch(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append({'method': method, 'path': path, 'payload': payload})
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def list_partners(self, page: int, page_size: int, updated_after: Optional[str] = None) -> Any:
        self.calls.append({'page': page, 'page_size': page_size, 'updated_after': updated_after})
        outcome = self.pages.pop(0) if self.pages else []
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def paths(self) -> List[str]:
        return [call['path'] for call in self.calls if 'path' in call]


# ============================================
# DATABASE
# ============================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    """Initialized provider with all tables created."""
    provider = create_test_provider(engine)
    provider.init()
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def session(db_provider):
    session = db_provider.session_factory()
    yield session
    session.close()


# ============================================
# CONFIG
# ============================================

@pytest.fixture
def sap_config():
    """Enabled and fully configured SAP settings."""
    return SapConfig(
        enabled=True,
        base_url="https://sap.example.com/api",
        user="mdm",
        password="secret",
        timeout_ms=5000,
        page_size=2,
    )


@pytest.fixture
def disabled_sap_config():
    return SapConfig(enabled=False)


@pytest.fixture
def unconfigured_sap_config():
    return SapConfig(enabled=True, base_url=None, user=None, password=None)


# ============================================
# PARTNERS
# ============================================

@pytest.fixture
def create_partner(session):
    """Factory registering a draft partner through PartnerService."""
    def _create(**overrides):
        return PartnerService(session).create_partner(make_partner_data(**overrides))
    return _create


@pytest.fixture
def partner(create_partner):
    return create_partner()


@pytest.fixture
def registry():
    """Registry client mock; configure ``lookup_by_document`` per test."""
    client = MagicMock()
    client.lookup_by_document.return_value = {}
    return client

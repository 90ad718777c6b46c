"""
Tests for the FastAPI endpoints.

The app runs against the test session; SAP and the CNPJ registry are
replaced through dependency overrides. Startup hooks are not triggered
(the client is not used as a context manager).
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from api import server
from config_manager import ConfigManager
from partners.errors import ExternalServiceError
from partners.integration import SegmentIntegrationEngine
from partners.workflow import ApprovalWorkflow

from conftest import OTHER_VALID_CNPJ, FakeSapClient, make_partner_data

REVIEWER = {
    'X-User-Id': 'u-1',
    'X-User-Email': 'reviewer@acme.com.br',
    'X-User-Name': 'Joana Reviewer',
    'X-User-Responsibilities': (
        'partners.approval.fiscal, partners.approval.purchasing,partners.approval.master_data'
    ),
}


def partner_body(**overrides):
    body = make_partner_data(person_type='PJ', nature='ambos')
    body.update(overrides)
    return body


@pytest.fixture
def sap_client():
    return FakeSapClient(outcomes=[{'businessPartnerId': 'BP-500'}])


@pytest.fixture
def config(tmp_path):
    return ConfigManager(str(tmp_path / "missing.yaml"), environ={})


@pytest.fixture
def client(session, config, sap_config, sap_client, registry):
    def override_get_db():
        yield session

    overrides = server.app.dependency_overrides
    overrides[server.get_db] = override_get_db
    overrides[server.get_config_instance] = lambda: config
    overrides[server.get_registry_client] = lambda: registry
    overrides[server.get_workflow] = lambda: ApprovalWorkflow(
        session, sap_config, SegmentIntegrationEngine(sap_config, sap_client)
    )
    yield TestClient(server.app)
    overrides.clear()


@pytest.fixture
def created(client):
    response = client.post("/api/v1/partners", json=partner_body())
    assert response.status_code == 201
    return response.json()


# ============================================
# PARTNERS
# ============================================

class TestPartnerEndpoints:

    def test_create_partner(self, created):
        assert created['status'] == 'draft'
        assert created['approval_stage'] == 'fiscal'
        assert created['document'] == '45723174000110'
        assert created['mdm_partner_id'] == 1

    def test_create_invalid_document(self, client):
        response = client.post("/api/v1/partners", json=partner_body(document="45723174000111"))
        assert response.status_code == 400
        error = response.json()['error']
        assert error['code'] == 'VALIDATION_ERROR'
        assert error['field'] == 'document'
        assert 'timestamp' in error

    def test_create_duplicate(self, client, created):
        response = client.post("/api/v1/partners", json=partner_body())
        assert response.status_code == 400
        assert response.json()['error']['code'] == 'DUPLICATE_DOCUMENT'

    def test_schema_validation_error(self, client):
        response = client.post("/api/v1/partners", json=partner_body(legal_name="   "))
        assert response.status_code == 422
        error = response.json()['error']
        assert error['code'] == 'VALIDATION_ERROR'
        assert error['field'] == 'legal_name'

    def test_list_partners(self, client, created):
        response = client.get("/api/v1/partners", params={'status': 'draft'})
        assert response.status_code == 200
        body = response.json()
        assert body['total'] == 1
        assert body['items'][0]['id'] == created['id']

        assert client.get("/api/v1/partners", params={'status': 'integrated'}).json()['total'] == 0

    def test_details(self, client, created):
        response = client.get(f"/api/v1/partners/{created['id']}")
        assert response.status_code == 200
        body = response.json()
        assert body['partner']['id'] == created['id']
        assert body['change_requests'] == []
        assert body['registration_progress']['total_steps'] == 7

    def test_unknown_partner(self, client):
        response = client.get("/api/v1/partners/6f1c1f53-7a36-4c4e-9a52-5d0a1a7c2b11")
        assert response.status_code == 404
        assert response.json()['error']['code'] == 'NOT_FOUND'

    def test_request_id_header(self, client):
        response = client.get("/api/v1/partners")
        assert response.headers['X-Request-ID']


# ============================================
# WORKFLOW
# ============================================

class TestWorkflowEndpoints:

    def test_full_approval_integrates_partner(self, client, created, sap_client):
        partner_id = created['id']

        submitted = client.post(f"/api/v1/partners/{partner_id}/submit", headers=REVIEWER).json()
        assert submitted['status'] == 'in_review'
        assert submitted['sap_business_partner_id'] == 'BP-500'

        for stage in ('fiscal', 'purchasing', 'master_data'):
            response = client.post(f"/api/v1/partners/{partner_id}/stages/{stage}/approve", headers=REVIEWER)
            assert response.status_code == 200

        body = response.json()
        assert body['approval_stage'] == 'finalized'
        assert body['status'] == 'integrated'
        assert len(sap_client.calls) == 4

        details = client.get(f"/api/v1/partners/{partner_id}").json()
        assert details['registration_progress']['completion_percentage'] == 100

    def test_actor_header_required(self, client, created):
        response = client.post(f"/api/v1/partners/{created['id']}/submit")
        assert response.status_code == 401
        assert response.json()['error']['code'] == 'HTTP_401'

    def test_missing_capability(self, client, created):
        client.post(f"/api/v1/partners/{created['id']}/submit", headers=REVIEWER)
        response = client.post(
            f"/api/v1/partners/{created['id']}/stages/fiscal/approve",
            headers={'X-User-Id': 'u-2', 'X-User-Responsibilities': 'partners.approval.purchasing'},
        )
        assert response.status_code == 403
        assert response.json()['error']['code'] == 'PERMISSION_DENIED'

    def test_invalid_stage(self, client, created):
        client.post(f"/api/v1/partners/{created['id']}/submit", headers=REVIEWER)
        response = client.post(f"/api/v1/partners/{created['id']}/stages/legal/approve", headers=REVIEWER)
        assert response.status_code == 400

    def test_reject_with_reason(self, client, created):
        client.post(f"/api/v1/partners/{created['id']}/submit", headers=REVIEWER)
        response = client.post(
            f"/api/v1/partners/{created['id']}/stages/fiscal/reject",
            json={'reason': 'Missing bank proof'},
            headers=REVIEWER,
        )
        body = response.json()
        assert body['status'] == 'rejected'
        assert body['approval_history'][-1]['notes'] == 'Missing bank proof'

    def test_reject_without_body(self, client, created):
        client.post(f"/api/v1/partners/{created['id']}/submit", headers=REVIEWER)
        response = client.post(f"/api/v1/partners/{created['id']}/stages/fiscal/reject", headers=REVIEWER)
        assert response.status_code == 200
        assert response.json()['status'] == 'rejected'

    def test_retry_requires_finalized(self, client, created):
        response = client.post(f"/api/v1/partners/{created['id']}/sap/retry")
        assert response.status_code == 400

    def test_trigger_segment(self, client, created, sap_client):
        client.post(f"/api/v1/partners/{created['id']}/submit", headers=REVIEWER)
        for stage in ('fiscal', 'purchasing', 'master_data'):
            client.post(f"/api/v1/partners/{created['id']}/stages/{stage}/approve", headers=REVIEWER)

        response = client.post(f"/api/v1/partners/{created['id']}/sap/segments/roles")

        assert response.status_code == 200
        assert sap_client.paths[-1] == "/business-partners/roles"

    def test_sap_failure_during_finalize(self, session, client, created, sap_config):
        failing = FakeSapClient(outcomes=[{'id': 'BP-1'}, ExternalServiceError("SAP unavailable", 503)])
        server.app.dependency_overrides[server.get_workflow] = lambda: ApprovalWorkflow(
            session, sap_config, SegmentIntegrationEngine(sap_config, failing)
        )
        client.post(f"/api/v1/partners/{created['id']}/submit", headers=REVIEWER)
        for stage in ('fiscal', 'purchasing', 'master_data'):
            response = client.post(f"/api/v1/partners/{created['id']}/stages/{stage}/approve", headers=REVIEWER)

        body = response.json()
        assert body['status'] == 'approved'
        addresses = next(item for item in body['sap_segments'] if item['segment'] == 'addresses')
        assert addresses['status'] == 'error'
        assert addresses['error_message'] == 'SAP unavailable'


# ============================================
# CHANGE REQUESTS AND AUDITS
# ============================================

class TestChangeRequestEndpoints:

    def test_create_and_list(self, client, created):
        response = client.post(
            f"/api/v1/partners/{created['id']}/change-requests",
            json={'fields': [{'field': 'nome_fantasia', 'newValue': 'Acme Brasil'}], 'motivo': 'Rebranding'},
            headers=REVIEWER,
        )
        assert response.status_code == 201
        body = response.json()
        assert body['requested_by'] == 'u-1'
        assert body['origin'] == 'internal'
        assert body['payload']['partners'][0]['changes'][0]['previousValue'] == 'Acme'

        listed = client.get(
            f"/api/v1/partners/{created['id']}/change-requests", params={'type': 'individual'}
        ).json()
        assert listed['total'] == 1
        assert listed['total_pages'] == 1

    def test_reason_required(self, client, created):
        response = client.post(
            f"/api/v1/partners/{created['id']}/change-requests",
            json={'fields': [{'field': 'nome_fantasia', 'newValue': 'X'}]},
            headers=REVIEWER,
        )
        assert response.status_code == 400
        assert response.json()['error']['field'] == 'motivo'

    def test_empty_field_list_is_rejected(self, client, created):
        response = client.post(
            f"/api/v1/partners/{created['id']}/change-requests",
            json={'fields': [], 'motivo': 'Rebranding'},
            headers=REVIEWER,
        )
        assert response.status_code == 422
        assert response.json()['error']['code'] == 'VALIDATION_ERROR'

    def test_bulk(self, client, created):
        other = client.post("/api/v1/partners", json=partner_body(document=OTHER_VALID_CNPJ)).json()

        response = client.post(
            "/api/v1/partners/change-requests/bulk",
            json={
                'partnerIds': [created['id'], other['id']],
                'fields': [{'field': 'vendas_info.vendedor', 'newValue': 'Carlos'}],
                'motivo': 'Nova carteira',
            },
            headers=REVIEWER,
        )

        assert response.status_code == 201
        body = response.json()
        assert body['total'] == 2
        assert {item['batch_id'] for item in body['requests']} == {body['batch_id']}


class TestAuditEndpoints:

    def test_request_and_fetch_audit(self, client, created, registry):
        registry.lookup_by_document.return_value = {'cnpj': '45723174000110', 'razao_social': 'Outra Razao'}

        response = client.post("/api/v1/audits", json={'partnerIds': [created['id']]}, headers=REVIEWER)

        assert response.status_code == 201
        body = response.json()
        assert body['job']['status'] == 'completed'
        assert body['job']['requested_by'] == 'u-1'
        assert body['logs'][0]['result'] == 'inconsistent'

        fetched = client.get(f"/api/v1/audits/{body['job']['id']}")
        assert fetched.status_code == 200
        assert len(fetched.json()['logs']) == 1

    def test_audit_without_partners(self, client):
        response = client.post("/api/v1/audits", json={'partnerIds': []}, headers=REVIEWER)
        assert response.status_code == 400

    def test_unknown_audit(self, client):
        response = client.get("/api/v1/audits/6f1c1f53-7a36-4c4e-9a52-5d0a1a7c2b11")
        assert response.status_code == 404


# ============================================
# LOOKUPS, SYNC, HEALTH
# ============================================

class TestLookupEndpoints:

    def test_cnpj_lookup(self, client, registry):
        registry.lookup_by_document.return_value = {'cnpj': OTHER_VALID_CNPJ, 'razao_social': 'Beta Ltda'}
        response = client.get(f"/api/v1/lookups/cnpj/{OTHER_VALID_CNPJ}")
        assert response.status_code == 200
        assert response.json()['nome_legal'] == 'Beta Ltda'

    def test_cnpj_lookup_registry_down(self, client, registry):
        registry.lookup_by_document.side_effect = ExternalServiceError("down", status_code=503)
        response = client.get(f"/api/v1/lookups/cnpj/{OTHER_VALID_CNPJ}")
        assert response.status_code == 502
        assert response.json()['error']['code'] == 'EXTERNAL_SERVICE_ERROR'

    def test_cnpj_lookup_timeout(self, client, registry):
        registry.lookup_by_document.side_effect = ExternalServiceError("slow", timed_out=True)
        response = client.get(f"/api/v1/lookups/cnpj/{OTHER_VALID_CNPJ}")
        assert response.status_code == 504

    def test_cpf_lookup(self, client):
        response = client.get("/api/v1/lookups/cpf/529.982.247-25")
        assert response.status_code == 200
        assert response.json()['documento'] == '52998224725'


class TestSyncEndpoint:

    def test_unconfigured_sync_is_noop(self, client):
        response = client.post("/api/v1/sync/sap")
        assert response.status_code == 200
        assert response.json() == {'fetched': 0, 'updated': 0, 'skipped': 0, 'errors': 0}


class TestHealth:

    def test_healthy(self, client, db_provider):
        with patch.object(server, "get_db_provider", return_value=db_provider):
            response = client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body['status'] == 'healthy'
        assert body['database'] is True
        assert body['sap_configured'] is False
        assert body['scheduler_running'] is False

    def test_database_failure_still_200(self, client):
        with patch.object(server, "get_db_provider", side_effect=RuntimeError("no database")):
            response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()['status'] == 'error'
        assert response.json()['error_message'] == 'no database'


class TestApiKey:

    @pytest.fixture
    def protected(self, client, tmp_path):
        secured = ConfigManager(str(tmp_path / "missing.yaml"), environ={'MDM_API_KEY': 'k-123'})
        server.app.dependency_overrides[server.get_config_instance] = lambda: secured
        return client

    def test_missing_key(self, protected):
        assert protected.get("/api/v1/partners").status_code == 401

    def test_wrong_key(self, protected):
        assert protected.get("/api/v1/partners", headers={'X-API-Key': 'nope'}).status_code == 403

    def test_valid_key(self, protected):
        assert protected.get("/api/v1/partners", headers={'X-API-Key': 'k-123'}).status_code == 200

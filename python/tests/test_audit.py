"""
Tests for partner audits against the CNPJ registry and change requests.
"""

import uuid

import pytest

from config_manager import AuditConfig
from database.models import AuditJobStatus, AuditResult, AuditScope, PersonType
from partners.audit import (
    DIFFERENCES_MESSAGE,
    NO_DIFFERENCES_MESSAGE,
    NO_REFERENCE_MESSAGE,
    PARTNER_NOT_FOUND_MESSAGE,
    AuditService,
)
from partners.change_requests import ChangeRequestService
from partners.errors import ExternalServiceError, NotFoundError, ValidationError

from conftest import OTHER_VALID_CNPJ, VALID_CPF


def registry_payload(**overrides):
    """Registry record matching the default partner fixture."""
    payload = {
        'cnpj': '45723174000110',
        'razao_social': 'Acme Industria e Comercio Ltda',
        'nome_fantasia': 'Acme',
        'establishment_principal': {
            'email': 'Maria@Acme.com.br',
            'telefone1': '(11) 98765-4321',
            'inscricoes_estaduais': [{'numero': '123456789012', 'uf': 'SP'}],
            'endereco': {
                'cep': '01001-000',
                'logradouro': 'Praca da Se',
                'numero': '100',
                'bairro': 'Se',
                'municipio': {'nome': 'Sao Paulo', 'codigo_ibge': '3550308'},
                'uf': 'sp',
            },
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def service(session, registry):
    return AuditService(session, registry, AuditConfig(change_request_lookback=5))


def request_change(session, partner, origin='internal', **field):
    fields = [{'field': field.get('field', 'nome_fantasia'), 'newValue': field.get('value', 'Acme Brasil')}]
    return ChangeRequestService(session).create_change_request(
        partner.id, fields, "Atualizacao solicitada", origin=origin, requested_by="u-9"
    )


class TestRegistryComparison:

    def test_matching_record_is_ok(self, service, partner, registry):
        registry.lookup_by_document.return_value = registry_payload()

        job, logs = service.request_audit([str(partner.id)], "auditor")

        registry.lookup_by_document.assert_called_once_with('45723174000110')
        assert job.status == AuditJobStatus.COMPLETED
        assert logs[0].result == AuditResult.OK
        assert logs[0].message == NO_DIFFERENCES_MESSAGE
        assert logs[0].external_data['source'] == 'cnpja'

    def test_differences_are_reported(self, service, partner, registry):
        registry.lookup_by_document.return_value = registry_payload(razao_social='Acme Industria Ltda')

        _, logs = service.request_audit([str(partner.id)])

        log = logs[0]
        assert log.result == AuditResult.INCONSISTENT
        assert log.message == DIFFERENCES_MESSAGE
        assert log.differences == [{
            'field': 'nome_legal',
            'label': 'Legal name',
            'before': 'Acme Industria e Comercio Ltda',
            'after': 'Acme Industria Ltda',
            'source': 'external',
            'metadata': {'partnerPath': 'nome_legal', 'externalPath': 'nome_legal'},
        }]

    def test_registry_failure_without_fallback(self, service, partner, registry):
        registry.lookup_by_document.side_effect = ExternalServiceError("cnpja responded with status 503", 503)

        _, logs = service.request_audit([str(partner.id)])

        assert logs[0].result == AuditResult.ERROR
        assert logs[0].message == "Could not obtain data for comparison: cnpja responded with status 503"

    def test_registry_failure_falls_back_to_change_requests(self, session, service, partner, registry):
        request_change(session, partner)
        registry.lookup_by_document.side_effect = ExternalServiceError("cnpja responded with status 503", 503)

        _, logs = service.request_audit([str(partner.id)])

        log = logs[0]
        assert log.result == AuditResult.INCONSISTENT
        assert log.message.startswith(DIFFERENCES_MESSAGE)
        assert "Notes: cnpja responded with status 503." in log.message
        assert log.differences[0]['source'] == 'change_request'
        assert log.differences[0]['before'] == 'Acme'
        assert log.differences[0]['after'] == 'Acme Brasil'


class TestChangeRequestFallback:

    def test_clean_registry_uses_latest_change_request(self, session, service, partner, registry):
        registry.lookup_by_document.return_value = registry_payload()
        request_change(session, partner, field='nome_fantasia', value='Primeira')
        latest = request_change(session, partner, field='nome_legal', value='Acme SA')

        _, logs = service.request_audit([str(partner.id)])

        log = logs[0]
        assert log.result == AuditResult.INCONSISTENT
        assert [d['field'] for d in log.differences] == ['nome_legal']
        assert log.differences[0]['metadata']['changeRequestId'] == str(latest.id)
        sources = log.external_data['sources']
        assert sources[0]['source'] == 'cnpja'
        assert sources[-1]['source'] == 'change_request'
        assert sources[-1]['changeRequestId'] == str(latest.id)

    def test_natural_person_skips_registry(self, service, create_partner, registry):
        person = create_partner(person_type=PersonType.PF, document=VALID_CPF, legal_name='Joao da Silva')

        _, logs = service.request_audit([str(person.id)])

        registry.lookup_by_document.assert_not_called()
        assert logs[0].result == AuditResult.ERROR
        assert logs[0].message == NO_REFERENCE_MESSAGE
        assert logs[0].differences is None


class TestAuditJobs:

    def test_requires_partner_ids(self, service):
        with pytest.raises(ValidationError):
            service.request_audit(["", "  "])

    def test_no_partner_found(self, service):
        with pytest.raises(NotFoundError):
            service.request_audit([str(uuid.uuid4())])

    def test_batch_scope_and_missing_partner_log(self, service, partner, registry):
        registry.lookup_by_document.return_value = registry_payload()
        missing = str(uuid.uuid4())

        job, logs = service.request_audit([str(partner.id), missing, str(partner.id)], "auditor")

        assert job.scope == AuditScope.BATCH
        assert job.partner_ids == [str(partner.id), missing]
        assert job.requested_by == "auditor"
        assert job.started_at is not None and job.finished_at is not None
        by_partner = {log.partner_id: log for log in logs}
        assert by_partner[missing].result == AuditResult.ERROR
        assert by_partner[missing].message == PARTNER_NOT_FOUND_MESSAGE

    def test_single_partner_scope(self, service, partner, registry):
        registry.lookup_by_document.return_value = registry_payload()
        job, _ = service.request_audit([str(partner.id)])
        assert job.scope == AuditScope.INDIVIDUAL

    def test_unexpected_failure_recorded_per_partner(self, service, partner, create_partner, registry):
        other = create_partner(document=OTHER_VALID_CNPJ)
        registry.lookup_by_document.side_effect = [RuntimeError("parser exploded"), registry_payload(
            cnpj=OTHER_VALID_CNPJ
        )]

        job, logs = service.request_audit([str(partner.id), str(other.id)])

        assert job.status == AuditJobStatus.COMPLETED
        by_partner = {log.partner_id: log for log in logs}
        assert by_partner[str(partner.id)].result == AuditResult.ERROR
        assert by_partner[str(partner.id)].message == "parser exploded"
        assert by_partner[str(other.id)].result == AuditResult.OK

    def test_get_audit_job(self, service, partner, registry):
        registry.lookup_by_document.return_value = registry_payload()
        job, _ = service.request_audit([str(partner.id)])

        fetched, logs = service.get_audit_job(str(job.id))

        assert fetched.id == job.id
        assert len(logs) == 1

    def test_get_missing_audit_job(self, service):
        with pytest.raises(NotFoundError, match="Audit not found"):
            service.get_audit_job(str(uuid.uuid4()))

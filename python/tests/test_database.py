"""
Tests for the database layer: session provider and repositories.

Runs against in-memory SQLite; JSON columns fall back from JSONB.
"""

import uuid

import pytest

from config_manager import DatabaseConfig
from database.connection import DatabaseSettings, create_test_provider
from database.models import (
    AuditJobStatus,
    AuditResult,
    AuditScope,
    ChangeRequestOrigin,
    ChangeRequestStatus,
    ChangeRequestType,
    PartnerNature,
    PartnerStatus,
    PersonType,
)
from database.repositories import (
    AuditRepository,
    ChangeRequestRepository,
    DuplicateEntityError,
    EntityNotFoundError,
    PartnerRepository,
    coerce_uuid,
)

from conftest import OTHER_VALID_CNPJ, VALID_CNPJ


def partner_row(document=VALID_CNPJ, **overrides):
    data = {
        'person_type': PersonType.PJ,
        'nature': PartnerNature.SUPPLIER,
        'legal_name': 'Fornecedora Alfa Ltda',
        'document': document,
        'status': PartnerStatus.DRAFT,
    }
    data.update(overrides)
    return data


class TestDatabaseSettings:

    def test_url_from_parts(self):
        settings = DatabaseSettings(host="db", port=5433, database="mdm", user="u", password="p")
        assert settings.get_url() == "postgresql+psycopg2://u:p@db:5433/mdm"

    def test_explicit_url_wins(self):
        assert DatabaseSettings(url="sqlite://").get_url() == "sqlite://"

    def test_sqlite_has_no_pool_sizing(self):
        assert DatabaseSettings(url="sqlite://").engine_options() == {"echo": False}
        assert DatabaseSettings().engine_options()["pool_pre_ping"] is True

    def test_safe_url_masks_password(self):
        assert "p4ss" not in DatabaseSettings(password="p4ss").safe_url()

    def test_from_config_with_env_overrides(self):
        config = DatabaseConfig(host="db.internal", port=5433, name="mdm", user="svc", password="x")
        settings = DatabaseSettings.from_config(config, environ={"DB_HOST": "pg", "DB_PORT": "6543"})
        assert settings.host == "pg"
        assert settings.port == 6543
        assert settings.database == "mdm"
        assert settings.user == "svc"
        assert settings.url is None

    def test_database_url_wins(self):
        settings = DatabaseSettings.from_config(environ={"DATABASE_URL": "sqlite:///mdm.db"})
        assert settings.get_url() == "sqlite:///mdm.db"


class TestSessionProvider:

    def test_health_check(self, db_provider):
        assert db_provider.initialized is True
        assert db_provider.health_check() is True

    def test_session_scope_commits(self, db_provider):
        with db_provider.session_scope() as session:
            PartnerRepository(session).create(partner_row())

        with db_provider.session_scope() as session:
            assert PartnerRepository(session).find_by_document(VALID_CNPJ) is not None

    def test_session_scope_rolls_back(self, db_provider):
        with pytest.raises(RuntimeError):
            with db_provider.session_scope() as session:
                PartnerRepository(session).create(partner_row())
                raise RuntimeError("boom")

        with db_provider.session_scope() as session:
            assert PartnerRepository(session).find_by_document(VALID_CNPJ) is None

    def test_engine_required_before_init(self):
        provider = create_test_provider()
        with pytest.raises(RuntimeError):
            provider.engine


class TestPartnerRepository:

    def test_sequential_mdm_ids(self, session):
        repo = PartnerRepository(session)
        first = repo.create(partner_row())
        second = repo.create(partner_row(document=OTHER_VALID_CNPJ))
        assert first.mdm_partner_id == 1
        assert second.mdm_partner_id == 2

    def test_duplicate_document(self, session):
        repo = PartnerRepository(session)
        repo.create(partner_row())
        session.commit()
        with pytest.raises(DuplicateEntityError):
            repo.create(partner_row())

    def test_get_by_id_accepts_strings(self, session):
        repo = PartnerRepository(session)
        partner = repo.create(partner_row())
        assert repo.get_by_id(str(partner.id)) is partner
        assert repo.get_by_id("not-a-uuid") is None

    def test_load_missing(self, session):
        with pytest.raises(EntityNotFoundError):
            PartnerRepository(session).load(uuid.uuid4())

    def test_list_by_ids_keeps_order(self, session):
        repo = PartnerRepository(session)
        a = repo.create(partner_row())
        b = repo.create(partner_row(document=OTHER_VALID_CNPJ))
        result = repo.list_by_ids([str(b.id), "garbage", str(uuid.uuid4()), str(a.id)])
        assert [p.id for p in result] == [b.id, a.id]

    def test_find_by_external_id(self, session):
        repo = PartnerRepository(session)
        partner = repo.create(partner_row(sap_business_partner_id="BP-1"))
        assert repo.find_by_external_id('sap_business_partner_id', "BP-1") is partner
        assert repo.find_by_external_id('mdm_partner_id', partner.mdm_partner_id) is partner
        with pytest.raises(ValueError):
            repo.find_by_external_id('legal_name', "x")

    def test_list_filters_by_status(self, session):
        repo = PartnerRepository(session)
        repo.create(partner_row())
        repo.create(partner_row(document=OTHER_VALID_CNPJ, status=PartnerStatus.IN_REVIEW))
        items, total = repo.list(status=PartnerStatus.IN_REVIEW)
        assert total == 1
        assert items[0].document == OTHER_VALID_CNPJ

    def test_update_segments_replaces_list(self, session):
        repo = PartnerRepository(session)
        partner = repo.create(partner_row())
        repo.update_segments(partner, [{'segment': 'roles', 'status': 'success'}])
        session.commit()
        session.expire_all()
        assert repo.get_by_id(partner.id).sap_segments == [{'segment': 'roles', 'status': 'success'}]


class TestChangeRequestRepository:

    def _request(self, partner_id, **overrides):
        data = {
            'partner_id': partner_id,
            'request_type': ChangeRequestType.INDIVIDUAL,
            'status': ChangeRequestStatus.PENDING,
            'origin': ChangeRequestOrigin.INTERNAL,
            'motivo': 'Atualizacao cadastral',
            'payload': {'partners': []},
        }
        data.update(overrides)
        return data

    def test_most_recent_first(self, session):
        partner = PartnerRepository(session).create(partner_row())
        repo = ChangeRequestRepository(session)
        first = repo.create(self._request(partner.id, motivo='primeiro'))
        second = repo.create(self._request(partner.id, motivo='segundo'))
        recent = repo.most_recent_for_partner(partner.id, limit=5)
        assert [r.id for r in recent] == [second.id, first.id]
        assert len(repo.most_recent_for_partner(partner.id, limit=1)) == 1

    def test_list_paginates_and_filters(self, session):
        partner = PartnerRepository(session).create(partner_row())
        repo = ChangeRequestRepository(session)
        for _ in range(3):
            repo.create(self._request(partner.id))
        repo.create(self._request(partner.id, request_type=ChangeRequestType.BATCH))

        items, total = repo.list(partner.id, page=1, page_size=2)
        assert total == 4
        assert len(items) == 2

        items, total = repo.list(partner.id, request_type=ChangeRequestType.BATCH)
        assert total == 1

    def test_list_unknown_partner_id(self, session):
        assert ChangeRequestRepository(session).list("nope") == ([], 0)


class TestAuditRepository:

    def test_job_lifecycle(self, session):
        repo = AuditRepository(session)
        job = repo.create_job({
            'scope': AuditScope.BATCH,
            'partner_ids': ['a', 'b'],
            'status': AuditJobStatus.QUEUED,
        })
        repo.update_job(job.id, status=AuditJobStatus.RUNNING)
        repo.append_log({'job_id': job.id, 'partner_id': 'a', 'result': AuditResult.OK, 'message': 'ok'})
        repo.append_log({'job_id': job.id, 'partner_id': 'b', 'result': AuditResult.ERROR})
        session.commit()

        stored = repo.get_job(str(job.id))
        assert stored.status == AuditJobStatus.RUNNING
        assert stored.partner_ids == ['a', 'b']
        assert [log.partner_id for log in repo.logs_for_job(job.id)] == ['a', 'b']

    def test_update_missing_job(self, session):
        with pytest.raises(EntityNotFoundError):
            AuditRepository(session).update_job(uuid.uuid4(), status=AuditJobStatus.ERROR)


class TestCoerceUuid:

    def test_values(self):
        value = uuid.uuid4()
        assert coerce_uuid(value) is value
        assert coerce_uuid(str(value)) == value
        assert coerce_uuid(" ") is None
        assert coerce_uuid(None) is None

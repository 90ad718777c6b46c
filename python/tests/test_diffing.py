"""
Tests for canonical value comparison and the field catalogs built on it.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from database.models import PartnerStatus
from partners.diffing import clone_value, normalize_comparison_value, values_equal
from partners.fields import (
    AUDIT_FIELD_MAPPINGS,
    CHANGE_REQUEST_FIELD_MAP,
    ChangeRequestFieldId,
)
from partners.reverse_sync import calculate_differences, map_sap_partner_payload

SHAPES = [
    None,
    "",
    "  Acme  ",
    0,
    12.5,
    True,
    PartnerStatus.IN_REVIEW,
    date(2024, 3, 1),
    datetime(2024, 3, 1, 12, 30),
    datetime(2024, 3, 1, 12, 30, tzinfo=timezone(timedelta(hours=-3))),
    ["b", " a ", None],
    {'b': 1, 'a': {'z': "", 'y': [date(2024, 1, 1)]}},
    [{'segment': 'roles', 'status': 'success'}, {'segment': 'banks', 'status': 'error'}],
]


class TestValuesEqual:

    @pytest.mark.parametrize("value", SHAPES)
    def test_value_equals_itself(self, value):
        assert values_equal(value, value)

    @pytest.mark.parametrize("value", SHAPES)
    def test_normalization_is_stable(self, value):
        once = normalize_comparison_value(value)
        assert normalize_comparison_value(once) == once

    def test_blank_equals_missing(self):
        assert values_equal("", None)
        assert values_equal("   ", None)
        assert values_equal({'email': ""}, {'email': None})

    def test_strings_are_trimmed(self):
        assert values_equal(" Acme ", "Acme")
        assert not values_equal("Acme", "acme")

    def test_dict_key_order_is_ignored(self):
        assert values_equal({'b': 1, 'a': 2}, {'a': 2, 'b': 1})

    def test_list_order_matters(self):
        assert not values_equal([1, 2], [2, 1])

    def test_naive_datetimes_are_utc(self):
        assert values_equal(datetime(2024, 1, 1), datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_offsets_are_converted(self):
        local = datetime(2024, 1, 1, 3, 0, tzinfo=timezone(timedelta(hours=3)))
        assert values_equal(local, datetime(2024, 1, 1, 0, 0))

    def test_date_is_midnight_utc(self):
        assert values_equal(date(2024, 1, 1), datetime(2024, 1, 1))
        assert normalize_comparison_value(date(2024, 1, 1)) == "2024-01-01T00:00:00+00:00"

    def test_enum_members_compare_by_value(self):
        assert values_equal(PartnerStatus.DRAFT, "draft")
        assert not values_equal(PartnerStatus.DRAFT, "approved")

    def test_clone_value_is_json_safe(self):
        assert clone_value(PartnerStatus.DRAFT) == "draft"
        assert clone_value(date(2024, 1, 1)) == "2024-01-01T00:00:00+00:00"
        original = {'a': [1]}
        copied = clone_value(original)
        copied['a'].append(2)
        assert original == {'a': [1]}


class TestDifferenceIdempotence:

    def test_same_input_same_differences(self, partner):
        updates = map_sap_partner_payload({'legalName': 'Acme SA', 'tradeName': ' Acme '})
        first = calculate_differences(partner, updates)
        assert first == calculate_differences(partner, updates)
        assert [d['field'] for d in first] == ['legal_name']

    def test_no_differences_after_applying(self, session, partner):
        updates = map_sap_partner_payload({
            'legalName': 'Acme SA',
            'addresses': [{'cep': '01310100', 'logradouro': 'Avenida Paulista', 'numero': '1000'}],
        })
        assert calculate_differences(partner, updates)

        for attribute, value in updates.items():
            setattr(partner, attribute, value)
        session.flush()

        assert calculate_differences(partner, updates) == []


class TestFieldCatalogs:

    def test_every_field_id_has_an_accessor(self):
        assert set(CHANGE_REQUEST_FIELD_MAP) == {field.value for field in ChangeRequestFieldId}

    def test_change_request_accessors_read_partner(self, partner):
        assert CHANGE_REQUEST_FIELD_MAP['nome_legal'].current_value(partner) == partner.legal_name
        assert CHANGE_REQUEST_FIELD_MAP['contato_principal.email'].current_value(partner) == 'maria@acme.com.br'
        assert CHANGE_REQUEST_FIELD_MAP['comunicacao.telefone'].current_value(partner) == '1133334444'
        assert CHANGE_REQUEST_FIELD_MAP['credito_info.montante'].current_value(partner) is None

    def test_audit_mappings_read_both_sides(self, partner):
        mappings = {mapping.field: mapping for mapping in AUDIT_FIELD_MAPPINGS}
        snapshot = {
            'contato': {'email': ' Maria@Acme.com.br '},
            'endereco': {'cep': '01001-000', 'uf': 'sp'},
        }

        email = mappings['contato_principal.email']
        assert email.partner_value(partner) == email.external_value(snapshot) == 'maria@acme.com.br'
        cep = mappings['addresses.0.cep']
        assert cep.partner_value(partner) == cep.external_value(snapshot) == '01001000'
        assert mappings['addresses.0.uf'].external_value(snapshot) == 'SP'
        assert mappings['suframa'].external_value(snapshot) is None

    def test_partner_without_addresses(self, partner):
        partner.addresses = []
        cep = next(mapping for mapping in AUDIT_FIELD_MAPPINGS if mapping.field == 'addresses.0.cep')
        assert cep.partner_value(partner) is None

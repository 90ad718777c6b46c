"""
Unit tests for the Brazilian document validators.
"""

import pytest

from document_validators import (
    only_digits,
    validate_cep,
    validate_cnpj,
    validate_cpf,
    validate_document,
    validate_ibge_code,
    validate_state_registration,
)
from database.models import PersonType


class TestOnlyDigits:

    def test_strips_punctuation(self):
        assert only_digits("45.723.174/0001-10") == "45723174000110"

    def test_none_is_empty(self):
        assert only_digits(None) == ""


class TestCpf:
    """CPF check digits"""

    @pytest.mark.parametrize("value", ["390.533.447-05", "39053344705", "529.982.247-25"])
    def test_valid(self, value):
        assert validate_cpf(value) is True

    @pytest.mark.parametrize("value", ["390.533.447-04", "11111111111", "1234567890", "", None])
    def test_invalid(self, value):
        assert validate_cpf(value) is False


class TestCnpj:
    """CNPJ check digits"""

    @pytest.mark.parametrize("value", ["45.723.174/0001-10", "11222333000181"])
    def test_valid(self, value):
        assert validate_cnpj(value) is True

    @pytest.mark.parametrize("value", ["45.723.174/0001-11", "00.000.000/0000-00", "4572317400011", None])
    def test_invalid(self, value):
        assert validate_cnpj(value) is False


class TestPostalAndMunicipality:

    def test_cep(self):
        assert validate_cep("01001-000") is True
        assert validate_cep("12345") is False
        assert validate_cep("00000000") is False

    def test_ibge_code(self):
        assert validate_ibge_code("3550308") is True
        assert validate_ibge_code("123") is False
        assert validate_ibge_code("1111111") is False

    def test_ibge_code_unknown_state_prefix(self):
        assert validate_ibge_code("9950308") is False


class TestStateRegistration:

    def test_numeric_registration(self):
        assert validate_state_registration("123.456.789.012") is True

    def test_too_short_or_empty(self):
        assert validate_state_registration("11") is False
        assert validate_state_registration("") is False
        assert validate_state_registration(None) is False

    def test_exempt_only_when_allowed(self):
        assert validate_state_registration("isento") is False
        assert validate_state_registration("isento", allow_exempt=True) is True


class TestValidateDocument:

    def test_matches_person_type(self):
        assert validate_document(PersonType.PJ, "45723174000110") is True
        assert validate_document(PersonType.PF, "39053344705") is True

    def test_wrong_document_for_person_type(self):
        assert validate_document(PersonType.PF, "45723174000110") is False
        assert validate_document(PersonType.PJ, "39053344705") is False

    def test_unknown_person_type(self):
        assert validate_document("XX", "39053344705") is False

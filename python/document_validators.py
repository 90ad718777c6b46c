"""
Brazilian document and postal code validators

Pure predicates used by partner registration and lookups. Every validator
accepts formatted input (dots, dashes, slashes) and sanitizes it first.
"""

import re
from typing import Optional

_NON_DIGITS = re.compile(r'\D+')

# IBGE state prefixes (first two digits of a municipality code)
IBGE_STATE_CODES = frozenset({
    '11', '12', '13', '14', '15', '16', '17',
    '21', '22', '23', '24', '25', '26', '27', '28', '29',
    '31', '32', '33', '35',
    '41', '42', '43',
    '50', '51', '52', '53',
})

STATE_REGISTRATION_EXEMPT = 'ISENTO'


def only_digits(value: Optional[str]) -> str:
    """Strip every non-digit character. None becomes an empty string."""
    if value is None:
        return ''
    return _NON_DIGITS.sub('', str(value))


def _is_repeated(digits: str) -> bool:
    return len(set(digits)) == 1


def _check_digit(digits: str, weights) -> int:
    total = sum(int(d) * w for d, w in zip(digits, weights))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def validate_cpf(value: Optional[str]) -> bool:
    """
    Validate a CPF (natural person taxpayer number).

    Args:
        value: CPF, formatted or digits only

    Returns:
        True when the 11 digits carry valid check digits
    """
    digits = only_digits(value)
    if len(digits) != 11 or _is_repeated(digits):
        return False

    first = _check_digit(digits[:9], range(10, 1, -1))
    second = _check_digit(digits[:10], range(11, 1, -1))
    return digits[9] == str(first) and digits[10] == str(second)


def validate_cnpj(value: Optional[str]) -> bool:
    """
    Validate a CNPJ (legal entity taxpayer number).

    Args:
        value: CNPJ, formatted or digits only

    Returns:
        True when the 14 digits carry valid check digits
    """
    digits = only_digits(value)
    if len(digits) != 14 or _is_repeated(digits):
        return False

    first_weights = [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
    second_weights = [6] + first_weights
    first = _check_digit(digits[:12], first_weights)
    second = _check_digit(digits[:13], second_weights)
    return digits[12] == str(first) and digits[13] == str(second)


def validate_cep(value: Optional[str]) -> bool:
    """CEP must have 8 digits and not be a single repeated digit."""
    digits = only_digits(value)
    return len(digits) == 8 and not _is_repeated(digits)


def validate_ibge_code(value: Optional[str]) -> bool:
    """IBGE municipality code: 7 digits prefixed by a known state code."""
    digits = only_digits(value)
    if len(digits) != 7 or _is_repeated(digits):
        return False
    return digits[:2] in IBGE_STATE_CODES


def validate_state_registration(value: Optional[str], allow_exempt: bool = False) -> bool:
    """
    Validate a state registration (inscricao estadual).

    Per-state check digit rules are not applied; the registration must have
    between 8 and 14 digits.

    Args:
        value: Registration number, or "ISENTO"
        allow_exempt: Accept "ISENTO" (case insensitive)
    """
    if value is None:
        return False
    text = str(value).strip()
    if not text:
        return False
    if text.upper() == STATE_REGISTRATION_EXEMPT:
        return allow_exempt

    digits = only_digits(text)
    return 8 <= len(digits) <= 14 and not _is_repeated(digits)


def validate_document(person_type: str, value: Optional[str]) -> bool:
    """CNPJ for legal entities (PJ), CPF for natural persons (PF)."""
    if person_type == 'PJ':
        return validate_cnpj(value)
    if person_type == 'PF':
        return validate_cpf(value)
    return False

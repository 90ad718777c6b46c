"""Domain errors raised by the partner services."""

from typing import Optional


class PartnerError(Exception):
    """Base class for partner domain errors"""

    code = "PARTNER_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(PartnerError):
    """Invalid input or a transition that is not allowed from the current state"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.field = field
        if code:
            self.code = code


class PermissionDeniedError(PartnerError):
    """Actor lacks the capability required for an approval stage"""

    code = "PERMISSION_DENIED"


class NotFoundError(PartnerError):
    """Referenced partner or audit job does not exist"""

    code = "NOT_FOUND"


class ExternalServiceError(PartnerError):
    """Failure talking to SAP or to the CNPJ registry"""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, timed_out: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out

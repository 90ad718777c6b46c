"""
HTTP client for the SAP business partner API.

All calls use basic auth, JSON bodies and the configured timeout. Failures
are raised as ExternalServiceError carrying the most specific message SAP
returned.
"""

import logging
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from config_manager import SapConfig
from partners.errors import ExternalServiceError

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Timed out while communicating with SAP"
LIST_TIMEOUT_MESSAGE = "Timed out while querying SAP"


def extract_error_message(body: Any, status_code: int) -> str:
    """
    Pick the most specific error message from an SAP error body.

    Looks at ``error.message.value``, ``error.message``, ``message`` and
    ``detail`` in that order; a plain text body is used as is.
    """
    fallback = f"SAP responded with status {status_code}"
    if isinstance(body, str):
        return body.strip() or fallback
    if not isinstance(body, dict):
        return fallback

    error = body.get('error')
    if isinstance(error, dict):
        message = error.get('message')
        if isinstance(message, dict) and message.get('value'):
            return str(message['value'])
        if isinstance(message, str) and message.strip():
            return message
    elif isinstance(error, str) and error.strip():
        return error

    for key in ('message', 'detail'):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return fallback


def _parse_body(response: requests.Response) -> Any:
    raw = response.text
    if not raw:
        return None
    try:
        return response.json()
    except ValueError:
        return raw


class SapClient:
    """Thin wrapper over requests for the SAP business partner endpoints"""

    def __init__(self, config: SapConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return (self.config.base_url or '').rstrip('/')

    def _auth(self) -> Optional[HTTPBasicAuth]:
        if not self.config.user and not self.config.password:
            return None
        return HTTPBasicAuth(self.config.user or '', self.config.password or '')

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path if path.startswith('/') else '/' + path}"

    def dispatch(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send one segment payload to SAP.

        Args:
            method: HTTP method (POST or PUT)
            path: Route below the SAP base URL
            payload: JSON body

        Returns:
            Parsed JSON body, the raw text body, or None when empty

        Raises:
            ExternalServiceError: On timeout, network failure or non-2xx status
        """
        try:
            response = self.session.request(
                method,
                self._url(path),
                json=payload or {},
                auth=self._auth(),
                headers={'Content-Type': 'application/json', 'Accept': 'application/json'},
                timeout=self.config.timeout_seconds,
            )
        except requests.Timeout:
            raise ExternalServiceError(TIMEOUT_MESSAGE, timed_out=True)
        except requests.RequestException as e:
            raise ExternalServiceError(f"Failed to reach SAP: {e}")

        body = _parse_body(response)
        if not response.ok:
            raise ExternalServiceError(
                extract_error_message(body, response.status_code),
                status_code=response.status_code,
            )
        return body

    def list_partners(self, page: int, page_size: int, updated_after: Optional[str] = None) -> Any:
        """
        Fetch one page of the SAP partner listing.

        Raises:
            ExternalServiceError: On timeout, network failure or non-2xx status
        """
        params: Dict[str, Any] = {'page': page, 'pageSize': page_size}
        if updated_after:
            params['updatedAfter'] = updated_after

        try:
            response = self.session.get(
                self._url('/business-partners'),
                params=params,
                auth=self._auth(),
                headers={'Accept': 'application/json'},
                timeout=self.config.timeout_seconds,
            )
        except requests.Timeout:
            raise ExternalServiceError(LIST_TIMEOUT_MESSAGE, timed_out=True)
        except requests.RequestException as e:
            raise ExternalServiceError(f"Failed to reach SAP: {e}")

        body = _parse_body(response)
        if not response.ok:
            raise ExternalServiceError(
                extract_error_message(body, response.status_code),
                status_code=response.status_code,
            )
        logger.debug(f"Fetched SAP partner page {page} (page size {page_size})")
        return body

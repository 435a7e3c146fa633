"""
iFood sync error taxonomy.

Every error carries a stable ``kind`` so routes and the dashboard can tell
"token expired, reconfigure" apart from "order too old to query".
"""

from typing import Dict, Optional


class IFoodError(Exception):
    """Base class for every failure raised by the sync engine"""

    kind = 'ifood_error'

    def __init__(self, message: str = '', status_code: Optional[int] = None, details=None):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> Dict:
        payload = {'error': self.message, 'error_kind': self.kind}
        if self.status_code:
            payload['status_code'] = self.status_code
        return payload


class AuthError(IFoodError):
    """Bad credentials, rejected token request, or exhausted 401 retry"""
    kind = 'auth_error'


class ConfigurationError(IFoodError):
    """Missing merchant or client credentials"""
    kind = 'configuration_error'


class TransientError(IFoodError):
    """5xx or network failure that survived the retry budget"""
    kind = 'transient_error'


class RequestTimeoutError(TransientError):
    kind = 'request_timeout'


class PlatformError(IFoodError):
    """Non-retryable 4xx answer from the platform"""
    kind = 'platform_error'


class InvalidTransitionError(IFoodError):
    """Illegal status advance, rejected before any network call"""
    kind = 'invalid_transition'


class UnknownStatusError(IFoodError):
    kind = 'unknown_status'


class StaleOrderError(IFoodError):
    """Order details requested past the 8 hour window"""
    kind = 'stale_order'


class MappingNotFoundError(IFoodError):
    kind = 'mapping_not_found'


class SignatureError(IFoodError):
    kind = 'invalid_signature'

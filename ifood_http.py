"""
Authenticated HTTP client for the iFood Merchant API.

Handles the bearer token per request, one re-authentication on 401, and
bounded fixed-delay retries for timeouts, connection failures and 5xx.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import requests

from ifood_errors import AuthError, PlatformError, RequestTimeoutError, TransientError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://merchant-api.ifood.com.br'
DEFAULT_TIMEOUT = 30.0


def is_retryable(response: Optional[requests.Response], exc: Optional[Exception]) -> bool:
    if exc is not None:
        return isinstance(exc, (requests.Timeout, requests.ConnectionError))
    return response is not None and response.status_code >= 500


@dataclass(frozen=True)
class RetryPolicy:
    """max_attempts counts the first try: 4 means one call plus three retries."""
    max_attempts: int = 4
    delay: float = 1.0
    retryable: Callable[[Optional[requests.Response], Optional[Exception]], bool] = field(default=is_retryable)


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    data: object = None
    headers: Dict = field(default_factory=dict)

    @property
    def is_async(self) -> bool:
        return self.status_code == 202

    @property
    def is_empty(self) -> bool:
        return self.status_code == 204 or self.data in (None, '', {}, [])


def extract_error_message(response: requests.Response) -> str:
    """Pull the most useful message out of an iFood error body."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get('error')
        if isinstance(error, dict):
            message = error.get('message') or error.get('code')
            if message:
                return str(message)
        for key in ('message', 'error_description', 'error', 'detail'):
            value = body.get(key)
            if value and isinstance(value, str):
                return value
    text = str(response.text or '').strip().replace('\n', ' ')
    if text:
        return text[:200]
    return f'HTTP {response.status_code}'


def _parse_body(response: requests.Response):
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class IFoodHttpClient:
    """Sole egress point for authenticated platform calls"""

    def __init__(self, token_provider, base_url: str = DEFAULT_BASE_URL,
                 timeout: float = DEFAULT_TIMEOUT, retry_policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None, trust_env: bool = False,
                 sleep: Callable[[float], None] = time.sleep):
        self.token_provider = token_provider
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        if session is None:
            session = requests.Session()
            # Avoid inheriting proxy env vars unless explicitly enabled.
            session.trust_env = trust_env
            session.headers.update({'Accept': 'application/json'})
        self.session = session
        self._sleep = sleep

    def get(self, path: str, params: Optional[Dict] = None, headers: Optional[Dict] = None) -> ApiResponse:
        return self.request('GET', path, params=params, headers=headers)

    def post(self, path: str, json=None, headers: Optional[Dict] = None) -> ApiResponse:
        return self.request('POST', path, json=json, headers=headers)

    def request(self, method: str, path: str, params: Optional[Dict] = None,
                json=None, headers: Optional[Dict] = None) -> ApiResponse:
        url = f'{self.base_url}{path}'
        token = self.token_provider.access_token()
        response = self._send_with_retry(method, url, token, params, json, headers)

        if response.status_code == 401:
            logger.info('401 from %s %s; re-authenticating once', method, path)
            token = self.token_provider.reauthenticate(token)
            response = self._send_with_retry(method, url, token, params, json, headers)
            if response.status_code == 401:
                message = f'Unauthorized after re-authentication: {extract_error_message(response)}'
                self.token_provider.mark_unauthenticated(message)
                raise AuthError(message, status_code=401)

        if response.status_code >= 500:
            raise TransientError(
                f'iFood server error {response.status_code}: {extract_error_message(response)}',
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PlatformError(
                extract_error_message(response),
                status_code=response.status_code,
                details={'method': method, 'path': path},
            )
        return ApiResponse(response.status_code, _parse_body(response), dict(response.headers or {}))

    def _send_with_retry(self, method, url, token, params, json, headers) -> requests.Response:
        policy = self.retry_policy
        request_headers = dict(headers or {})
        request_headers['Authorization'] = f'Bearer {token}'
        attempts = max(1, policy.max_attempts)
        last_exc = None

        for attempt in range(1, attempts + 1):
            response = None
            try:
                response = self.session.request(
                    method, url, params=params, json=json,
                    headers=request_headers, timeout=self.timeout,
                )
                last_exc = None
            except requests.RequestException as exc:
                last_exc = exc

            if not policy.retryable(response, last_exc):
                if last_exc is not None:
                    raise TransientError(f'Request failed: {last_exc}') from last_exc
                return response
            if attempt == attempts:
                break

            reason = last_exc.__class__.__name__ if last_exc is not None else f'HTTP {response.status_code}'
            logger.warning('%s %s failed (%s); retry %d/%d in %.1fs',
                           method, url, reason, attempt, attempts - 1, policy.delay)
            self._sleep(policy.delay)

        if isinstance(last_exc, requests.Timeout):
            raise RequestTimeoutError(f'Request timed out after {attempts} attempts') from last_exc
        if last_exc is not None:
            raise TransientError(f'Request failed after {attempts} attempts: {last_exc}') from last_exc
        return response

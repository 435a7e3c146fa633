"""
OAuth token lifecycle for the iFood Merchant API.

The TokenManager keeps one access token per process. Tokens are refreshed
when less than five minutes remain; refresh is serialized so concurrent
callers trigger a single authentication request, and callers queued behind
a failed attempt share its error instead of retrying it.
"""

import logging
import threading
from dataclasses import replace
from datetime import timedelta
from typing import Callable, Optional, Tuple

import requests

from ifood_errors import AuthError, ConfigurationError, IFoodError
from ifood_http import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, extract_error_message
from ifood_models import IntegrationConfig, StateCell, utcnow

logger = logging.getLogger(__name__)

TOKEN_PATH = '/authentication/v1.0/oauth/token'
USER_CODE_PATH = '/authentication/v1.0/oauth/userCode'
EXPIRY_BUFFER = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600


class TokenManager:
    """Obtains, caches and persists access tokens"""

    def __init__(self, store, state_cell: StateCell, cipher,
                 base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None, trust_env: bool = False,
                 clock: Callable = utcnow):
        self.store = store
        self.state_cell = state_cell
        self.cipher = cipher
        self.auth_url = f"{base_url.rstrip('/')}{TOKEN_PATH}"
        self.user_code_url = f"{base_url.rstrip('/')}{USER_CODE_PATH}"
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            session.trust_env = trust_env
        self.session = session
        self._clock = clock
        self._lock = threading.Lock()
        self._attempts = 0
        self._last_failure: Optional[IFoodError] = None

    # ------------------------------------------------------------------
    # Config snapshot
    # ------------------------------------------------------------------

    def current_config(self) -> Optional[IntegrationConfig]:
        config = self.state_cell.get().config
        if config is None:
            config = self.store.get_config()
            if config is not None:
                self.state_cell.set_config(config)
        return config

    def reload_config(self) -> Optional[IntegrationConfig]:
        """Re-read credentials after an admin edit; forgets the auth status."""
        config = self.store.get_config()
        self.state_cell.update(
            lambda state: state.evolve(config=config, authenticated=False, auth_error=None)
        )
        return config

    def _token_is_fresh(self, config: Optional[IntegrationConfig]) -> bool:
        return config is not None and config.token_valid_at(self._clock(), EXPIRY_BUFFER)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ensure_authenticated(self) -> Tuple[bool, Optional[str]]:
        try:
            self.access_token()
        except IFoodError as exc:
            return False, exc.message
        if not self.state_cell.get().authenticated:
            self.state_cell.update(lambda state: state.evolve(authenticated=True, auth_error=None))
        return True, None

    def access_token(self) -> str:
        """Return a token valid for at least five more minutes."""
        config = self.current_config()
        if self._token_is_fresh(config):
            return config.access_token

        seen = self._attempts
        with self._lock:
            config = self.current_config()
            if self._token_is_fresh(config):
                return config.access_token
            return self._shared_authenticate(config, seen).access_token

    def reauthenticate(self, stale_token: Optional[str]) -> str:
        """Force a new token after the platform rejected ``stale_token``."""
        seen = self._attempts
        with self._lock:
            config = self.current_config()
            if (config is not None and config.access_token
                    and config.access_token != stale_token and self._token_is_fresh(config)):
                return config.access_token
            return self._shared_authenticate(config, seen).access_token

    def mark_unauthenticated(self, message: str):
        """Drop the cached token after the platform kept rejecting it."""
        self.state_cell.update(lambda state: state.evolve(
            config=state.config.without_tokens() if state.config is not None else None,
            authenticated=False,
            auth_error=message,
        ))
        logger.warning('iFood integration marked unauthenticated: %s', message)

    def request_user_code(self, client_id: str) -> dict:
        """Start the distributed (authorization code) flow for ``client_id``.

        The returned ``authorizationCodeVerifier`` is stored on the matching
        config so the code the merchant approves can be exchanged later.
        """
        if not str(client_id or '').strip():
            raise ConfigurationError('Missing iFood client id')
        data = self._post_form(self.user_code_url, {'clientId': client_id}, 'userCode')
        if not data.get('userCode') or not data.get('authorizationCodeVerifier'):
            raise AuthError('User code response missing userCode or authorizationCodeVerifier')

        config = self.store.get_config()
        if config is not None and config.client_id == client_id:
            self.store.save_config(replace(config, authorization_code_verifier=data['authorizationCodeVerifier']))
            self.reload_config()
        logger.info('iFood user code requested for client %s', client_id)
        return data

    # ------------------------------------------------------------------
    # Token request
    # ------------------------------------------------------------------

    def _shared_authenticate(self, config: Optional[IntegrationConfig], seen: int) -> IntegrationConfig:
        # callers queued behind a failed attempt get its error instead of retrying
        if self._attempts != seen and self._last_failure is not None:
            failure = self._last_failure
            raise type(failure)(failure.message, status_code=failure.status_code)
        try:
            updated = self._authenticate(config)
        except IFoodError as exc:
            self._last_failure = exc
            raise
        finally:
            self._attempts += 1
        self._last_failure = None
        return updated

    def _authenticate(self, config: Optional[IntegrationConfig]) -> IntegrationConfig:
        try:
            return self._request_new_token(config)
        except IFoodError as exc:
            self.state_cell.update(lambda state: state.evolve(authenticated=False, auth_error=exc.message))
            raise

    def _request_new_token(self, config: Optional[IntegrationConfig]) -> IntegrationConfig:
        if config is None or not str(config.merchant_id or '').strip():
            raise ConfigurationError('iFood integration is not configured')
        if not str(config.client_id or '').strip() or not config.client_secret_encrypted:
            raise ConfigurationError('Missing iFood client credentials')

        client_secret = self.cipher.decrypt(config.client_secret_encrypted)
        base_form = {'clientId': config.client_id, 'clientSecret': client_secret}

        data = None
        if config.refresh_token:
            form = dict(base_form, grantType='refresh_token', refreshToken=config.refresh_token)
            if config.authorization_code_verifier:
                form['authorizationCodeVerifier'] = config.authorization_code_verifier
            try:
                data = self._post_token_request(form)
            except AuthError as exc:
                logger.warning('Refresh token rejected (%s); falling back to full authentication', exc.message)

        if data is None:
            if config.authorization_code:
                form = dict(base_form, grantType='authorization_code',
                            authorizationCode=config.authorization_code)
                if config.authorization_code_verifier:
                    form['authorizationCodeVerifier'] = config.authorization_code_verifier
            else:
                form = dict(base_form, grantType='client_credentials')
            data = self._post_token_request(form)

        access_token = data.get('accessToken') or data.get('access_token')
        expires_in_raw = data.get('expiresIn', data.get('expires_in'))
        if not access_token or expires_in_raw in (None, ''):
            raise AuthError('Token response missing accessToken or expiresIn')
        try:
            expires_in = int(expires_in_raw)
        except (TypeError, ValueError):
            raise AuthError(f'Invalid expiresIn in token response: {expires_in_raw!r}')

        expires_at = self._clock() + timedelta(seconds=expires_in)
        refresh_token = data.get('refreshToken') or data.get('refresh_token') or config.refresh_token
        self.store.save_tokens(config.merchant_id, access_token, expires_at, refresh_token)

        updated = config.with_tokens(access_token, expires_at, refresh_token)
        self.state_cell.update(
            lambda state: state.evolve(config=updated, authenticated=True, auth_error=None)
        )
        logger.info('iFood API authenticated (merchant %s, expires %s)', config.merchant_id, expires_at.isoformat())
        return updated

    def _post_token_request(self, form) -> dict:
        return self._post_form(self.auth_url, form, form.get('grantType'))

    def _post_form(self, url: str, form, label: str) -> dict:
        try:
            response = self.session.post(
                url,
                data=form,
                headers={
                    'Content-Type': 'application/x-www-form-urlencoded',
                    'Accept': 'application/json',
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error('Authentication request failed (%s): %s', label, exc.__class__.__name__)
            raise AuthError(f'Authentication request failed: {exc}') from exc

        if response.status_code < 200 or response.status_code >= 300:
            message = extract_error_message(response)
            logger.error('Authentication failed (%s): %s %s', label, response.status_code, message)
            raise AuthError(f'Authentication failed: {message}', status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise AuthError('Authentication response is not valid JSON') from exc
        if not isinstance(data, dict):
            raise AuthError('Authentication response is not a JSON object')
        return data

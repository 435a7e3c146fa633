"""Inbound iFood webhook authentication."""

import hashlib
import hmac
from typing import Mapping, Optional, Tuple

SIGNATURE_HEADER = 'X-IFood-Signature'
TOKEN_HEADER = 'X-IFood-Webhook-Token'


class WebhookVerifier:
    """Checks a push before it reaches the reconciliation path.

    Order of precedence: HMAC-SHA256 of the raw body when a secret is set,
    otherwise a shared token header, otherwise accept only when unsigned
    pushes were explicitly allowed.
    """

    def __init__(self, secret: Optional[str] = None, token: Optional[str] = None,
                 allow_unsigned: bool = False):
        self.secret = secret or ''
        self.token = token or ''
        self.allow_unsigned = allow_unsigned

    @property
    def mode(self) -> str:
        if self.secret:
            return 'hmac_sha256'
        if self.token:
            return 'token'
        if self.allow_unsigned:
            return 'unsigned'
        return 'disabled'

    @property
    def configured(self) -> bool:
        return self.mode != 'disabled'

    def sign(self, raw_body: bytes) -> str:
        return hmac.new(self.secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> Tuple[bool, Optional[str]]:
        raw_body = raw_body or b''
        if self.secret:
            sent = str(headers.get(SIGNATURE_HEADER) or '').strip()
            if not sent:
                return False, 'missing_signature'
            if sent.lower().startswith('sha256='):
                sent = sent[len('sha256='):]
            if not hmac.compare_digest(self.sign(raw_body), sent.lower()):
                return False, 'invalid_signature'
            return True, None

        if self.token:
            sent = str(headers.get(TOKEN_HEADER) or '').strip()
            if not sent or not hmac.compare_digest(sent, self.token):
                return False, 'invalid_token'
            return True, None

        if self.allow_unsigned:
            return True, None
        return False, 'webhook_not_configured'

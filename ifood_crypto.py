"""Encryption helpers for integration secrets stored in the database."""

import base64
import hashlib
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ifood_errors import ConfigurationError

logger = logging.getLogger(__name__)

DEV_FALLBACK_KEY = 'default-key-change-in-production'


def _derive_fernet_key(raw_key: str) -> bytes:
    """Accept a ready Fernet key or derive one from an arbitrary passphrase."""
    candidate = raw_key.strip().encode('utf-8')
    try:
        if len(base64.urlsafe_b64decode(candidate)) == 32:
            return candidate
    except (ValueError, TypeError):
        pass
    digest = hashlib.sha256(candidate).digest()
    return base64.urlsafe_b64encode(digest)


class SecretCipher:
    """Symmetric cipher for client secrets (Fernet, key from IFOOD_ENCRYPTION_KEY)"""

    def __init__(self, key: Optional[str] = None):
        raw_key = key if key is not None else os.environ.get('IFOOD_ENCRYPTION_KEY', '')
        if not str(raw_key or '').strip():
            logger.warning('IFOOD_ENCRYPTION_KEY not set; using development key (not for production)')
            raw_key = DEV_FALLBACK_KEY
        self._fernet = Fernet(_derive_fernet_key(str(raw_key)))

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ''
        return self._fernet.encrypt(plaintext.encode('utf-8')).decode('ascii')

    def decrypt(self, token: str) -> str:
        if not token:
            return ''
        try:
            return self._fernet.decrypt(token.encode('ascii')).decode('utf-8')
        except (InvalidToken, ValueError) as exc:
            raise ConfigurationError(
                'Stored client secret cannot be decrypted; save the credentials again'
            ) from exc

"""
Fernet encryption for OAuth tokens stored in user_integrations.

Ciphertext is stored as BYTEA; psycopg hands it back as memoryview.
"""

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_CHECK_VALUE = "calendar-credential-check"


class EncryptionError(Exception):
    """Key missing or malformed, or ciphertext that does not decrypt."""


def _cipher() -> Fernet:
    key = settings.ENCRYPTION_KEY
    if not key:
        raise EncryptionError("ENCRYPTION_KEY is not set")
    try:
        return Fernet(key.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.error("ENCRYPTION_KEY is not a valid Fernet key", error=str(e))
        raise EncryptionError(f"Invalid encryption key: {e}") from e


def encrypt_token(token: str) -> bytes:
    if not isinstance(token, str) or not token:
        raise EncryptionError("Refusing to encrypt an empty token")
    return _cipher().encrypt(token.encode("utf-8"))


def decrypt_token(ciphertext: bytes | memoryview) -> str:
    """
    Raises:
        EncryptionError: empty input, or a token sealed with another key
    """
    raw = bytes(ciphertext) if isinstance(ciphertext, memoryview) else ciphertext
    if not isinstance(raw, bytes) or not raw:
        raise EncryptionError("Nothing to decrypt")
    try:
        return _cipher().decrypt(raw).decode("utf-8")
    except InvalidToken as e:
        logger.error("Stored token does not decrypt with the configured key")
        raise EncryptionError("Invalid or corrupted token") from e


def validate_encryption_config() -> bool:
    """True when the configured key can seal and open a value."""
    try:
        return decrypt_token(encrypt_token(_CHECK_VALUE)) == _CHECK_VALUE
    except EncryptionError as e:
        logger.error("Encryption key check failed", error=str(e))
        return False


def encrypt_oauth_tokens(
    access_token: str, refresh_token: str | None = None
) -> tuple[bytes, bytes | None]:
    return encrypt_token(access_token), (encrypt_token(refresh_token) if refresh_token else None)


def decrypt_oauth_tokens(
    encrypted_access: bytes, encrypted_refresh: bytes | None = None
) -> tuple[str, str | None]:
    return (
        decrypt_token(encrypted_access),
        decrypt_token(encrypted_refresh) if encrypted_refresh else None,
    )

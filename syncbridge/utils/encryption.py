"""
Connection credential encryption (Webflow site tokens, SmartSuite API keys,
webhook secrets).

ENCRYPTION_KEY holds one Fernet key, or several comma-separated keys during a
rotation: the first key encrypts, every key is tried on decrypt. With no key
configured values are stored and returned unchanged (local development).
"""
import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _cipher_for(key_material: str) -> MultiFernet:
    keys = [k.strip() for k in key_material.split(",") if k.strip()]
    return MultiFernet([Fernet(k.encode()) for k in keys])


def _cipher() -> Optional[MultiFernet]:
    from syncbridge.config import get_settings
    key_material = get_settings().encryption_key
    if not key_material:
        logger.warning("ENCRYPTION_KEY not configured, credentials pass through unencrypted")
        return None
    return _cipher_for(key_material)


def generate_key() -> str:
    """New Fernet key for ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()


def encrypt_value(plaintext: str) -> str:
    if not plaintext:
        return plaintext
    cipher = _cipher()
    if cipher is None:
        return plaintext
    return cipher.encrypt(plaintext.encode()).decode()


def decrypt_value(encrypted: str) -> Optional[str]:
    """
    Values that are not Fernet tokens under any configured key are returned
    as-is: they were written before encryption was switched on.
    """
    if not encrypted:
        return encrypted
    cipher = _cipher()
    if cipher is None:
        return encrypted
    try:
        return cipher.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        logger.warning("Stored credential is not a Fernet token, using it unchanged")
        return encrypted


def rotate_value(encrypted: str) -> str:
    """Re-encrypt a stored credential under the current primary key."""
    cipher = _cipher()
    if cipher is None or not encrypted:
        return encrypted
    try:
        return cipher.rotate(encrypted.encode()).decode()
    except InvalidToken:
        return cipher.encrypt(encrypted.encode()).decode()

"""
License token verification.

A token is the BIG-IP registration key encrypted with AES-CBC and PKCS#5
padding, base64 encoded. The key doubles as the IV (its first block).
"""
import base64
import binascii
import enum
import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ces_controller.errors import LicenseError

logger = logging.getLogger(__name__)

BLOCK_SIZE = 16


class LicenseStatus(enum.Enum):
    OK = "ok"
    MISMATCH = "mismatch"
    ERROR = "error"


@dataclass(frozen=True)
class LicenseCheck:
    status: LicenseStatus
    reason: str = ""

    @property
    def ok(self):
        return self.status == LicenseStatus.OK


def decrypt_token(token, key):
    if isinstance(key, str):
        key = key.encode()
    try:
        data = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise LicenseError(f"license token is not valid base64: {e}") from e

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(key[:BLOCK_SIZE])).decryptor()
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return plain.decode("utf-8")
    except ValueError as e:
        raise LicenseError(f"failed to decrypt license: {e}") from e


def verify_license(token, key, registration_key):
    """Compare the decrypted token with ``registration_key``."""
    try:
        plain = decrypt_token(token, key)
    except LicenseError as e:
        return LicenseCheck(LicenseStatus.ERROR, str(e))
    if plain != registration_key:
        return LicenseCheck(LicenseStatus.MISMATCH, "license is not ok")
    return LicenseCheck(LicenseStatus.OK)


class LicenseVerifier:

    def __init__(self, client):
        self.client = client

    def verify(self, token, key):
        registration_key = self.client.get_license_key()
        check = verify_license(token, key, registration_key)
        logger.info("license check: %s %s", check.status.value, check.reason)
        return check

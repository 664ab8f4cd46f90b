# tdf_crypto/symmetric_ciphers.py
import logging
from typing import NamedTuple, Tuple

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes

from errors import AuthenticationFailed

logger = logging.getLogger(__name__)

DEK_SIZE = 32    # AES-256
NONCE_SIZE = 12  # 96-bit GCM IV
TAG_SIZE = 16


class SealedPayload(NamedTuple):
    """Output of one payload encryption: the fresh DEK and its framing."""
    key: bytes
    nonce: bytes
    ciphertext: bytes
    tag: bytes


def generate_dek() -> bytes:
    return get_random_bytes(DEK_SIZE)


def aes_gcm_encrypt(plaintext_bytes: bytes, aes_key_bytes: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    Encrypts under AES-GCM with a freshly drawn random nonce.
    Returns (nonce, ciphertext, tag). Invalid key types or lengths raise
    TypeError/ValueError straight from PyCryptodome.
    """
    nonce_bytes = get_random_bytes(NONCE_SIZE)
    cipher = AES.new(aes_key_bytes, AES.MODE_GCM, nonce=nonce_bytes, mac_len=TAG_SIZE)
    ciphertext_bytes, tag_bytes = cipher.encrypt_and_digest(plaintext_bytes)
    return nonce_bytes, ciphertext_bytes, tag_bytes


def aes_gcm_decrypt(nonce_bytes: bytes, ciphertext_bytes: bytes, tag_bytes: bytes, aes_key_bytes: bytes) -> bytes:
    """Decrypts and verifies AES-GCM. Any failure raises AuthenticationFailed."""
    if len(nonce_bytes) != NONCE_SIZE or len(tag_bytes) != TAG_SIZE:
        raise AuthenticationFailed(
            "AES-GCM framing has unexpected nonce or tag length",
            details={"nonce_len": len(nonce_bytes), "tag_len": len(tag_bytes)},
        )
    try:
        cipher = AES.new(aes_key_bytes, AES.MODE_GCM, nonce=nonce_bytes, mac_len=TAG_SIZE)
        return cipher.decrypt_and_verify(ciphertext_bytes, tag_bytes)
    except (TypeError, ValueError) as crypto_error:
        # PyCryptodome reports both a bad key and a tag mismatch as ValueError.
        raise AuthenticationFailed(f"AES-GCM decryption failed: {crypto_error}") from crypto_error


def encrypt_payload(plaintext: bytes) -> SealedPayload:
    """Generates a DEK for this payload only and seals the plaintext under it."""
    dek = generate_dek()
    nonce, ciphertext, tag = aes_gcm_encrypt(plaintext, dek)
    logger.debug(f"Sealed {len(plaintext)} payload bytes under a fresh DEK.")
    return SealedPayload(key=dek, nonce=nonce, ciphertext=ciphertext, tag=tag)


def decrypt_payload(dek: bytes, nonce: bytes, ciphertext: bytes, tag: bytes) -> bytes:
    return aes_gcm_decrypt(nonce, ciphertext, tag, dek)

# tdf_crypto/key_wrapping.py
"""
ECIES-style wrapping of a DEK for a KAS public key.

Each wrap draws a new ephemeral P-256 key pair, agrees a shared secret with the
KAS key and expands it with HKDF-SHA256 into two independent 32-byte keys: one
seals the DEK under AES-GCM, the other is the HMAC policy-binding secret. The
ephemeral public key travels with the wrapped key so the KAS can redo the
agreement with its private key.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

from Crypto.Hash import SHA256
from Crypto.Protocol.DH import key_agreement
from Crypto.Protocol.KDF import HKDF
from Crypto.PublicKey import ECC

from errors import AuthenticationFailed, UnwrapFailed
from .key_generation import COMPRESSED_PUBLIC_KEY_SIZE, decode_public_key, encode_public_key, generate_ec_keypair
from .symmetric_ciphers import DEK_SIZE, NONCE_SIZE, TAG_SIZE, aes_gcm_decrypt, aes_gcm_encrypt

logger = logging.getLogger(__name__)

HKDF_SALT = SHA256.new(b"L1L").digest()
HKDF_CONTEXT = b"nanotdf-key-wrap"
WRAPPED_KEY_SIZE = COMPRESSED_PUBLIC_KEY_SIZE + NONCE_SIZE + TAG_SIZE + DEK_SIZE


@dataclass(frozen=True)
class WrappedKey:
    ephemeral_public_key: bytes
    nonce: bytes
    tag: bytes
    encrypted_key: bytes
    # Only populated on the wrapping side; never serialized.
    binding_secret: Optional[bytes] = field(default=None, repr=False, compare=False)

    def to_bytes(self) -> bytes:
        return self.ephemeral_public_key + self.nonce + self.tag + self.encrypted_key

    @classmethod
    def from_bytes(cls, data: bytes) -> "WrappedKey":
        if len(data) != WRAPPED_KEY_SIZE:
            raise UnwrapFailed(
                "Wrapped key has unexpected length",
                details={"expected": WRAPPED_KEY_SIZE, "actual": len(data)},
            )
        offset = COMPRESSED_PUBLIC_KEY_SIZE
        ephemeral = data[:offset]
        nonce = data[offset:offset + NONCE_SIZE]
        offset += NONCE_SIZE
        tag = data[offset:offset + TAG_SIZE]
        offset += TAG_SIZE
        return cls(ephemeral_public_key=ephemeral, nonce=nonce, tag=tag, encrypted_key=data[offset:])


def _expand_shared_secret(shared_secret: bytes) -> Tuple[bytes, bytes]:
    wrapping_key, binding_secret = HKDF(shared_secret, 32, HKDF_SALT, SHA256, num_keys=2, context=HKDF_CONTEXT)
    return wrapping_key, binding_secret


def _agree_as_kas(wrapped: WrappedKey, kas_private_key: ECC.EccKey) -> Tuple[bytes, bytes]:
    if not kas_private_key.has_private():
        raise UnwrapFailed("KAS key has no private component")
    try:
        ephemeral_public = decode_public_key(wrapped.ephemeral_public_key)
        return key_agreement(static_priv=kas_private_key, eph_pub=ephemeral_public, kdf=_expand_shared_secret)
    except ValueError as agreement_error:
        raise UnwrapFailed(f"Key agreement failed: {agreement_error}") from agreement_error


def wrap_key(dek: bytes, kas_public_key: ECC.EccKey) -> WrappedKey:
    """Wraps a DEK for the KAS. The ephemeral private key never leaves this call."""
    ephemeral_private, ephemeral_public = generate_ec_keypair()
    wrapping_key, binding_secret = key_agreement(
        eph_priv=ephemeral_private, static_pub=kas_public_key, kdf=_expand_shared_secret
    )
    nonce, encrypted_key, tag = aes_gcm_encrypt(dek, wrapping_key)
    logger.debug("Wrapped DEK under a fresh ephemeral agreement.")
    return WrappedKey(
        ephemeral_public_key=encode_public_key(ephemeral_public),
        nonce=nonce,
        tag=tag,
        encrypted_key=encrypted_key,
        binding_secret=binding_secret,
    )


def unwrap_key(wrapped: WrappedKey, kas_private_key: ECC.EccKey) -> bytes:
    wrapping_key, _ = _agree_as_kas(wrapped, kas_private_key)
    try:
        return aes_gcm_decrypt(wrapped.nonce, wrapped.encrypted_key, wrapped.tag, wrapping_key)
    except AuthenticationFailed as auth_error:
        raise UnwrapFailed("Wrapped key did not authenticate under the KAS key") from auth_error


def derive_binding_secret(wrapped: WrappedKey, kas_private_key: ECC.EccKey) -> bytes:
    """Recomputes the HMAC binding secret without touching the encrypted DEK."""
    _, binding_secret = _agree_as_kas(wrapped, kas_private_key)
    return binding_secret

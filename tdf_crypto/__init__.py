# tdf_crypto/__init__.py

"""
TDF crypto primitives (PyCryptodome)
- AES-256-GCM payload encryption with a fresh DEK and nonce per call
- P-256 key generation and compressed point encoding
- ECIES-style DEK wrapping (ECDH + HKDF-SHA256 + AES-GCM)
- Policy binding via ECDSA P-256 or HMAC-SHA256
"""

from .key_generation import generate_ec_keypair, generate_ec_keypair_pem, load_ec_key
from .key_wrapping import WrappedKey, derive_binding_secret, unwrap_key, wrap_key
from .policy_binding import BindingMode, require_valid_binding, sign_binding, verify_binding
from .symmetric_ciphers import SealedPayload, aes_gcm_decrypt, aes_gcm_encrypt, decrypt_payload, encrypt_payload


__all__ = [
    "generate_ec_keypair",
    "generate_ec_keypair_pem",
    "load_ec_key",
    "WrappedKey",
    "wrap_key",
    "unwrap_key",
    "derive_binding_secret",
    "BindingMode",
    "sign_binding",
    "verify_binding",
    "require_valid_binding",
    "SealedPayload",
    "encrypt_payload",
    "decrypt_payload",
    "aes_gcm_encrypt",
    "aes_gcm_decrypt",
]
